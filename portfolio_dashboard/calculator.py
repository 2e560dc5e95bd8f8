from typing import Any, Dict, Iterable, List, Optional

from .coercion import round_half_up


ACCELERATION_THRESHOLD = 2.0


def compression_deltas(
    trailing: Optional[float],
    run_rate: Optional[float],
    forward: Optional[float],
    interpretation: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    if trailing is None and run_rate is None and forward is None:
        return None

    def delta(high, low):
        if high is None or low is None:
            return None
        return round_half_up(high - low, 2)

    return {
        "trailing_pe": trailing,
        "run_rate_pe": run_rate,
        "forward_pe": forward,
        "trailing_to_run_rate": delta(trailing, run_rate),
        "run_rate_to_forward": delta(run_rate, forward),
        "total_compression": delta(trailing, forward),
        "interpretation": interpretation,
    }


class MetricsCalculator:
    def __init__(self, record: Dict[str, Any]) -> None:
        self.record = record or {}
        self.history = self.record.get("quarterly_history") or []

    @staticmethod
    def _safe_divide(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
        if numerator is None or not denominator:
            return None
        return numerator / denominator

    def _qoq_at(self, index: int) -> Optional[float]:
        current = self.history[index]
        reported = current.get("revenue_qoq_pct")
        if reported is not None:
            return reported
        previous = self.history[index + 1]
        if not current.get("revenue_mil") or not previous.get("revenue_mil"):
            return None
        change = self._safe_divide(current["revenue_mil"] - previous["revenue_mil"], previous["revenue_mil"])
        return None if change is None else change * 100

    def sequential_momentum(self) -> Optional[Dict[str, Any]]:
        if len(self.history) < 3:
            return None
        current_qoq = self._qoq_at(0)
        prior_qoq = self._qoq_at(1)
        if current_qoq is None or prior_qoq is None:
            return None

        delta = current_qoq - prior_qoq
        if delta > ACCELERATION_THRESHOLD:
            trend = "accelerating"
        elif delta < -ACCELERATION_THRESHOLD:
            trend = "decelerating"
        else:
            trend = "stable"
        return {
            "current_qoq": round_half_up(current_qoq, 2),
            "prior_qoq": round_half_up(prior_qoq, 2),
            "delta": round_half_up(delta, 2),
            "trend": trend,
        }

    def effective_pe(self) -> Optional[float]:
        for key in ("run_rate_pe", "trailing_pe", "normalized_pe"):
            if self.record.get(key):
                return self.record[key]
        return None

    def growth_adjusted_valuation(self) -> Optional[float]:
        pe = self.effective_pe()
        growth = self.record.get("revenue_yoy_pct")
        if not pe or growth is None or growth <= 0:
            return None
        return round_half_up(pe / growth, 2)

    def operating_leverage(self) -> Optional[float]:
        ebitda = self.record.get("ebitda_mil")
        revenue = self.record.get("revenue_recent_mil")
        ebitda_yoy = self.record.get("ebitda_yoy_pct")
        revenue_yoy = self.record.get("revenue_yoy_pct")
        if ebitda is None or revenue is None or ebitda_yoy is None or revenue_yoy is None:
            return None
        if revenue_yoy == 0 or ebitda_yoy == -100:
            return None

        prior_ebitda = ebitda / (1 + ebitda_yoy / 100)
        prior_revenue = revenue / (1 + revenue_yoy / 100)
        leverage = self._safe_divide(ebitda - prior_ebitda, revenue - prior_revenue)
        if leverage is None:
            return None
        return round_half_up(leverage, 2)

    def distance_from_high(self) -> Optional[float]:
        price = self.record.get("price")
        high = self.record.get("fifty_two_week_high")
        if not price or not high:
            return None
        return round_half_up((price - high) / high * 10000) / 100

    def pe_compression(self) -> Optional[Dict[str, Any]]:
        if self.record.get("pe_compression"):
            return self.record["pe_compression"]
        return compression_deltas(
            self.record.get("trailing_pe"),
            self.record.get("run_rate_pe"),
            self.record.get("forward_pe"),
        )

    def compute_all(self) -> Dict[str, Any]:
        return {
            "ticker": self.record.get("ticker"),
            "momentum": self.sequential_momentum(),
            "gav": self.growth_adjusted_valuation(),
            "operating_leverage": self.operating_leverage(),
            "distance_from_high": self.distance_from_high(),
            "pe_compression": self.pe_compression(),
        }


def compute_metrics(record: Dict[str, Any]) -> Dict[str, Any]:
    return MetricsCalculator(record).compute_all()


def enrich_company(record: Dict[str, Any]) -> Dict[str, Any]:
    enriched = dict(record)
    enriched["calculated"] = compute_metrics(record)
    return enriched


def enrich_companies(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [enrich_company(record) for record in records]
