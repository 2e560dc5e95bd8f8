from typing import Any, Dict, Iterable, List, Mapping, Optional

from .calculator import compression_deltas, compute_metrics
from .coercion import coerce_number, round_half_up


PE_FIELDS = ("trailing_pe", "run_rate_pe", "forward_pe", "normalized_pe")
SCALED_FIELDS = ("market_cap_mil", "price_to_sales")


def _valid_price(value: Any) -> Optional[float]:
    price = coerce_number(value)
    if price is None or price <= 0:
        return None
    return price


def _reprice_pe(pe: Any, report_price: float, price: float) -> Optional[float]:
    pe = coerce_number(pe)
    if not pe:
        return None
    # EPS stays fixed; only the price moves
    eps = report_price / pe
    return round_half_up(price / eps, 2)


def overlay_price(record: Dict[str, Any], live_price: Any) -> Dict[str, Any]:
    price = _valid_price(live_price)
    if price is None:
        return record

    updated = dict(record)
    updated["price"] = price
    updated["price_source"] = "live"

    report_price = _valid_price(record.get("price"))
    if report_price is not None:
        ratio = price / report_price
        for field in SCALED_FIELDS:
            value = record.get(field)
            if value is not None:
                updated[field] = round_half_up(value * ratio, 2)
        for field in PE_FIELDS:
            repriced = _reprice_pe(record.get(field), report_price, price)
            if repriced is not None:
                updated[field] = repriced

        source = record.get("pe_compression")
        if source:
            # the block's own P/Es win over the top-level ones
            pes = []
            for field in ("trailing_pe", "run_rate_pe", "forward_pe"):
                repriced = _reprice_pe(source.get(field), report_price, price)
                pes.append(repriced if repriced is not None else updated.get(field))
            updated["pe_compression"] = compression_deltas(*pes, source.get("interpretation"))

    updated["calculated"] = compute_metrics(updated)
    return updated


def apply_live_prices(records: Iterable[Dict[str, Any]], price_map: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    prices = {str(ticker).strip().upper(): value for ticker, value in (price_map or {}).items()}
    result = []
    for record in records:
        ticker = str(record.get("ticker") or "").upper()
        if ticker in prices:
            result.append(overlay_price(record, prices[ticker]))
        else:
            result.append(record)
    return result
