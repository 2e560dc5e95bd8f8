import pytest

from portfolio_dashboard.calculator import (
    MetricsCalculator,
    compression_deltas,
    compute_metrics,
    enrich_companies,
)


def _history(*qoq):
    return [{"revenue_qoq_pct": value} for value in qoq]


def test_momentum_accelerating():
    momentum = MetricsCalculator({"quarterly_history": _history(10, 6, 3)}).sequential_momentum()
    assert momentum == {"current_qoq": 10, "prior_qoq": 6, "delta": 4, "trend": "accelerating"}


def test_momentum_trends_and_minimum_length():
    assert MetricsCalculator({"quarterly_history": _history(3, 6, 3)}).sequential_momentum()["trend"] == "decelerating"
    assert MetricsCalculator({"quarterly_history": _history(6, 5, 3)}).sequential_momentum()["trend"] == "stable"
    assert MetricsCalculator({"quarterly_history": _history(10, 6)}).sequential_momentum() is None


def test_momentum_derives_qoq_from_revenue():
    history = [
        {"revenue_mil": 121.0},
        {"revenue_mil": 110.0},
        {"revenue_mil": 100.0},
    ]
    momentum = MetricsCalculator({"quarterly_history": history}).sequential_momentum()
    assert momentum["current_qoq"] == 10.0
    assert momentum["prior_qoq"] == 10.0
    assert momentum["trend"] == "stable"


def test_growth_adjusted_valuation():
    assert MetricsCalculator({"run_rate_pe": 26.78, "revenue_yoy_pct": 71}).growth_adjusted_valuation() == 0.38
    assert MetricsCalculator({"trailing_pe": 40, "revenue_yoy_pct": 20}).growth_adjusted_valuation() == 2.0
    assert MetricsCalculator({"run_rate_pe": 20, "revenue_yoy_pct": -5}).growth_adjusted_valuation() is None
    assert MetricsCalculator({"revenue_yoy_pct": 30}).growth_adjusted_valuation() is None


def test_operating_leverage_example():
    record = {"ebitda_mil": 100, "revenue_recent_mil": 1000, "ebitda_yoy_pct": 25, "revenue_yoy_pct": 10}
    assert MetricsCalculator(record).operating_leverage() == 0.22


def test_operating_leverage_missing_inputs():
    assert MetricsCalculator({"ebitda_mil": 100, "revenue_recent_mil": 1000}).operating_leverage() is None
    record = {"ebitda_mil": 100, "revenue_recent_mil": 1000, "ebitda_yoy_pct": 25, "revenue_yoy_pct": 0}
    assert MetricsCalculator(record).operating_leverage() is None


def test_distance_from_high():
    assert MetricsCalculator({"price": 80, "fifty_two_week_high": 100}).distance_from_high() == -20.0
    assert MetricsCalculator({"price": 80}).distance_from_high() is None


def test_pe_compression_prefers_source_block():
    block = {"trailing_pe": 30, "run_rate_pe": 24, "forward_pe": 20, "total_compression": 10, "interpretation": "x"}
    assert MetricsCalculator({"pe_compression": block}).pe_compression() is block


def test_pe_compression_computed_from_pe_values():
    computed = MetricsCalculator({"trailing_pe": 80.0, "run_rate_pe": 50.5, "forward_pe": 40.25}).pe_compression()
    assert computed["trailing_to_run_rate"] == 29.5
    assert computed["run_rate_to_forward"] == 10.25
    assert computed["total_compression"] == 39.75
    assert compression_deltas(None, None, None) is None
    assert compression_deltas(30.0, None, 20.0)["trailing_to_run_rate"] is None


def test_compute_metrics_on_empty_record_is_null_safe():
    metrics = compute_metrics({"ticker": "X"})
    assert metrics == {
        "ticker": "X",
        "momentum": None,
        "gav": None,
        "operating_leverage": None,
        "distance_from_high": None,
        "pe_compression": None,
    }


def test_enrich_companies_returns_new_records():
    records = [{"ticker": "A", "price": 50, "fifty_two_week_high": 100}]
    enriched = enrich_companies(records)
    assert "calculated" not in records[0]
    assert enriched[0]["calculated"]["distance_from_high"] == pytest.approx(-50.0)
