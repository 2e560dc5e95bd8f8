import json

from portfolio_dashboard.markdown_parser import extract_analysis
from portfolio_dashboard.normalizer import RECORD_DEFAULTS, normalize_company
from portfolio_dashboard.reconcile import (
    backfill_quarter_end_dates,
    build_from_markdown_only,
    reconcile,
)
from tests.helpers.reports import ANALYSIS_MD, BULLET_MD, FISCAL_DOC, LEGACY_HISTORY_DOC, nested_doc


def test_reconcile_json_only_keeps_every_field():
    record = normalize_company(nested_doc())
    merged = reconcile(record, None)
    for key, value in record.items():
        assert merged[key] == value
    assert merged["calculated"]["ticker"] == "ACME"
    assert merged["calculated"]["momentum"]["trend"] == "accelerating"
    assert "calculated" not in record


def test_reconcile_markdown_only():
    analysis = extract_analysis(BULLET_MD)
    merged = reconcile(None, analysis)
    assert merged["_markdown_only"] is True
    assert merged["ticker"] == "DELT"
    assert merged["company_name"] == "DELT"
    assert merged["price"] == 15.25
    assert merged["price_source"] == "report"
    assert merged["verdict"] == "CAUTION"
    assert merged["fetch_date"] == "2025-02-01"
    assert merged["bull_case"] == ["Cheap relative to peers"]
    assert merged["revenue_recent_label"] is None
    assert merged["business_description"] is None
    assert merged["risk_factors"] == []
    assert merged["debt_level"] == "unknown"
    assert set(RECORD_DEFAULTS) <= set(merged)
    assert "calculated" in merged


def test_reconcile_both_none():
    assert reconcile(None, None) is None


def test_markdown_fills_only_gaps():
    record = normalize_company(nested_doc())
    analysis = extract_analysis(ANALYSIS_MD)
    merged = reconcile(record, analysis)
    # JSON values win
    assert merged["price"] == 100.0
    assert merged["trailing_pe"] == 80.0
    assert merged["verdict"] == "PASS"
    assert merged["saul_rules"] == record["saul_rules"]
    # gaps are filled from Markdown
    assert merged["ebitda_margin_pct"] == 20.0
    assert merged["free_cash_flow_mil"] == 25.0
    # Markdown-only extras
    assert merged["md_operating_leverage"] == 1.8
    assert merged["dilution_pct"] == 2.1
    assert merged["fcf_margin_pct"] == 8.0
    assert merged["net_profit_margin_pct"] == -4.5
    assert merged["unit_economics"]["arpu_to_cac_ratio"] == 4.0


def test_markdown_rules_fill_missing_rules_and_summary_is_recomputed():
    doc = nested_doc()
    del doc["evaluation"]["rule_statuses"]
    merged = reconcile(normalize_company(doc), extract_analysis(ANALYSIS_MD))
    assert merged["saul_rules"] == {"R_001": "PASS", "R_002": "PASS", "R_018": "WARNING"}
    assert merged["saul_summary"]["score"] == 93


def test_history_synthesized_when_both_sources_lack_it():
    doc = nested_doc()
    del doc["quantitative"]["quarterly_history"]
    merged = reconcile(normalize_company(doc), extract_analysis(BULLET_MD))
    assert merged["quarterly_history"] == [
        {
            "quarter": "Q3 2024",
            "calendar_quarter": None,
            "quarter_end": None,
            "revenue_mil": 300.0,
            "revenue_yoy_pct": 40.0,
            "revenue_qoq_pct": 10.0,
            "ebitda_mil": None,
            "ebitda_margin_pct": None,
            "gross_margin_pct": None,
            "notes": None,
        }
    ]


def test_history_not_synthesized_without_markdown():
    doc = nested_doc()
    del doc["quantitative"]["quarterly_history"]
    merged = reconcile(normalize_company(doc), None)
    assert merged["quarterly_history"] == []


def test_markdown_history_fills_empty_json_history():
    doc = nested_doc()
    del doc["quantitative"]["quarterly_history"]
    merged = reconcile(normalize_company(doc), extract_analysis(ANALYSIS_MD))
    assert [q["quarter"] for q in merged["quarterly_history"]] == ["Q3 2024", "Q2 2024", "Q1 2024"]


def test_build_from_markdown_only_uses_given_ticker():
    record = build_from_markdown_only(extract_analysis(ANALYSIS_MD), "acme")
    assert record["ticker"] == "ACME"
    assert record["trailing_pe"] == 82.5
    assert record["saul_summary"]["score"] == 93


def test_backfill_quarter_end_dates_from_secondary():
    record = normalize_company(FISCAL_DOC)
    assert all(q["calendar_quarter"] is None for q in record["quarterly_history"])
    updated = backfill_quarter_end_dates(record, json.dumps(LEGACY_HISTORY_DOC))
    assert updated is not record
    assert updated["quarterly_history"][0]["quarter_end"] == "2024-10-31"
    assert updated["quarterly_history"][0]["calendar_quarter"] == "Q3 2024"
    assert updated["quarterly_history"][1]["calendar_quarter"] == "Q2 2024"
    assert record["quarterly_history"][0]["quarter_end"] is None


def test_backfill_skips_when_calendar_quarters_exist_or_secondary_is_bad():
    record = normalize_company(nested_doc())
    assert backfill_quarter_end_dates(record, LEGACY_HISTORY_DOC) is record
    fiscal = normalize_company(FISCAL_DOC)
    assert backfill_quarter_end_dates(fiscal, "{not json") is fiscal
    assert backfill_quarter_end_dates(fiscal, None) is fiscal
    assert backfill_quarter_end_dates(fiscal, {"quantitative": {}}) is fiscal
