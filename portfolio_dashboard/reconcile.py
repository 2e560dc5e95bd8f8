import copy
import json
import logging
from typing import Any, Dict, Optional

from .calculator import enrich_company
from .normalizer import date_to_calendar_quarter, dig, empty_record
from .saul_scoring import compute_saul_summary

logger = logging.getLogger(__name__)


# record field -> dotted path into the Markdown analysis
MARKDOWN_FILLS = {
    "verdict": "verdict",
    "conviction_score": "conviction_score",
    "fetch_date": "date",
    "price": "price",
    "market_cap_mil": "market_cap_mil",
    "trailing_pe": "pe_values.trailing_pe",
    "run_rate_pe": "pe_values.run_rate_pe",
    "forward_pe": "pe_values.forward_pe",
    "normalized_pe": "pe_values.normalized_pe",
    "price_to_sales": "pe_values.price_to_sales",
    "revenue_recent_mil": "financials.revenue_mil",
    "revenue_yoy_pct": "financials.revenue_yoy_pct",
    "revenue_qoq_pct": "financials.revenue_qoq_pct",
    "gross_margin_pct": "financials.gross_margin_pct",
    "ebitda_margin_pct": "financials.ebitda_margin_pct",
    "free_cash_flow_mil": "financials.free_cash_flow_mil",
    "quarterly_history": "quarterly_history",
    "bull_case": "bull_case",
    "bear_case": "bear_case",
    "saul_rules": "saul_rules",
}

# Markdown-only values attached to every merged record
MARKDOWN_EXTRAS = {
    "md_operating_leverage": "financials.operating_leverage",
    "dilution_pct": "financials.dilution_pct",
    "fcf_margin_pct": "financials.fcf_margin_pct",
    "net_profit_margin_pct": "financials.net_profit_margin_pct",
    "unit_economics": "unit_economics",
}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value) == 0
    return False


def _fill_from_markdown(record: Dict[str, Any], analysis: Dict[str, Any]) -> None:
    for field, path in MARKDOWN_FILLS.items():
        if not _is_missing(record.get(field)):
            continue
        value = dig(analysis, path)
        if not _is_missing(value):
            record[field] = copy.deepcopy(value)


def _attach_extras(record: Dict[str, Any], analysis: Optional[Dict[str, Any]]) -> None:
    for field, path in MARKDOWN_EXTRAS.items():
        value = dig(analysis, path) if analysis else None
        record[field] = copy.deepcopy(value)


def _synthesize_history(record: Dict[str, Any]) -> None:
    if record.get("quarterly_history") or record.get("revenue_yoy_pct") is None:
        return
    record["quarterly_history"] = [
        {
            "quarter": record.get("revenue_recent_label") or "Latest",
            "calendar_quarter": None,
            "quarter_end": None,
            "revenue_mil": record.get("revenue_recent_mil"),
            "revenue_yoy_pct": record.get("revenue_yoy_pct"),
            "revenue_qoq_pct": record.get("revenue_qoq_pct"),
            "ebitda_mil": None,
            "ebitda_margin_pct": None,
            "gross_margin_pct": None,
            "notes": None,
        }
    ]


def _finalize(record: Dict[str, Any]) -> Dict[str, Any]:
    record["saul_summary"] = compute_saul_summary(record.get("saul_rules"))
    if record.get("price") is not None:
        record["price_source"] = record.get("price_source") or "report"
    else:
        record["price_source"] = None
    return enrich_company(record)


def build_from_markdown_only(analysis: Dict[str, Any], ticker: Optional[str] = None) -> Dict[str, Any]:
    ticker = (ticker or analysis.get("ticker") or "UNKNOWN").upper()
    record = empty_record(ticker)
    record["company_name"] = ticker
    _fill_from_markdown(record, analysis)
    _attach_extras(record, analysis)
    record["_markdown_only"] = True
    return _finalize(record)


def reconcile(
    json_record: Optional[Dict[str, Any]],
    md_record: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    if json_record is None and md_record is None:
        return None
    if json_record is None:
        return build_from_markdown_only(md_record)

    record = copy.deepcopy(json_record)
    record.pop("calculated", None)
    if md_record is not None:
        _fill_from_markdown(record, md_record)
        _synthesize_history(record)
    _attach_extras(record, md_record)
    return _finalize(record)


def backfill_quarter_end_dates(record: Dict[str, Any], secondary_raw: Any) -> Dict[str, Any]:
    history = record.get("quarterly_history") or []
    if not history or secondary_raw is None:
        return record
    if any(entry.get("calendar_quarter") for entry in history):
        return record

    try:
        if isinstance(secondary_raw, str):
            secondary_raw = json.loads(secondary_raw)
        source_history = dig(secondary_raw, "quantitative.quarterly_history")
        if not isinstance(source_history, list):
            return record

        end_dates: Dict[str, str] = {}
        for entry in source_history:
            if not isinstance(entry, dict):
                continue
            label = entry.get("quarter")
            end_date = entry.get("quarter_end") or entry.get("quarter_end_date")
            if label and end_date:
                end_dates[str(label)] = end_date
    except (TypeError, ValueError) as exc:
        logger.debug("%s: secondary document unusable for backfill (%s)", record.get("ticker"), exc)
        return record

    backfilled = 0
    new_history = []
    for entry in history:
        entry = dict(entry)
        end_date = end_dates.get(str(entry.get("quarter")))
        if end_date and not entry.get("calendar_quarter"):
            if not entry.get("quarter_end"):
                entry["quarter_end"] = end_date
            entry["calendar_quarter"] = date_to_calendar_quarter(entry["quarter_end"])
            backfilled += 1
        new_history.append(entry)

    if not backfilled:
        return record
    logger.info("%s: backfilled %d quarter_end dates", record.get("ticker"), backfilled)
    updated = dict(record)
    updated["quarterly_history"] = new_history
    return updated
