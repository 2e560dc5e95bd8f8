import json
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .coercion import coerce_number, coerce_to_millions
from .saul_scoring import compute_saul_summary


# field -> (kind, ordered dotted paths into the "quantitative" section)
FIELD_PATHS = {
    "trailing_pe": ("number", ["trailing_pe", "price_and_valuation.trailing_pe"]),
    "run_rate_pe": ("number", ["run_rate_pe", "price_and_valuation.run_rate_pe"]),
    "forward_pe": ("number", ["forward_pe", "price_and_valuation.forward_pe"]),
    "price_to_sales": (
        "number",
        [
            "price_to_sales_ratio",
            "price_to_sales",
            "price_to_sales_ttm",
            "price_and_valuation.price_to_sales_ratio",
        ],
    ),
    "normalized_pe": ("number", ["normalized_pe_ratio", "price_and_valuation.normalized_pe_ratio"]),
    "revenue_recent_mil": (
        "millions",
        [
            "revenue_recent_quarterly",
            "revenue_recent_quarter",
            "income_statement.revenue_recent_quarterly",
            "income_statement.revenue_recent_quarter",
        ],
    ),
    "revenue_recent_label": (
        "text",
        [
            "revenue_recent_quarter_period",
            "income_statement.revenue_recent_quarter_period",
            "income_statement.revenue_recent_quarter_label",
        ],
    ),
    "revenue_yoy_pct": (
        "number",
        [
            "revenue_yoy_pct",
            "revenue_yoy_growth_pct",
            "income_statement.revenue_yoy_pct",
            "income_statement.revenue_yoy_percent",
        ],
    ),
    "revenue_qoq_pct": (
        "number",
        [
            "revenue_qoq_pct",
            "revenue_qoq_growth_pct",
            "income_statement.revenue_qoq_pct",
            "income_statement.revenue_qoq_percent",
        ],
    ),
    "gross_margin_pct": (
        "number",
        ["gross_margin_pct", "income_statement.gross_margin_pct", "income_statement.gross_margin_percent"],
    ),
    "net_income_mil": ("millions", ["net_income_recent", "income_statement.net_income_recent"]),
    "net_income_yoy_pct": (
        "number",
        [
            "net_income_yoy_pct",
            "income_statement.net_income_yoy_pct",
            "income_statement.net_income_yoy_percent",
        ],
    ),
    "ebitda_mil": (
        "millions",
        [
            "ebitda_recent",
            "profitability_and_ebitda.ebitda_recent",
            "profitability_and_ebitda.adj_ebitda_recent",
        ],
    ),
    "ebitda_yoy_pct": (
        "number",
        [
            "ebitda_yoy_pct",
            "profitability_and_ebitda.ebitda_yoy_pct",
            "profitability_and_ebitda.adj_ebitda_yoy_percent",
        ],
    ),
    "ebitda_margin_pct": (
        "number",
        [
            "ebitda_margin_pct",
            "profitability_and_ebitda.ebitda_margin_pct",
            "profitability_and_ebitda.ebitda_margin_percent",
        ],
    ),
    "eps_diluted": ("number", ["eps_diluted", "income_statement.eps_diluted"]),
    "operating_cash_flow_mil": (
        "millions",
        ["operating_cash_flow", "cash_flow.operating_cash_flow", "cash_flow.operating_cash_flow_recent"],
    ),
    "capital_expenditure_mil": ("millions", ["capital_expenditure", "cash_flow.capital_expenditure"]),
    "free_cash_flow_mil": ("millions", ["free_cash_flow", "cash_flow.free_cash_flow"]),
    "capex_to_ocf_ratio": (
        "number",
        ["capex_to_ocf_ratio", "cash_flow.capex_to_ocf_ratio", "cash_flow.capex_to_ocf_ratio_percent"],
    ),
    "cash_position_mil": (
        "millions",
        ["cash_and_equivalents", "balance_sheet.cash_and_equivalents", "balance_sheet.total_cash"],
    ),
    "fifty_two_week_high": ("number", ["52_week_high", "price_and_valuation.52_week_high"]),
    "fifty_two_week_low": ("number", ["52_week_low", "price_and_valuation.52_week_low"]),
    "shares_yoy_change_pct": (
        "number",
        ["shares_yoy_change_pct", "price_and_valuation.shares_yoy_change_pct"],
    ),
}

# field -> ordered dotted paths into the "qualitative" section
QUALITATIVE_PATHS = {
    "market_share_estimate": [
        "market.market_share_estimate",
        "market.market_share_metrics",
        "market.current_market_share",
    ],
    "competitive_moat": ["market.competitive_moat", "market.competitive_position"],
    "headquarters": ["geography.headquarters", "geography.headquarters_address"],
    "tam_estimate": ["market.tam_estimate", "market.tam_description", "market.tam_size", "market.tam_current"],
    "guidance": ["recent_developments.guidance", "forward_guidance.fy_2026_outlook", "forward_guidance"],
    "path_to_profitability_notes": [
        "path_to_profitability.notes",
        "path_to_profitability.current_status",
        "path_to_profitability.profitability_drivers",
    ],
    "valuation_context": ["valuation_context"],
}

DEBT_LEVELS = {"none", "low", "moderate", "high"}

RECORD_DEFAULTS: Dict[str, Any] = {
    "ticker": None,
    "company_name": None,
    "fetch_date": None,
    "price": None,
    "price_source": None,
    "market_cap_mil": None,
    "trailing_pe": None,
    "run_rate_pe": None,
    "forward_pe": None,
    "normalized_pe": None,
    "price_to_sales": None,
    "revenue_recent_mil": None,
    "revenue_recent_label": None,
    "revenue_yoy_pct": None,
    "revenue_qoq_pct": None,
    "gross_margin_pct": None,
    "net_income_mil": None,
    "net_income_yoy_pct": None,
    "ebitda_mil": None,
    "ebitda_yoy_pct": None,
    "ebitda_margin_pct": None,
    "eps_diluted": None,
    "currently_profitable": None,
    "operating_cash_flow_mil": None,
    "capital_expenditure_mil": None,
    "free_cash_flow_mil": None,
    "capex_to_ocf_ratio": None,
    "cash_position_mil": None,
    "debt_level": "unknown",
    "fifty_two_week_high": None,
    "fifty_two_week_low": None,
    "shares_yoy_change_pct": None,
    "pe_compression": None,
    "quarterly_history": [],
    "forward_estimates": None,
    "full_year_results": None,
    "business_description": None,
    "revenue_model": None,
    "products": [],
    "is_capital_intensive": False,
    "tam_estimate": None,
    "market_share_estimate": None,
    "competitors": [],
    "competitive_moat": None,
    "headquarters": None,
    "ceo_name": None,
    "ceo_title": None,
    "insider_ownership_pct": None,
    "recent_insider_buying": False,
    "recent_insider_selling": False,
    "primary_growth_drivers": [],
    "latest_quarter_highlights": [],
    "guidance": None,
    "recent_news": [],
    "red_flags": [],
    "risk_factors": [],
    "path_to_profitability_notes": None,
    "valuation_context": None,
    "verdict": None,
    "conviction_score": None,
    "confidence_level": None,
    "key_strengths": [],
    "key_concerns": [],
    "bull_case": [],
    "bear_case": [],
    "saul_rules": None,
    "saul_summary": None,
    "_markdown_only": False,
}


def empty_record(ticker: Optional[str] = None) -> Dict[str, Any]:
    record = {key: (list(value) if isinstance(value, list) else value) for key, value in RECORD_DEFAULTS.items()}
    if ticker:
        record["ticker"] = str(ticker).strip().upper()
    return record


def dig(obj: Any, *paths: str) -> Any:
    for path in paths:
        node = obj
        for key in path.split("."):
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if node is not None:
            return node
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _coerce(kind: str, value: Any, threshold: Optional[float]) -> Any:
    if kind == "millions":
        return coerce_to_millions(value, threshold)
    if kind == "number":
        return coerce_number(value)
    if value is None or value == "":
        return None
    return value


def _quarter_from_month(month: int, year: int) -> str:
    return f"Q{(month - 1) // 3 + 1} {year}"


def date_to_quarter(date_str: Any) -> Optional[str]:
    if not date_str:
        return None
    match = re.search(r"(\d{4})-(\d{2})", str(date_str))
    if not match:
        return str(date_str)
    month = int(match.group(2))
    if not 1 <= month <= 12:
        return str(date_str)
    return _quarter_from_month(month, int(match.group(1)))


def date_to_calendar_quarter(date_str: Any) -> Optional[str]:
    if not date_str:
        return None
    match = re.search(r"(\d{4})-(\d{2})-(\d{2})", str(date_str))
    if not match:
        return None
    try:
        end_date = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None
    # shift to the approximate midpoint of the three-month period
    mid_date = end_date - timedelta(days=42)
    return _quarter_from_month(mid_date.month, mid_date.year)


def normalize_company(
    raw: Dict[str, Any],
    ticker: Optional[str] = None,
    raw_dollar_threshold: Optional[float] = None,
) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError("company document must be a JSON object")

    q = _as_dict(raw.get("quantitative"))
    qual = _as_dict(raw.get("qualitative"))
    ev = _as_dict(raw.get("evaluation"))
    threshold = raw_dollar_threshold

    result = empty_record(raw.get("ticker") or ticker or "UNKNOWN")
    result["company_name"] = raw.get("company_name") or raw.get("companyName") or result["ticker"]
    result["fetch_date"] = raw.get("fetch_date") or raw.get("fetchDate")

    for field, (kind, paths) in FIELD_PATHS.items():
        result[field] = _coerce(kind, dig(q, *paths), threshold)

    result["price"] = _extract_price(q, raw)
    result["price_source"] = "report" if result["price"] is not None else None
    result["market_cap_mil"] = _extract_market_cap(q)
    result["debt_level"] = _extract_debt_level(q)
    result["pe_compression"] = _extract_pe_compression(q)
    result["quarterly_history"] = _extract_quarterly_history(q, threshold)
    result["forward_estimates"] = _extract_forward_estimates(q, threshold)
    result["full_year_results"] = _extract_full_year_results(q, threshold)

    for field, paths in QUALITATIVE_PATHS.items():
        result[field] = dig(qual, *paths) or None

    result["business_description"] = _extract_business_description(qual)
    result["revenue_model"] = _extract_revenue_model(qual)
    result["products"] = _extract_products(qual)
    result["is_capital_intensive"] = _extract_capital_intensive(qual)
    result["competitors"] = _name_list(dig(qual, "market.competitors"))
    result["ceo_name"], result["ceo_title"] = _extract_ceo(qual)
    result["insider_ownership_pct"] = coerce_number(
        dig(
            qual,
            "management.insider_ownership",
            "management.insider_ownership_pct",
            "management.total_insider_ownership_pct",
        )
    )
    result["recent_insider_buying"] = bool(dig(qual, "management.recent_insider_buying"))
    result["recent_insider_selling"] = bool(dig(qual, "management.recent_insider_selling"))
    result["primary_growth_drivers"] = _extract_growth_drivers(qual)
    result["latest_quarter_highlights"] = _extract_array(
        qual, "recent_developments.latest_quarter_highlights", "recent_developments"
    )
    result["recent_news"] = _extract_array(qual, "recent_developments.recent_news")
    result["red_flags"] = _extract_array(qual, "recent_developments.red_flags")
    result["risk_factors"] = _extract_risk_factors(qual)
    result["currently_profitable"] = _extract_profitable_status(qual)

    verdict = ev.get("verdict")
    result["verdict"] = str(verdict).strip().upper() if verdict else None
    result["conviction_score"] = coerce_number(ev.get("conviction_score")) or None
    result["confidence_level"] = ev.get("confidence_level") or None
    strengths = ev.get("key_strengths") if isinstance(ev.get("key_strengths"), list) else []
    concerns = ev.get("key_concerns") if isinstance(ev.get("key_concerns"), list) else []
    result["key_strengths"] = list(strengths)
    result["key_concerns"] = list(concerns)
    result["bull_case"] = list(strengths)
    result["bear_case"] = list(concerns)
    rules = ev.get("rule_statuses")
    result["saul_rules"] = dict(rules) if isinstance(rules, dict) and rules else None
    result["saul_summary"] = compute_saul_summary(result["saul_rules"])
    return result


def _extract_price(q: Dict[str, Any], raw: Dict[str, Any]) -> Optional[float]:
    price = coerce_number(dig(q, "price", "price_and_valuation.current_price"))
    if price:
        return price
    return coerce_number(raw.get("current_stock_price"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _extract_market_cap(q: Dict[str, Any]) -> Optional[float]:
    cap_mil = dig(q, "market_cap_millions")
    if _is_number(cap_mil):
        return float(cap_mil)

    cap_bil = dig(q, "price_and_valuation.market_cap_billions", "market_cap_billions")
    if _is_number(cap_bil):
        return float(cap_bil) * 1000

    cap = dig(q, "market_cap", "price_and_valuation.market_cap")
    if cap is None:
        return None
    if _is_number(cap):
        if cap > 1_000_000_000:
            return cap / 1_000_000
        return float(cap)
    return coerce_number(cap)


def _extract_debt_level(q: Dict[str, Any]) -> str:
    level = dig(q, "debt_level", "balance_sheet.debt_level")
    if isinstance(level, str) and level.strip().lower() in DEBT_LEVELS:
        return level.strip().lower()

    debt_raw = dig(q, "balance_sheet.total_debt")
    if debt_raw is None or debt_raw == "N/A":
        return "unknown"
    debt = coerce_number(debt_raw)
    if not debt:
        return "none"
    cash = coerce_number(dig(q, "balance_sheet.total_cash", "cash_and_equivalents"))
    if cash is not None and debt < cash * 0.3:
        return "low"
    if cash is not None and debt < cash:
        return "moderate"
    return "high"


def _extract_pe_compression(q: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    pca = dig(q, "pe_compression_analysis")
    if not isinstance(pca, dict) or not pca:
        return None
    return {
        "trailing_pe": coerce_number(pca.get("trailing_pe")),
        "run_rate_pe": coerce_number(pca.get("run_rate_pe")),
        "forward_pe": coerce_number(pca.get("forward_pe")),
        "trailing_to_run_rate": coerce_number(pca.get("trailing_to_run_rate_compression")),
        "run_rate_to_forward": coerce_number(pca.get("run_rate_to_forward_compression")),
        "total_compression": coerce_number(pca.get("total_compression")),
        "interpretation": pca.get("interpretation") or None,
    }


def _extract_quarterly_history(q: Dict[str, Any], threshold: Optional[float]) -> List[Dict[str, Any]]:
    history = q.get("quarterly_history")
    if not isinstance(history, list):
        return []

    entries: List[Dict[str, Any]] = []
    for entry in history:
        if not isinstance(entry, dict):
            continue
        quarter_end = entry.get("quarter_end") or entry.get("quarter_end_date") or entry.get("date")
        quarter = (
            entry.get("quarter")
            or date_to_quarter(entry.get("date"))
            or date_to_quarter(quarter_end)
            or "Unknown"
        )
        yoy = entry.get("revenue_yoy_pct")
        qoq = entry.get("revenue_qoq_pct")
        entries.append(
            {
                "quarter": quarter,
                "calendar_quarter": date_to_calendar_quarter(quarter_end),
                "quarter_end": quarter_end,
                "revenue_mil": coerce_to_millions(entry.get("revenue"), threshold),
                "revenue_yoy_pct": coerce_number(yoy if yoy is not None else entry.get("yoy_growth")),
                "revenue_qoq_pct": coerce_number(qoq if qoq is not None else entry.get("qoq_growth")),
                "ebitda_mil": coerce_to_millions(entry.get("ebitda"), threshold),
                "ebitda_margin_pct": coerce_number(entry.get("ebitda_margin_pct")),
                "gross_margin_pct": coerce_number(entry.get("gross_margin_pct")),
                "notes": entry.get("notes") or None,
            }
        )
    return entries


def _extract_forward_estimates(q: Dict[str, Any], threshold: Optional[float]) -> Optional[Dict[str, Any]]:
    estimates = dig(q, "forward_estimates")
    if not isinstance(estimates, dict):
        eps_2025 = coerce_number(dig(q, "estimated_eps_2025"))
        eps_growth = coerce_number(dig(q, "estimated_eps_2026_growth_pct"))
        if eps_2025 is None and eps_growth is None:
            return None
        return {"fy2025_eps": eps_2025, "fy2026_eps_growth_pct": eps_growth}
    return {
        "fy2025_revenue_mil": coerce_to_millions(estimates.get("fy2025_revenue"), threshold),
        "fy2025_eps": coerce_number(estimates.get("fy2025_eps")),
        "fy2026_revenue_mil": coerce_to_millions(estimates.get("fy2026_revenue"), threshold),
        "fy2026_eps": coerce_number(estimates.get("fy2026_eps")),
        "fy2026_revenue_growth_pct": coerce_number(estimates.get("fy2026_revenue_growth_pct")),
    }


def _extract_full_year_results(q: Dict[str, Any], threshold: Optional[float]) -> Optional[Dict[str, Any]]:
    results = dig(q, "full_year_results")
    if not isinstance(results, dict):
        return None
    output: Dict[str, Any] = {}
    for period, values in results.items():
        values = _as_dict(values)
        output[period] = {
            "revenue_mil": coerce_to_millions(values.get("revenue"), threshold),
            "revenue_yoy_pct": coerce_number(values.get("revenue_yoy_pct")),
            "ebitda_mil": coerce_to_millions(values.get("ebitda"), threshold),
            "ebitda_yoy_pct": coerce_number(values.get("ebitda_yoy_pct")),
            "net_income_mil": coerce_to_millions(values.get("net_income"), threshold),
        }
    return output


def _name_list(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    names: List[str] = []
    for item in items:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict) and item.get("name"):
            names.append(str(item["name"]))
        else:
            names.append(str(item))
    return names


def _extract_business_description(qual: Dict[str, Any]) -> Optional[str]:
    model = qual.get("business_model")
    if not model:
        return None
    if isinstance(model, str):
        return model
    if isinstance(model, dict):
        return model.get("description") or model.get("summary") or model.get("company_description") or None
    return None


def _revenue_streams(qual: Dict[str, Any]) -> List[Dict[str, Any]]:
    streams = qual.get("revenue_streams")
    if not isinstance(streams, list):
        return []
    return [s for s in streams if isinstance(s, dict)]


def _stream_labels(streams: List[Dict[str, Any]], *keys: str) -> List[str]:
    labels = []
    for stream in streams:
        value = next((stream[k] for k in keys if stream.get(k) not in (None, "")), None)
        labels.append(str(value) if value is not None else "")
    return labels


def _extract_revenue_model(qual: Dict[str, Any]) -> Optional[str]:
    model = qual.get("business_model")
    if isinstance(model, dict):
        return model.get("revenue_model") or None
    labels = [label for label in _stream_labels(_revenue_streams(qual), "stream", "name") if label]
    if labels:
        return ", ".join(labels)
    return None


def _extract_products(qual: Dict[str, Any]) -> List[str]:
    model = qual.get("business_model")
    if isinstance(model, dict):
        products = model.get("products") or model.get("key_products") or []
        if isinstance(products, list):
            return _name_list(products)
    return _stream_labels(_revenue_streams(qual), "stream", "description")


def _extract_capital_intensive(qual: Dict[str, Any]) -> bool:
    model = qual.get("business_model")
    if isinstance(model, dict) and "is_capital_intensive" in model:
        return bool(model["is_capital_intensive"])
    return False


def _extract_ceo(qual: Dict[str, Any]):
    ceo = dig(qual, "management.ceo")
    executives = dig(qual, "management.key_executives")
    first_exec = executives[0] if isinstance(executives, list) and executives and isinstance(executives[0], dict) else {}

    if isinstance(ceo, dict):
        return ceo.get("name") or None, ceo.get("title") or None
    name = ceo if isinstance(ceo, str) and ceo else first_exec.get("name") or None
    title = dig(qual, "management.ceo_title") or first_exec.get("title") or None
    return name, title


def _extract_growth_drivers(qual: Dict[str, Any]) -> List[str]:
    drivers = qual.get("growth_drivers")
    if isinstance(drivers, list):
        return [d if isinstance(d, str) else str(d) for d in drivers]
    if isinstance(drivers, dict) and isinstance(drivers.get("primary_drivers"), list):
        return list(drivers["primary_drivers"])
    return []


def _extract_array(qual: Dict[str, Any], *paths: str) -> List[str]:
    for path in paths:
        value = dig(qual, path)
        if not isinstance(value, list):
            continue
        items: List[str] = []
        for item in value:
            if isinstance(item, str):
                items.append(item)
            elif isinstance(item, dict):
                items.append(item.get("details") or item.get("description") or json.dumps(item, ensure_ascii=False))
            else:
                items.append(str(item))
        return items
    return []


def _extract_risk_factors(qual: Dict[str, Any]) -> List[Dict[str, str]]:
    factors = qual.get("risk_factors")
    if isinstance(factors, list):
        risks = []
        for item in factors:
            if isinstance(item, dict):
                risks.append(
                    {
                        "category": item.get("category") or "General",
                        "description": item.get("description") or str(item),
                        "severity": item.get("severity") or "Medium",
                    }
                )
            else:
                risks.append({"category": "General", "description": str(item), "severity": "Medium"})
        return risks

    concerns = qual.get("risks_and_concerns")
    if isinstance(concerns, list):
        return [{"category": "General", "description": str(r), "severity": "Medium"} for r in concerns]

    flags = dig(qual, "recent_developments.red_flags")
    if isinstance(flags, list):
        return [{"category": "Warning", "description": str(r), "severity": "Medium"} for r in flags]
    return []


def _profitability_from_text(text: Any) -> Optional[bool]:
    text = str(text or "")
    if re.search(r"\b(?:un|not\s+|non-?)profitable\b", text, flags=re.IGNORECASE):
        return False
    if re.search(r"profitable", text, flags=re.IGNORECASE):
        return True
    return None


def _extract_profitable_status(qual: Dict[str, Any]) -> Optional[bool]:
    path = qual.get("path_to_profitability")
    if isinstance(path, dict):
        if "currently_profitable" in path:
            return bool(path["currently_profitable"])
        status = _profitability_from_text(path.get("current_status"))
        if status is not None:
            return status
    return _profitability_from_text(dig(qual, "financial_health.profitability"))
