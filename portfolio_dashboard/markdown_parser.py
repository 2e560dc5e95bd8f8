"""Field extraction from investment-analysis Markdown reports.

Two heading conventions are in circulation:
  "# Company Name (TICKER)" with "**Verdict: STATUS**" and bold labels
  "# TICKER Investment Analysis" with "**Verdict:** STATUS" and "- Label: value" bullets
"""
import re
from typing import Any, Callable, Dict, List, Optional

from .coercion import RAW_DOLLAR_THRESHOLD, coerce_number, coerce_to_millions, round_half_up
from .saul_scoring import compute_saul_summary


VERDICTS = {"PASS", "CAUTION", "DISQUALIFIED", "FAIL", "STRONG PASS", "WATCH"}

STATUS_WORDS = r"PASS|FAIL|WARNING|CAUTION|N/A|UNCLEAR|INSUFFICIENT[_ ]DATA|PARTIAL|CONTEXT"

STATUS_GLYPHS = "✅❌⚠️⭕ℹ⚪\U0001F7E1\U0001F7E2\U0001F534"

RULE_PATTERNS = [
    # | R_001 (desc) | [PASS] | evidence |
    re.compile(
        r"\|\s*\*?\*?R[_-]?(\d+)([A-Za-z]?)\s*[^|]*\|\s*\[?(" + STATUS_WORDS + r")\]?\s*\|",
        re.IGNORECASE,
    ),
    # | R_001: desc | ✅ PASS | evidence |
    re.compile(
        r"\|\s*\*?\*?R[_-]?(\d+)([A-Za-z]?)\s*[^|]*\|\s*["
        + STATUS_GLYPHS
        + r"]*\s*\*?\*?("
        + STATUS_WORDS
        + r")\*?\*?\s*\|",
        re.IGNORECASE,
    ),
    # **R_001 - Rule name: PASS**
    re.compile(
        r"\*\*R[_-]?(\d+)([A-Za-z]?)\s*[-–—:]\s*[^*]*?:\s*(" + STATUS_WORDS + r")\*\*",
        re.IGNORECASE,
    ),
]

# field -> ordered patterns; group(1) holds the value
FIELD_PATTERNS: Dict[str, List[str]] = {
    "ticker": [
        r"^#\s+.+?\((\w+)\)",
        r"^#\s+(\w+)\s+Investment Analysis",
    ],
    "date": [
        r"\*\*Date:\*\*\s*(.+?)(?:\s*\||\s*$)",
        r"^\s*[-*]\s*Date:\s*(.+?)(?:\s*\||\s*$)",
    ],
    "price": [
        r"\*\*Price:\*\*\s*\$?([\d,.]+)",
        r"\*\*Price\*\*:\s*\$?([\d,.]+)",
        r"^\s*[-*]\s*(?:Current )?Price:\s*\$?([\d,.]+)",
    ],
    "market_cap": [
        r"\*\*Market Cap:\*\*\s*\$?([\d,.]+[BMKbmk]?)",
        r"\*\*Market Cap\*\*:\s*\$?([\d,.]+[BMKbmk]?)",
        r"^\s*[-*]\s*Market Cap:\s*\$?([\d,.]+[BMKbmk]?)",
    ],
    "verdict": [
        r"\*\*Verdict:?\s*\*?\*?\s*(STRONG\s*PASS|PASS|CAUTION|DISQUALIFIED|FAIL|WATCH)",
        r"^\s*[-*]?\s*Verdict:\s*(STRONG\s*PASS|PASS|CAUTION|DISQUALIFIED|FAIL|WATCH)",
    ],
    "conviction_score": [
        r"\*\*Conviction Score:\*\*\s*([\d.]+)\s*/\s*10",
        r"Conviction(?: Score)?:?\s*\*?\*?\s*([\d.]+)\s*/\s*10",
    ],
    "gross_margin_pct": [r"(?:\*\*)?Gross Margin:?\*?\*?\s*(-?[\d.]+)%"],
    "net_profit_margin_pct": [r"(?:\*\*)?Net (?:Profit )?Margin:?\*?\*?\s*(-?[\d.]+)%"],
    "ebitda_margin_pct": [r"(?:\*\*)?(?:Adjusted )?EBITDA Margin:?\*?\*?\s*~?(-?[\d.]+)%"],
    "operating_leverage": [r"Operating Leverage:?\s*\*?\*?\s*(-?[\d.]+)x?"],
    "free_cash_flow": [r"(?:\*\*)?Free Cash Flow:?\*?\*?\s*\$?(-?[\d,.]+[BMK]?)"],
    "dilution_pct": [r"(?:\*\*)?Dilution:?\*?\*?\s*([+-]?[\d.]+)%"],
    "fcf_margin_pct": [r"(?:\*\*)?FCF Margin:?\*?\*?\s*(-?[\d.]+)%"],
    "trailing_pe": [r"Trailing P/E:?\s*\*?\*?\s*([\d.]+)x"],
    "run_rate_pe": [r"Run[- ]?Rate P/E:?\s*\*?\*?\s*([\d.]+)x"],
    "forward_pe": [r"Forward P/E[^:\n]*:?\s*\*?\*?\s*([\d.]+)x"],
    "normalized_pe": [r"Normalized P/E:?\s*\*?\*?\s*([\d.]+)x"],
    "price_to_sales": [r"(?:Price-to-Sales|P/S):?\s*\*?\*?\s*([\d.]+)x"],
    "cac": [
        r"\b(?:CAC|customer acquisition cost)\b[^$\n]*\$([\d,]+(?:\.\d+)?)",
        r"\b(?:CAC|customer acquisition cost)\b[^$\n\d]*([\d,]+(?:\.\d+)?)",
    ],
    "arpu": [
        r"\bARPU\b[^$\n]*\$([\d,]+(?:\.\d+)?)",
        r"\bARPU\b[^$\n\d]*([\d,]+(?:\.\d+)?)",
    ],
}

FIELD_FLAGS = {
    "ticker": re.MULTILINE,
    "date": re.MULTILINE,
    "price": re.MULTILINE,
    "market_cap": re.MULTILINE,
    "verdict": re.IGNORECASE | re.MULTILINE,
    "cac": re.IGNORECASE,
    "arpu": re.IGNORECASE,
}

REVENUE_PATTERN = r"(?:\*\*)?Revenue:?\*?\*?\s*\$?([\d,.]+)([BMK]?)\s*\(([^)]+)\)"
YOY_PATTERN = r"([+-]?[\d.]+)%\s*YoY"
QOQ_PATTERN = r"([+-]?[\d.]+)%\s*QoQ"

HISTORY_SECTION_PATTERN = (
    r"\*?\*?Quarterly Revenue History:?\*?\*?\s*\n(.*?)(?=\n\*\*|\n##|\n\n[A-Z]|\Z)"
)
HISTORY_LINE_PATTERN = r"[-*]\s*Q([1-4])\s*(\d{4}):\s*\$?([\d,.]+)([BMK]?)\s*(?:\(([^)]*)\))?"

RISKS_SECTION_PATTERN = r"##\s*Risks?(?:\s*(?:&|and)\s*Concerns?)?\s*\n(.*?)(?=\n##|\Z)"


def _first_match(
    text: str,
    patterns: List[str],
    flags: int = 0,
    convert: Callable[[str], Any] = coerce_number,
) -> Any:
    for pattern in patterns:
        match = re.search(pattern, text, flags=flags)
        if not match:
            continue
        value = convert(match.group(1))
        if value is not None:
            return value
    return None


def extract_field(text: str, field: str, convert: Callable[[str], Any] = coerce_number) -> Any:
    return _first_match(text, FIELD_PATTERNS[field], FIELD_FLAGS.get(field, 0), convert)


def _text(value: str) -> Optional[str]:
    value = value.strip()
    return value or None


def extract_ticker(md: str) -> Optional[str]:
    ticker = extract_field(md, "ticker", _text)
    return ticker.upper() if ticker else None


def extract_date(md: str) -> Optional[str]:
    return extract_field(md, "date", _text)


def extract_verdict(md: str) -> Optional[str]:
    verdict = extract_field(md, "verdict", lambda raw: re.sub(r"\s+", " ", raw.strip().upper()))
    if verdict == "STRONGPASS":
        verdict = "STRONG PASS"
    return verdict if verdict in VERDICTS else None


def extract_market_cap_mil(md: str, threshold: Optional[float] = None) -> Optional[float]:
    return extract_field(md, "market_cap", lambda raw: coerce_to_millions(raw, threshold))


def _percent_in(text: str, pattern: str) -> Optional[float]:
    match = re.search(pattern, text)
    return coerce_number(match.group(1)) if match else None


def extract_financials(md: str, threshold: Optional[float] = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "revenue_mil": None,
        "revenue_yoy_pct": None,
        "revenue_qoq_pct": None,
    }
    match = re.search(REVENUE_PATTERN, md)
    if match:
        result["revenue_mil"] = coerce_to_millions(match.group(1) + match.group(2), threshold)
        result["revenue_yoy_pct"] = _percent_in(match.group(3), YOY_PATTERN)
        result["revenue_qoq_pct"] = _percent_in(match.group(3), QOQ_PATTERN)

    for field in (
        "gross_margin_pct",
        "net_profit_margin_pct",
        "ebitda_margin_pct",
        "operating_leverage",
        "dilution_pct",
        "fcf_margin_pct",
    ):
        result[field] = extract_field(md, field)
    result["free_cash_flow_mil"] = extract_field(
        md, "free_cash_flow", lambda raw: coerce_to_millions(raw, threshold)
    )
    return result


def extract_pe_values(md: str) -> Optional[Dict[str, Any]]:
    result: Dict[str, Any] = {}
    for field in ("trailing_pe", "run_rate_pe", "forward_pe", "normalized_pe", "price_to_sales"):
        value = extract_field(md, field)
        if value is not None:
            result[field] = value
    if not result:
        return None

    trailing = result.get("trailing_pe")
    run_rate = result.get("run_rate_pe")
    forward = result.get("forward_pe")
    if trailing and run_rate:
        result["trailing_to_run_rate"] = round_half_up(trailing - run_rate, 2)
    if run_rate and forward:
        result["run_rate_to_forward"] = round_half_up(run_rate - forward, 2)
    return result


def extract_unit_economics(md: str) -> Optional[Dict[str, Any]]:
    result: Dict[str, Any] = {}
    cac = extract_field(md, "cac")
    arpu = extract_field(md, "arpu")
    if cac is not None:
        result["cac"] = cac
    if arpu is not None:
        result["arpu"] = arpu
    if cac and arpu:
        result["arpu_to_cac_ratio"] = round_half_up(arpu / cac, 1)
    return result or None


def normalize_rule_id(digits: str, letter: str = "") -> str:
    return f"R_{int(digits):03d}{letter.upper()}"


def extract_saul_rules(md: str) -> Dict[str, str]:
    rules: Dict[str, str] = {}
    for pattern in RULE_PATTERNS:
        for match in pattern.finditer(md):
            rule_id = normalize_rule_id(match.group(1), match.group(2))
            if rule_id in rules:
                continue
            rules[rule_id] = re.sub(r"\s+", "_", match.group(3).strip().upper())
    return rules


def _section_lines(body: str) -> List[str]:
    lines = []
    for line in body.split("\n"):
        cleaned = re.sub(r"^\s*[-*]\s*", "", line)
        cleaned = re.sub(r"^\d+\.\s*", "", cleaned).strip()
        lines.append(cleaned)
    return lines


def extract_bull_bear_case(md: str, case: str) -> List[str]:
    label = "Bull Case" if case == "bull" else "Bear Case"
    patterns = [
        r"\*\*" + label + r":?\*\*\s*\n(.*?)(?=\n\*\*(?:Bull|Bear)|\n##|\Z)",
        r"##\s*" + label + r"\s*\n(.*?)(?=\n##|\Z)",
    ]
    for pattern in patterns:
        match = re.search(pattern, md, flags=re.IGNORECASE | re.DOTALL)
        if match:
            return [
                line
                for line in _section_lines(match.group(1))
                if line and not line.startswith("|") and not line.startswith("---")
            ]
    return []


def extract_quarterly_history(md: str, threshold: Optional[float] = None) -> List[Dict[str, Any]]:
    section = re.search(HISTORY_SECTION_PATTERN, md, flags=re.IGNORECASE | re.DOTALL)
    if not section:
        return []

    limit = RAW_DOLLAR_THRESHOLD if threshold is None else threshold
    entries: List[Dict[str, Any]] = []
    for line in section.group(1).split("\n"):
        match = re.search(HISTORY_LINE_PATTERN, line)
        if not match:
            continue
        suffix = match.group(4).upper()
        revenue = coerce_number(match.group(3) + suffix)
        if revenue is None:
            continue
        if not suffix and revenue > limit:
            revenue = revenue / 1_000_000
        growth = match.group(5) or ""
        entries.append(
            {
                "quarter": f"Q{match.group(1)} {match.group(2)}",
                "calendar_quarter": None,
                "quarter_end": None,
                "revenue_mil": revenue,
                "revenue_yoy_pct": _percent_in(growth, YOY_PATTERN),
                "revenue_qoq_pct": _percent_in(growth, QOQ_PATTERN),
                "ebitda_mil": None,
                "ebitda_margin_pct": None,
                "gross_margin_pct": None,
                "notes": None,
            }
        )
    return entries


def extract_risks(md: str) -> List[str]:
    match = re.search(RISKS_SECTION_PATTERN, md, flags=re.IGNORECASE | re.DOTALL)
    if not match:
        return []
    return [line for line in _section_lines(match.group(1)) if len(line) > 10]


def extract_analysis(
    markdown_text: Any,
    ticker: Optional[str] = None,
    raw_dollar_threshold: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    if not isinstance(markdown_text, str) or not markdown_text.strip():
        return None

    md = markdown_text
    threshold = raw_dollar_threshold
    rules = extract_saul_rules(md)
    return {
        "ticker": ticker.upper() if ticker else extract_ticker(md),
        "date": extract_date(md),
        "price": extract_field(md, "price"),
        "market_cap_mil": extract_market_cap_mil(md, threshold),
        "verdict": extract_verdict(md),
        "conviction_score": extract_field(md, "conviction_score"),
        "financials": extract_financials(md, threshold),
        "pe_values": extract_pe_values(md),
        "unit_economics": extract_unit_economics(md),
        "saul_rules": rules,
        "saul_summary": compute_saul_summary(rules),
        "bull_case": extract_bull_bear_case(md, "bull"),
        "bear_case": extract_bull_bear_case(md, "bear"),
        "risks": extract_risks(md),
        "quarterly_history": extract_quarterly_history(md, threshold),
        "raw_markdown": md,
    }
