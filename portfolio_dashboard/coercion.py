import math
import re
from typing import Any, Optional


RAW_DOLLAR_THRESHOLD = 100_000

NULL_TOKENS = {"", "n/a", "na", "null", "none", "nan", "-", "--", "—"}

SUFFIX_SCALE = {"B": 1000.0, "M": 1.0, "K": 0.001}

_SUFFIXED_RE = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+))([BMK])$", re.IGNORECASE)
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?$", re.IGNORECASE)


def round_half_up(value: float, digits: int = 0):
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5)
    if digits == 0:
        return int(rounded)
    return rounded / factor


def coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            return None
        return number
    if not isinstance(value, str):
        return None

    cleaned = value.strip()
    if cleaned.lower() in NULL_TOKENS:
        return None
    # accounting negative: $(73,620.43)
    negative = "(" in cleaned and ")" in cleaned
    cleaned = re.sub(r"[$,\s()%]", "", cleaned)
    cleaned = cleaned.replace("−", "-").replace("–", "-")
    if not cleaned or cleaned.lower() in NULL_TOKENS:
        return None

    suffixed = _SUFFIXED_RE.match(cleaned)
    if suffixed:
        number = float(suffixed.group(1)) * SUFFIX_SCALE[suffixed.group(2).upper()]
    elif _NUMERIC_RE.match(cleaned):
        number = float(cleaned)
    else:
        return None

    if negative:
        return -abs(number)
    return number


def coerce_to_millions(value: Any, threshold: Optional[float] = None) -> Optional[float]:
    number = coerce_number(value)
    if number is None:
        return None
    limit = RAW_DOLLAR_THRESHOLD if threshold is None else threshold
    if abs(number) > limit:
        return number / 1_000_000
    return number
