import copy
import csv
import io
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from .coercion import coerce_number, round_half_up
from .periodic import PeriodicWorker

logger = logging.getLogger(__name__)


# 0-indexed columns of a position row
COL_TICKER = 0
COL_SHARES = 1
COL_WEIGHT = 2
COL_PRICE = 3
COL_POSITION_VALUE = 5
COL_AVG_BUY = 13
COL_TOTAL_GAIN_PCT = 15
COL_DAY_CHANGE_DOLLARS = 19
COL_DAY_CHANGE_PCT = 22

MAX_TICKER_LENGTH = 6

# lowercase col-0 label -> portfolio metric
SUMMARY_LABELS = {
    "start of the year": "start_year_value",
    "ytd change": "ytd_change_dollars",
    "percent change": "ytd_change_pct",
    "s&p start year": "sp_start_year",
    "s&p current": "sp_current",
    "s&p % change": "sp_change_pct",
    "me vs s&p": "vs_sp",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _col(cols: List[str], index: int) -> str:
    return cols[index].strip() if index < len(cols) else ""


def parse_sheet_csv(csv_text: str) -> Dict[str, Any]:
    rows = [row for row in csv.reader(io.StringIO(csv_text)) if any(cell.strip() for cell in row)]
    data: Dict[str, Any] = {
        "stocks": [],
        "cash": None,
        "portfolio_metrics": {},
        "last_fetch_time": _now_iso(),
    }
    metrics = data["portfolio_metrics"]

    header = [cell.strip() for cell in rows[0]] if rows else []
    lowered = [cell.lower() for cell in header]
    if "total" in lowered:
        index = lowered.index("total")
        if index + 1 < len(header) and header[index + 1]:
            metrics["total_value"] = coerce_number(header[index + 1])

    for cols in rows[1:]:
        ticker = _col(cols, COL_TICKER).upper()
        if not ticker or len(ticker) > MAX_TICKER_LENGTH:
            break

        shares = coerce_number(_col(cols, COL_SHARES))
        if ticker == "CASH":
            # the shares column carries the dollar amount for cash
            data["cash"] = {"value": shares, "weight_pct": coerce_number(_col(cols, COL_WEIGHT))}
            continue
        if shares is None or shares <= 0:
            continue

        price = coerce_number(_col(cols, COL_PRICE))
        avg_buy = coerce_number(_col(cols, COL_AVG_BUY))
        gain_pct = coerce_number(_col(cols, COL_TOTAL_GAIN_PCT))
        if gain_pct is None and price and avg_buy:
            gain_pct = (price / avg_buy - 1) * 100

        data["stocks"].append(
            {
                "ticker": ticker,
                "shares": shares,
                "weight_pct": coerce_number(_col(cols, COL_WEIGHT)) or 0,
                "current_price": price or 0,
                "avg_buy_price": avg_buy or 0,
                "day_change_pct": coerce_number(_col(cols, COL_DAY_CHANGE_PCT)) or 0,
                "gain_loss_pct": round_half_up(gain_pct, 2) if gain_pct is not None else None,
                "position_value": coerce_number(_col(cols, COL_POSITION_VALUE)) or 0,
            }
        )

    labelled = {}
    for cols in rows:
        label = _col(cols, COL_TICKER).lower()
        if label:
            labelled[label] = cols
    for label, key in SUMMARY_LABELS.items():
        if label in labelled:
            metrics[key] = coerce_number(_col(labelled[label], 1))

    metrics["day_change_pct"] = _day_change_pct(rows, metrics.get("total_value"))
    if metrics["day_change_pct"] is None:
        metrics["day_change_pct"] = _weighted_day_change(data["stocks"])

    if not metrics.get("total_value"):
        cash_value = (data["cash"] or {}).get("value") or 0
        metrics["total_value"] = sum(s["position_value"] for s in data["stocks"]) + cash_value
    return data


def _day_change_pct(rows: List[List[str]], total_value: Optional[float]) -> Optional[float]:
    result = None
    for cols in rows[1:]:
        if _col(cols, COL_TICKER):
            continue
        day_pct = coerce_number(_col(cols, COL_DAY_CHANGE_PCT))
        if day_pct is not None:
            return day_pct
        day_dollars = coerce_number(_col(cols, COL_DAY_CHANGE_DOLLARS))
        if day_dollars is not None and not result and total_value:
            result = day_dollars / total_value * 100
    return result


def _weighted_day_change(stocks: List[Dict[str, Any]]) -> float:
    weighted_sum = 0.0
    weight_sum = 0.0
    for stock in stocks:
        if stock["day_change_pct"] != 0 and stock["weight_pct"] > 0:
            weighted_sum += stock["day_change_pct"] * stock["weight_pct"]
            weight_sum += stock["weight_pct"]
    return weighted_sum / weight_sum if weight_sum > 0 else 0


def fetch_sheet_csv(
    url: str,
    timeout: int = 10,
    max_retries: int = 3,
    get_fn: Optional[Callable[..., Any]] = None,
    backoff_seconds: float = 1.0,
) -> str:
    get = get_fn or requests.get
    last_err: Optional[Exception] = None
    for attempt in range(max_retries + 1):
        try:
            resp = get(url, timeout=timeout)
            resp.raise_for_status()
            return resp.text
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError, requests.exceptions.HTTPError) as exc:
            last_err = exc
            if attempt < max_retries:
                logger.info("Sheet fetch failed (%s), retrying... (%d left)", exc, max_retries - attempt)
                time.sleep(backoff_seconds * min(2 ** attempt, 4))
    raise last_err


class SheetsPoller:
    def __init__(
        self,
        url: str,
        timeout: int = 10,
        max_retries: int = 3,
        interval_seconds: int = 3600,
        get_fn: Optional[Callable[..., Any]] = None,
        backoff_seconds: float = 1.0,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.interval_seconds = interval_seconds
        self._get = get_fn
        self.backoff_seconds = backoff_seconds
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, Any]] = None
        self._worker: Optional[PeriodicWorker] = None

    def _fetch(self) -> Dict[str, Any]:
        csv_text = fetch_sheet_csv(
            self.url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            get_fn=self._get,
            backoff_seconds=self.backoff_seconds,
        )
        data = parse_sheet_csv(csv_text)
        with self._lock:
            self._data = data
        logger.info(
            "Cached %d stocks%s, total: $%s",
            len(data["stocks"]),
            " + cash" if data["cash"] else "",
            f"{data['portfolio_metrics'].get('total_value') or 0:,.2f}",
        )
        return data

    def fetch_and_cache(self) -> bool:
        try:
            self._fetch()
        except requests.RequestException as exc:
            # stale data stays in place
            logger.error("Sheet fetch failed: %s", exc)
            return False
        return True

    def get_live_data(self) -> Dict[str, Any]:
        with self._lock:
            data = self._data
        if data is None:
            return {"stocks": [], "cash": None, "portfolio_metrics": {}, "last_fetch_time": None, "loading": True}
        return copy.deepcopy(data)

    def force_refresh(self) -> Dict[str, Any]:
        self._fetch()
        return self.get_live_data()

    def live_prices(self) -> Dict[str, float]:
        with self._lock:
            stocks = list(self._data["stocks"]) if self._data else []
        return {s["ticker"]: s["current_price"] for s in stocks if s.get("current_price") and s["current_price"] > 0}

    @property
    def last_fetch_time(self) -> Optional[str]:
        with self._lock:
            return self._data["last_fetch_time"] if self._data else None

    def start_polling(self) -> bool:
        if self._worker is not None and self._worker.running:
            return False
        self._worker = PeriodicWorker(self.interval_seconds, self.fetch_and_cache, name="sheets-poller", immediate=True)
        return self._worker.start()

    def stop_polling(self) -> None:
        if self._worker is not None:
            self._worker.stop(timeout=1)
            self._worker = None
