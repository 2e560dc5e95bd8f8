import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .markdown_parser import extract_analysis
from .normalizer import normalize_company
from .periodic import PeriodicWorker
from .reconcile import backfill_quarter_end_dates, reconcile
from .report_source import ReportDocuments
from .run_logger import log_event

logger = logging.getLogger(__name__)


HoldingsSpec = Union[Sequence[str], Callable[[], Sequence[str]], None]


@dataclass
class CatalogSnapshot:
    companies: List[Dict[str, Any]] = field(default_factory=list)
    analyses: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    raw_markdown: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)
    holdings: List[str] = field(default_factory=list)
    last_load_time: Optional[str] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_document(document: Any) -> Dict[str, Any]:
    if isinstance(document, (bytes, bytearray)):
        document = document.decode("utf-8")
    if isinstance(document, str):
        document = json.loads(document)
    if not isinstance(document, dict):
        raise ValueError("company document must be a JSON object")
    return document


class CompanyCatalog:
    def __init__(
        self,
        source: Any,
        holdings: HoldingsSpec = None,
        raw_dollar_threshold: Optional[float] = None,
        log_dir: Optional[str] = None,
    ) -> None:
        self.source = source
        self._holdings_source = holdings
        self.raw_dollar_threshold = raw_dollar_threshold
        self.log_dir = log_dir
        self._lock = threading.Lock()
        self._snapshot: Optional[CatalogSnapshot] = None
        self._refresher: Optional[PeriodicWorker] = None

    def _resolve_holdings(self) -> List[str]:
        source = self._holdings_source
        if callable(source):
            source = source()
        return [str(t).strip().upper() for t in (source or []) if str(t).strip()]

    def _publish(self, snapshot: CatalogSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def _current(self) -> CatalogSnapshot:
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            self.load_all()
            with self._lock:
                snapshot = self._snapshot
        return snapshot

    def load_entity(self, docs: ReportDocuments) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]], List[str]]:
        ticker = docs.ticker.upper()
        errors: List[str] = []

        json_record = None
        if docs.primary_json is not None:
            try:
                raw = _parse_document(docs.primary_json)
                json_record = normalize_company(raw, ticker, self.raw_dollar_threshold)
            except (ValueError, TypeError) as exc:
                errors.append(f"JSON parse error: {exc}")
                logger.warning("%s: JSON error - %s", ticker, exc)
        if json_record is not None and docs.secondary_json is not None:
            json_record = backfill_quarter_end_dates(json_record, docs.secondary_json)

        analysis = None
        if docs.markdown is not None:
            if isinstance(docs.markdown, str):
                analysis = extract_analysis(docs.markdown, ticker, self.raw_dollar_threshold)
            else:
                errors.append("MD parse error: markdown is not text")
                logger.warning("%s: MD error - markdown is not text", ticker)

        record = reconcile(json_record, analysis)
        return record, analysis, errors

    def load_all(self) -> List[Dict[str, Any]]:
        logger.info("Loading all company data...")
        holdings = self._resolve_holdings()
        snapshot = CatalogSnapshot(holdings=holdings)

        try:
            tickers = self.source.list_entities()
        except OSError as exc:
            logger.error("Catalog load failed: %s", exc)
            snapshot.errors["*"] = [str(exc)]
            snapshot.last_load_time = _now_iso()
            self._publish(snapshot)
            self._audit(snapshot)
            return []

        for ticker in tickers:
            ticker = str(ticker).upper()
            if holdings and ticker not in holdings:
                continue
            try:
                record, analysis, errors = self.load_entity(self.source.read_entity(ticker))
            except Exception as exc:
                # one bad entity never aborts the batch
                logger.exception("%s: load failed", ticker)
                snapshot.errors[ticker] = [f"load error: {exc}"]
                continue

            if errors:
                snapshot.errors[ticker] = errors
            if record is not None:
                snapshot.companies.append(record)
            if analysis is not None:
                snapshot.analyses[ticker] = analysis
                snapshot.raw_markdown[ticker] = analysis["raw_markdown"]

        snapshot.companies.sort(key=lambda c: c["ticker"])
        snapshot.last_load_time = _now_iso()
        self._publish(snapshot)
        logger.info("Loaded %d companies, %d analyses", len(snapshot.companies), len(snapshot.analyses))
        self._audit(snapshot)
        return list(snapshot.companies)

    def _audit(self, snapshot: CatalogSnapshot) -> None:
        if not self.log_dir:
            return
        log_event(
            self.log_dir,
            "catalog_load",
            {
                "companies": len(snapshot.companies),
                "analyses": len(snapshot.analyses),
                "errors": snapshot.errors,
                "last_load_time": snapshot.last_load_time,
            },
        )

    def get_all(self) -> List[Dict[str, Any]]:
        return list(self._current().companies)

    def get_by_ticker(self, ticker: str) -> Optional[Dict[str, Any]]:
        key = (ticker or "").strip().upper()
        snapshot = self._current()
        record = next((c for c in snapshot.companies if c["ticker"] == key), None)
        analysis = snapshot.analyses.get(key)
        if record is None and analysis is None:
            return None
        return {
            "record": record,
            "analysis": analysis,
            "raw_markdown": snapshot.raw_markdown.get(key),
        }

    def refresh(self) -> List[Dict[str, Any]]:
        return self.load_all()

    def available_tickers(self) -> List[str]:
        return [c["ticker"] for c in self._current().companies]

    @property
    def last_load_time(self) -> Optional[str]:
        with self._lock:
            return self._snapshot.last_load_time if self._snapshot else None

    @property
    def holdings(self) -> List[str]:
        with self._lock:
            if self._snapshot is not None:
                return list(self._snapshot.holdings)
        return self._resolve_holdings()

    @property
    def errors(self) -> Dict[str, List[str]]:
        with self._lock:
            return dict(self._snapshot.errors) if self._snapshot else {}

    def start_auto_refresh(self, interval_seconds: float) -> bool:
        if self._refresher is not None and self._refresher.running:
            return False
        self._refresher = PeriodicWorker(interval_seconds, self.refresh, name="catalog-refresh")
        return self._refresher.start()

    def stop_auto_refresh(self) -> None:
        if self._refresher is not None:
            self._refresher.stop(timeout=1)
            self._refresher = None
