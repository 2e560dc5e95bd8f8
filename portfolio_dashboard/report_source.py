import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


SKIPPED_DIRS = {"validation"}
DASHBOARD_SUFFIX = "_dashboard_metrics.json"
COMPANY_DATA_SUFFIX = "_company_data.json"


@dataclass
class ReportDocuments:
    ticker: str
    primary_json: Union[str, Dict[str, Any], None] = None
    secondary_json: Union[str, Dict[str, Any], None] = None
    markdown: Optional[str] = None
    primary_name: Optional[str] = None
    markdown_name: Optional[str] = None


class LocalReportSource:
    def __init__(self, reports_dir: Union[str, Path]) -> None:
        self.reports_dir = Path(reports_dir)

    def _company_dirs(self) -> Dict[str, Path]:
        if not self.reports_dir.is_dir():
            raise FileNotFoundError(f"Reports directory not found: {self.reports_dir}")
        dirs: Dict[str, Path] = {}
        for entry in sorted(self.reports_dir.iterdir()):
            if entry.is_dir() and entry.name.lower() not in SKIPPED_DIRS:
                dirs[entry.name.upper()] = entry
        return dirs

    def list_entities(self) -> List[str]:
        tickers = list(self._company_dirs())
        logger.info("Found %d company directories in %s", len(tickers), self.reports_dir)
        return tickers

    def read_entity(self, ticker: str) -> ReportDocuments:
        ticker = ticker.upper()
        dir_path = self._company_dirs().get(ticker)
        docs = ReportDocuments(ticker=ticker)
        if dir_path is None:
            return docs

        files = {f.name.lower(): f for f in dir_path.iterdir() if f.is_file()}
        dashboard = files.get(ticker.lower() + DASHBOARD_SUFFIX)
        company_data = files.get(ticker.lower() + COMPANY_DATA_SUFFIX)

        primary = dashboard or company_data
        if primary is not None:
            docs.primary_json = primary.read_text(encoding="utf-8", errors="replace")
            docs.primary_name = primary.name
        if dashboard is not None and company_data is not None:
            docs.secondary_json = company_data.read_text(encoding="utf-8", errors="replace")

        markdown = _latest_markdown(list(files.values()), ticker)
        if markdown is not None:
            docs.markdown = markdown.read_text(encoding="utf-8", errors="replace")
            docs.markdown_name = markdown.name
        return docs


def _latest_markdown(files: List[Path], ticker: str) -> Optional[Path]:
    prefix = ticker.upper() + "_"
    candidates = [f for f in files if f.name.upper().startswith(prefix) and f.name.upper().endswith(".MD")]
    if not candidates:
        return None
    # TICKER_YYYYMMDD.md sorts by date
    return sorted(candidates, key=lambda f: f.name, reverse=True)[0]


class InMemoryReportSource:
    def __init__(self, entities: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self.entities = {ticker.upper(): dict(docs) for ticker, docs in (entities or {}).items()}

    def list_entities(self) -> List[str]:
        return sorted(self.entities)

    def read_entity(self, ticker: str) -> ReportDocuments:
        ticker = ticker.upper()
        docs = self.entities.get(ticker, {})
        return ReportDocuments(
            ticker=ticker,
            primary_json=docs.get("json"),
            secondary_json=docs.get("secondary"),
            markdown=docs.get("markdown"),
        )


def load_portfolio_holdings(path: Union[str, Path, None]) -> List[str]:
    if not path:
        return []
    try:
        config = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read portfolio file %s, showing all companies: %s", path, exc)
        return []

    holdings = config.get("holdings") if isinstance(config, dict) else None
    if not isinstance(holdings, list):
        return []
    tickers = [str(t).strip().upper() for t in holdings if str(t).strip()]
    logger.info("Portfolio: %d holdings (%s)", len(tickers), ", ".join(tickers))
    return tickers
