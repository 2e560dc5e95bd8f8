import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import requests
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .catalog import CompanyCatalog
from .config import AppConfig, load_config
from .live_overlay import apply_live_prices, overlay_price
from .report_source import LocalReportSource, load_portfolio_holdings
from .sheets_poller import SheetsPoller

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class PriceOverlayRequest(BaseModel):
    prices: Dict[str, float]


def build_catalog(config: AppConfig) -> CompanyCatalog:
    return CompanyCatalog(
        LocalReportSource(config.data_dir),
        holdings=lambda: load_portfolio_holdings(config.portfolio_path),
        raw_dollar_threshold=config.raw_dollar_threshold,
        log_dir=config.load_log_dir or None,
    )


def build_poller(config: AppConfig) -> Optional[SheetsPoller]:
    if not config.sheets_csv_url:
        return None
    return SheetsPoller(
        config.sheets_csv_url,
        timeout=config.sheets_timeout_seconds,
        max_retries=config.sheets_max_retries,
        interval_seconds=config.sheets_poll_interval_seconds,
    )


def create_app(
    catalog: Optional[CompanyCatalog] = None,
    poller: Optional[SheetsPoller] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    config = config or load_config()
    catalog = catalog or build_catalog(config)
    if poller is None:
        poller = build_poller(config)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logging.basicConfig(level=logging.DEBUG if config.debug else logging.INFO, format=LOG_FORMAT)
        catalog.load_all()
        catalog.start_auto_refresh(config.data_refresh_interval_seconds)
        if poller is not None:
            poller.start_polling()
        try:
            yield
        finally:
            catalog.stop_auto_refresh()
            if poller is not None:
                poller.stop_polling()

    app = FastAPI(title="Portfolio Dashboard", lifespan=lifespan)

    def _live_prices() -> Dict[str, float]:
        return poller.live_prices() if poller is not None else {}

    @app.get("/api/portfolio")
    def portfolio(live: bool = False):
        companies = catalog.get_all()
        if live:
            companies = apply_live_prices(companies, _live_prices())
        return JSONResponse(
            {
                "companies": companies,
                "count": len(companies),
                "holdings": catalog.holdings,
                "last_updated": catalog.last_load_time,
            }
        )

    @app.get("/api/stock/{ticker}")
    def stock(ticker: str, live: bool = False):
        found = catalog.get_by_ticker(ticker)
        if not found or found["record"] is None:
            raise HTTPException(status_code=404, detail=f"Ticker {ticker} not found")
        company = found["record"]
        if live:
            price = _live_prices().get(company["ticker"])
            if price is not None:
                company = overlay_price(company, price)
        return JSONResponse(
            {
                "company": company,
                "analysis": found["analysis"],
                "raw_markdown": found["raw_markdown"],
            }
        )

    @app.get("/api/refresh")
    def refresh():
        companies = catalog.refresh()
        return {
            "message": "Data refreshed",
            "count": len(companies),
            "last_updated": catalog.last_load_time,
        }

    @app.get("/api/tickers")
    def tickers():
        return {"portfolio": catalog.holdings, "available": catalog.available_tickers()}

    @app.post("/api/overlay")
    def overlay(payload: PriceOverlayRequest):
        companies = apply_live_prices(catalog.get_all(), payload.prices)
        return JSONResponse({"companies": companies, "count": len(companies)})

    @app.get("/api/live-portfolio")
    def live_portfolio():
        if poller is None:
            return {"stocks": [], "cash": None, "portfolio_metrics": {}, "last_fetch_time": None, "enabled": False}
        return poller.get_live_data()

    @app.get("/api/live-portfolio/refresh")
    def live_portfolio_refresh():
        if poller is None:
            raise HTTPException(status_code=503, detail="Sheets polling is not configured")
        try:
            return poller.force_refresh()
        except requests.RequestException as exc:
            logger.error("Forced sheet refresh failed: %s", exc)
            raise HTTPException(status_code=502, detail=f"Sheet fetch failed: {exc}")

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "companies_loaded": len(catalog.get_all()),
            "last_updated": catalog.last_load_time,
            "live_prices": len(_live_prices()),
        }

    return app


app = create_app()
