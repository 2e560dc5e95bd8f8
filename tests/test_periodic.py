import threading

from portfolio_dashboard.catalog import CompanyCatalog
from portfolio_dashboard.periodic import PeriodicWorker
from tests.helpers.reports import FLAT_DOC, make_source


def test_worker_runs_until_stopped_and_survives_errors():
    ticks = {"count": 0}
    done = threading.Event()

    def tick():
        ticks["count"] += 1
        if ticks["count"] == 1:
            raise RuntimeError("first tick fails")
        done.set()

    worker = PeriodicWorker(0.01, tick, name="test-worker")
    assert worker.start() is True
    assert worker.start() is False
    assert done.wait(2)
    worker.stop(timeout=1)
    assert not worker.running
    assert ticks["count"] >= 2


def test_worker_disabled_for_non_positive_interval():
    worker = PeriodicWorker(0, lambda: None)
    assert worker.start() is False
    assert not worker.running


def test_immediate_worker_runs_before_first_interval():
    done = threading.Event()
    worker = PeriodicWorker(3600, done.set, immediate=True)
    worker.start()
    assert done.wait(2)
    worker.stop(timeout=1)


def test_catalog_auto_refresh_reloads():
    source = make_source(BETA={"json": FLAT_DOC})
    catalog = CompanyCatalog(source)
    catalog.load_all()
    first = catalog.last_load_time
    source.entities["GAMA"] = {"json": {"ticker": "GAMA"}}

    assert catalog.start_auto_refresh(0.01) is True
    try:
        for _ in range(200):
            if "GAMA" in catalog.available_tickers():
                break
            threading.Event().wait(0.01)
    finally:
        catalog.stop_auto_refresh()
    assert "GAMA" in catalog.available_tickers()
    assert catalog.last_load_time >= first
