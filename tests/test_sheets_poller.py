import pytest
import requests

from portfolio_dashboard.sheets_poller import SheetsPoller, fetch_sheet_csv, parse_sheet_csv
from tests.helpers.fake_http import FakeGet, FakeResponse


def _row(ticker, shares="", weight="", price="", value="", avg="", gain="", day_pct="", day_dollars=""):
    cols = [""] * 23
    cols[0] = ticker
    cols[1] = shares
    cols[2] = weight
    cols[3] = price
    cols[5] = value
    cols[13] = avg
    cols[15] = gain
    cols[19] = day_dollars
    cols[22] = day_pct
    return ",".join(f'"{c}"' if "," in c else c for c in cols)


SHEET_CSV = "\n".join(
    [
        "Ticker,Shares,Weight,,total,\"$125,000.00\"",
        _row("NVDA", "100", "40%", "$130.00", "$13,000.00", "$50.00", "160%", "1.5%"),
        _row("crwd", "20", "30%", "$350.00", "$7,000.00", "$400.00", "", "-0.5%"),
        _row("SOLD", "0", "0%", "$10.00"),
        _row("CASH", "$5,000.00", "10%"),
        _row("", day_pct="0.8%"),
        "",
        "Start of the Year,\"$100,000.00\"",
        "YTD Change,\"$25,000.00\"",
        "Percent Change,25%",
        "S&P Start Year,4700",
        "S&P Current,5100",
        "S&P % Change,8.5%",
        "Me vs S&P,16.5%",
    ]
)


def test_parse_sheet_positions():
    data = parse_sheet_csv(SHEET_CSV)
    tickers = [s["ticker"] for s in data["stocks"]]
    assert tickers == ["NVDA", "CRWD"]
    nvda = data["stocks"][0]
    assert nvda["shares"] == 100.0
    assert nvda["weight_pct"] == 40.0
    assert nvda["current_price"] == 130.0
    assert nvda["position_value"] == 13000.0
    assert nvda["gain_loss_pct"] == 160.0
    assert nvda["day_change_pct"] == 1.5
    crwd = data["stocks"][1]
    assert crwd["gain_loss_pct"] == -12.5
    assert data["cash"] == {"value": 5000.0, "weight_pct": 10.0}


def test_parse_sheet_portfolio_metrics():
    metrics = parse_sheet_csv(SHEET_CSV)["portfolio_metrics"]
    assert metrics["total_value"] == 125000.0
    assert metrics["day_change_pct"] == 0.8
    assert metrics["start_year_value"] == 100000.0
    assert metrics["ytd_change_dollars"] == 25000.0
    assert metrics["ytd_change_pct"] == 25.0
    assert metrics["sp_start_year"] == 4700.0
    assert metrics["sp_current"] == 5100.0
    assert metrics["sp_change_pct"] == 8.5
    assert metrics["vs_sp"] == 16.5


def test_parse_sheet_fallbacks():
    csv_text = "\n".join(
        [
            "Ticker,Shares",
            _row("AAA", "10", "50%", "$10.00", "$100.00", day_pct="2%"),
            _row("BBB", "10", "50%", "$10.00", "$100.00", day_pct="-1%"),
            _row("CASH", "$50.00", "0%"),
        ]
    )
    metrics = parse_sheet_csv(csv_text)["portfolio_metrics"]
    assert metrics["day_change_pct"] == pytest.approx(0.5)
    assert metrics["total_value"] == 250.0


def test_parse_sheet_day_change_from_dollars():
    csv_text = "\n".join(
        [
            "x,total,1000",
            _row("AAA", "10", "100%", "$10.00", "$100.00"),
            _row("", day_dollars="$20.00"),
        ]
    )
    assert parse_sheet_csv(csv_text)["portfolio_metrics"]["day_change_pct"] == 2.0


def test_fetch_sheet_csv_retries_then_succeeds():
    fake_get = FakeGet(
        [
            requests.exceptions.Timeout("timeout"),
            FakeResponse(status_code=503),
            FakeResponse(text="a,b"),
        ]
    )
    text = fetch_sheet_csv("http://sheet", timeout=1, max_retries=3, get_fn=fake_get, backoff_seconds=0)
    assert text == "a,b"
    assert len(fake_get.calls) == 3
    assert fake_get.calls[0][1]["timeout"] == 1


def test_fetch_sheet_csv_raises_after_retries():
    fake_get = FakeGet([requests.exceptions.ConnectionError("down")] * 3)
    with pytest.raises(requests.exceptions.ConnectionError):
        fetch_sheet_csv("http://sheet", max_retries=2, get_fn=fake_get, backoff_seconds=0)
    assert len(fake_get.calls) == 3


def test_poller_caches_and_keeps_stale_data_on_failure():
    fake_get = FakeGet([FakeResponse(text=SHEET_CSV), requests.exceptions.Timeout("slow")])
    poller = SheetsPoller("http://sheet", max_retries=0, get_fn=fake_get, backoff_seconds=0)
    assert poller.get_live_data()["loading"] is True
    assert poller.live_prices() == {}

    assert poller.fetch_and_cache() is True
    assert poller.live_prices() == {"NVDA": 130.0, "CRWD": 350.0}
    first_fetch = poller.last_fetch_time

    assert poller.fetch_and_cache() is False
    assert poller.live_prices() == {"NVDA": 130.0, "CRWD": 350.0}
    assert poller.last_fetch_time == first_fetch


def test_force_refresh_propagates_errors():
    poller = SheetsPoller(
        "http://sheet",
        max_retries=0,
        get_fn=FakeGet([FakeResponse(status_code=500)]),
        backoff_seconds=0,
    )
    with pytest.raises(requests.RequestException):
        poller.force_refresh()
