from portfolio_dashboard.config import load_config


ENV_KEYS = [
    "DATA_DIR",
    "PORTFOLIO_PATH",
    "RAW_DOLLAR_THRESHOLD",
    "DATA_REFRESH_INTERVAL_SECONDS",
    "SHEETS_CSV_URL",
    "SHEETS_POLL_INTERVAL_SECONDS",
    "SHEETS_TIMEOUT_SECONDS",
    "SHEETS_MAX_RETRIES",
    "LOAD_LOG_DIR",
    "DEBUG",
]


def _clear_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        # registered first so values loaded from .env are undone too
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def test_load_config_defaults(monkeypatch, tmp_path):
    _clear_env(monkeypatch, tmp_path)
    config = load_config()
    assert config.data_dir == "./reports"
    assert config.portfolio_path == "./portfolio.json"
    assert config.raw_dollar_threshold == 100000.0
    assert config.data_refresh_interval_seconds == 3600
    assert config.sheets_csv_url == ""
    assert config.sheets_poll_interval_seconds == 3600
    assert config.sheets_timeout_seconds == 10
    assert config.sheets_max_retries == 3
    assert config.load_log_dir == ""
    assert config.debug is False


def test_load_config_clamps_and_falls_back(monkeypatch, tmp_path):
    _clear_env(monkeypatch, tmp_path)
    monkeypatch.setenv("SHEETS_POLL_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("SHEETS_MAX_RETRIES", "50")
    monkeypatch.setenv("DATA_REFRESH_INTERVAL_SECONDS", "soon")
    monkeypatch.setenv("RAW_DOLLAR_THRESHOLD", "250000")
    monkeypatch.setenv("DEBUG", "TRUE")
    config = load_config()
    assert config.sheets_poll_interval_seconds == 60
    assert config.sheets_max_retries == 10
    assert config.data_refresh_interval_seconds == 3600
    assert config.raw_dollar_threshold == 250000.0
    assert config.debug is True


def test_load_config_reads_dotenv(monkeypatch, tmp_path):
    _clear_env(monkeypatch, tmp_path)
    (tmp_path / ".env").write_text("DATA_DIR=/srv/reports\nSHEETS_CSV_URL=https://example.com/sheet.csv\n", encoding="utf-8")
    config = load_config()
    assert config.data_dir == "/srv/reports"
    assert config.sheets_csv_url == "https://example.com/sheet.csv"
