import os
from dataclasses import dataclass
from dotenv import find_dotenv, load_dotenv


@dataclass
class AppConfig:
    data_dir: str
    portfolio_path: str
    raw_dollar_threshold: float
    data_refresh_interval_seconds: int
    sheets_csv_url: str
    sheets_poll_interval_seconds: int
    sheets_timeout_seconds: int
    sheets_max_retries: int
    load_log_dir: str
    debug: bool


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def load_config() -> AppConfig:
    load_dotenv(find_dotenv(usecwd=True))

    try:
        raw_dollar_threshold = float(os.getenv("RAW_DOLLAR_THRESHOLD", "100000"))
    except ValueError:
        raw_dollar_threshold = 100000.0
    if raw_dollar_threshold <= 0:
        raw_dollar_threshold = 100000.0

    refresh_interval = max(0, _int_env("DATA_REFRESH_INTERVAL_SECONDS", 3600))
    poll_interval = max(60, min(_int_env("SHEETS_POLL_INTERVAL_SECONDS", 3600), 86400))
    sheets_timeout = max(1, _int_env("SHEETS_TIMEOUT_SECONDS", 10))
    sheets_max_retries = max(0, min(_int_env("SHEETS_MAX_RETRIES", 3), 10))

    return AppConfig(
        data_dir=os.getenv("DATA_DIR", "./reports"),
        portfolio_path=os.getenv("PORTFOLIO_PATH", "./portfolio.json"),
        raw_dollar_threshold=raw_dollar_threshold,
        data_refresh_interval_seconds=refresh_interval,
        sheets_csv_url=os.getenv("SHEETS_CSV_URL", "").strip(),
        sheets_poll_interval_seconds=poll_interval,
        sheets_timeout_seconds=sheets_timeout,
        sheets_max_retries=sheets_max_retries,
        load_log_dir=os.getenv("LOAD_LOG_DIR", "").strip(),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )
