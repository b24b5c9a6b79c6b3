import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        investec_base_url: str,
        http_timeout_secs: float,
        sync_window_days: int,
        token_expiry_buffer_secs: int,
        default_pay_day: int,
        openai_base_url: str,
        openai_model: str,
        openai_temperature: float,
        openai_max_tokens: int,
        auto_sync_minutes: int,
        currency_symbol: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.investec_base_url = investec_base_url
        self.http_timeout_secs = http_timeout_secs
        self.sync_window_days = sync_window_days
        self.token_expiry_buffer_secs = token_expiry_buffer_secs
        self.default_pay_day = default_pay_day
        self.openai_base_url = openai_base_url
        self.openai_model = openai_model
        self.openai_temperature = openai_temperature
        self.openai_max_tokens = openai_max_tokens
        self.auto_sync_minutes = auto_sync_minutes
        self.currency_symbol = currency_symbol
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("ZEBRA_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "zebra_finance.db"
    return Settings(
        database_url=os.getenv("ZEBRA_DATABASE_URL", f"sqlite:///{default_db}"),
        timezone=os.getenv("ZEBRA_TIMEZONE", "Africa/Johannesburg"),
        secret_key=os.getenv(
            "ZEBRA_SECRET_KEY",
            "3f6c1d0e9a8b47f2b5c4d3e2f1a0b9c8d7e6f5a4b3c2d1e0f9a8b7c6d5e4f3a2",
        ),
        investec_base_url=os.getenv(
            "ZEBRA_INVESTEC_BASE_URL", "https://openapi.investec.com"
        ),
        http_timeout_secs=float(os.getenv("ZEBRA_HTTP_TIMEOUT_SECS", "20")),
        sync_window_days=int(os.getenv("ZEBRA_SYNC_WINDOW_DAYS", "90")),
        token_expiry_buffer_secs=int(os.getenv("ZEBRA_TOKEN_BUFFER_SECS", "300")),
        default_pay_day=int(os.getenv("ZEBRA_PAY_DAY", "27")),
        openai_base_url=os.getenv("ZEBRA_OPENAI_BASE_URL", "https://api.openai.com/v1"),
        openai_model=os.getenv("ZEBRA_OPENAI_MODEL", "gpt-4o"),
        openai_temperature=float(os.getenv("ZEBRA_OPENAI_TEMPERATURE", "0.7")),
        openai_max_tokens=int(os.getenv("ZEBRA_OPENAI_MAX_TOKENS", "500")),
        auto_sync_minutes=int(os.getenv("ZEBRA_AUTO_SYNC_MINUTES", "0")),
        currency_symbol=os.getenv("ZEBRA_CURRENCY_SYMBOL", "R"),
        log_level=os.getenv("ZEBRA_LOG_LEVEL", "INFO").upper(),
    )
