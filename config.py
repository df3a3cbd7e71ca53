import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        plaid_client_id: str,
        plaid_secret: str,
        plaid_env: str,
        plaid_country_codes: list[str],
        token_key: str,
        sync_page_size: int,
        subscription_lookback_days: int,
        sync_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.plaid_client_id = plaid_client_id
        self.plaid_secret = plaid_secret
        self.plaid_env = plaid_env
        self.plaid_country_codes = plaid_country_codes
        self.token_key = token_key
        self.sync_page_size = sync_page_size
        self.subscription_lookback_days = subscription_lookback_days
        self.sync_timeout_secs = sync_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/New_York")
    plaid_env = os.getenv("PLAID_ENV", "sandbox").strip().lower()
    if plaid_env not in {"sandbox", "development", "production"}:
        raise ValueError(f"Invalid PLAID_ENV: {plaid_env}")
    token_key = os.getenv(
        "LEDGER_TOKEN_KEY",
        "6f1c3b0d8e2a4f579c1d2e3f4a5b6c7d8e9fa0b1c2d3e4f5a6b7c8d9e0f1a2b3",
    )
    sync_page_size = int(os.getenv("LEDGER_SYNC_PAGE_SIZE", "100"))
    lookback_days = int(os.getenv("LEDGER_SUBSCRIPTION_LOOKBACK_DAYS", "180"))
    sync_timeout_secs = float(os.getenv("LEDGER_SYNC_TIMEOUT_SECS", "120"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        plaid_client_id=os.getenv("PLAID_CLIENT_ID", ""),
        plaid_secret=os.getenv("PLAID_SECRET", ""),
        plaid_env=plaid_env,
        plaid_country_codes=_split_csv(os.getenv("PLAID_COUNTRY_CODES", "US")),
        token_key=token_key,
        sync_page_size=sync_page_size,
        subscription_lookback_days=lookback_days,
        sync_timeout_secs=sync_timeout_secs,
    )
