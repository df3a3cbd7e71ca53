import pytest

from config import get_settings


@pytest.fixture()
def fresh_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("LEDGER_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_defaults(fresh_settings, tmp_path):
    for name in (
        "LEDGER_DATABASE_URL",
        "PLAID_ENV",
        "PLAID_COUNTRY_CODES",
        "LEDGER_SYNC_PAGE_SIZE",
        "LEDGER_SUBSCRIPTION_LOOKBACK_DAYS",
        "LEDGER_SYNC_TIMEOUT_SECS",
    ):
        fresh_settings.delenv(name, raising=False)

    settings = get_settings()

    assert settings.database_url == f"sqlite:///{tmp_path.resolve() / 'ledger.db'}"
    assert settings.plaid_env == "sandbox"
    assert settings.plaid_country_codes == ["US"]
    assert settings.sync_page_size == 100
    assert settings.subscription_lookback_days == 180
    assert settings.sync_timeout_secs == 120.0


def test_environment_overrides(fresh_settings):
    fresh_settings.setenv("PLAID_ENV", " Production ")
    fresh_settings.setenv("PLAID_COUNTRY_CODES", "US, CA,,GB")
    fresh_settings.setenv("LEDGER_SYNC_PAGE_SIZE", "250")

    settings = get_settings()

    assert settings.plaid_env == "production"
    assert settings.plaid_country_codes == ["US", "CA", "GB"]
    assert settings.sync_page_size == 250


def test_unknown_plaid_env_is_rejected(fresh_settings):
    fresh_settings.setenv("PLAID_ENV", "staging")

    with pytest.raises(ValueError):
        get_settings()
