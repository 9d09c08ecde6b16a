"""
Settings: environment aliases, validation, fatal configuration errors
"""
import pytest
from pydantic import ValidationError

from hbsync.core.config import BrokerSettings, Settings, get_settings
from hbsync.core.exceptions import ConfigurationError
from tests.conftest import ENCRYPTION_KEY, make_settings

ENV_NAMES = (
    "CLIENT_ID", "PROCORE_CLIENT_ID", "CLIENT_SECRET", "PROCORE_CLIENT_SECRET",
    "COMPANY_ID", "PROCORE_COMPANY_ID", "ENCRYPTION_KEY", "DATABASE_URL", "REDIS_URL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_short_environment_names_are_accepted(clean_env):
    clean_env.setenv("CLIENT_ID", "abc")
    clean_env.setenv("CLIENT_SECRET", "shh")
    clean_env.setenv("COMPANY_ID", " 5280 ")
    clean_env.setenv("ENCRYPTION_KEY", ENCRYPTION_KEY)
    clean_env.setenv("INIT_TOKEN", "boot-access")
    clean_env.setenv("INIT_REF_TOKEN", "boot-refresh")

    settings = get_settings()

    assert settings.procore_client_id == "abc"
    assert settings.procore_company_id == "5280"
    assert settings.has_bootstrap_credentials
    assert get_settings() is settings


def test_missing_required_settings_are_fatal(clean_env):
    with pytest.raises(ConfigurationError) as exc_info:
        get_settings()
    assert "encryption_key" in str(exc_info.value).lower()


@pytest.mark.parametrize("overrides", [
    {"encryption_key": "not-hex"},
    {"encryption_key": "ab" * 16},
    {"procore_base_url": "http://api.procore.test"},
    {"procore_oauth_url": "ftp://login.procore.test"},
    {"database_url": "mysql://localhost/hb"},
    {"procore_client_id": "   "},
    {"log_level": "LOUD"},
])
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        make_settings(**overrides)


def test_urls_are_normalised():
    settings = make_settings(procore_base_url="https://api.procore.test/")
    assert settings.procore_base_url == "https://api.procore.test"


def test_log_level_defaults_by_environment():
    assert make_settings(environment="production").log_level == "INFO"
    assert make_settings(environment="development").log_level == "DEBUG"
    assert make_settings(log_level="warning").log_level == "WARNING"


def test_bootstrap_needs_both_tokens():
    assert not make_settings(procore_init_token="only-access").has_bootstrap_credentials
    assert isinstance(make_settings(), Settings)


def test_broker_reads_redis_url_from_dotenv(clean_env, tmp_path):
    (tmp_path / ".env").write_text("REDIS_URL=redis://queue.internal:6379/0\n")

    assert BrokerSettings().redis_url == "redis://queue.internal:6379/0"


def test_broker_settings_do_not_need_procore_credentials(clean_env):
    assert BrokerSettings().redis_url is None
