import pytest

import env_validation
from env_validation import EnvironmentConfigError, get_env_bool, get_env_int, validate_environment

_VARS = (
    "DB_PATH",
    "PROGRESS_TIMEZONE",
    "STORE_MAX_RETRIES",
    "CONTENT_GENERATOR_URL",
    "CONTENT_GENERATOR_TIMEOUT",
    "AD_CALLBACK_SECRET",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in _VARS:
        # setenv first so teardown also removes values written by validate_environment()
        monkeypatch.setenv(var, "placeholder")
        monkeypatch.delenv(var)
    return monkeypatch


def test_defaults_are_applied(clean_env):
    import os

    validate_environment()

    assert os.environ["DB_PATH"] == "progress.db"
    assert os.environ["PROGRESS_TIMEZONE"] == "UTC"
    assert os.environ["STORE_MAX_RETRIES"] == "3"


def test_unknown_timezone_is_rejected(clean_env):
    clean_env.setenv("PROGRESS_TIMEZONE", "Mars/Olympus_Mons")
    with pytest.raises(EnvironmentConfigError):
        validate_environment()


@pytest.mark.parametrize("value", ["many", "-1"])
def test_retry_count_must_be_a_non_negative_integer(clean_env, value):
    clean_env.setenv("STORE_MAX_RETRIES", value)
    with pytest.raises(EnvironmentConfigError):
        validate_environment()


def test_generator_url_must_be_http(clean_env):
    clean_env.setenv("CONTENT_GENERATOR_URL", "ftp://quiz.example")
    with pytest.raises(EnvironmentConfigError):
        validate_environment()


def test_missing_optional_vars_only_warn(clean_env, caplog):
    with caplog.at_level("WARNING", logger=env_validation.__name__):
        validate_environment()

    assert "CONTENT_GENERATOR_URL" in caplog.text
    assert "AD_CALLBACK_SECRET" in caplog.text


def test_typed_getters(monkeypatch):
    monkeypatch.setenv("FLAG_ON", "Yes")
    monkeypatch.setenv("COUNT", "7")
    monkeypatch.setenv("BROKEN", "seven")

    assert get_env_bool("FLAG_ON") is True
    assert get_env_bool("FLAG_MISSING", default=True) is True
    assert get_env_int("COUNT", 1) == 7
    assert get_env_int("BROKEN", 1) == 1
