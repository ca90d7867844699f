"""Tests for configuration loading."""

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from digital_library.config import LibraryConfig, get_config, reset_config, set_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DIGITAL_LIBRARY_LOAN_PERIOD_DAYS",
        "DIGITAL_LIBRARY_DATABASE_URL",
        "DIGITAL_LIBRARY_LOG_LEVEL",
        "DIGITAL_LIBRARY_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLibraryConfig:
    def test_defaults(self, clean_env):
        config = LibraryConfig(_env_file=None)
        assert config.server_name == "digital-library"
        assert config.transport == "stdio"
        assert config.loan_period_days == 14
        assert config.loan_period == timedelta(days=14)
        assert config.default_page_size == 20
        assert config.max_page_size == 100
        assert config.log_level == "INFO"
        assert not config.is_development

    def test_database_path_is_absolute(self, clean_env):
        config = LibraryConfig(_env_file=None, database_path=Path("data/test.db"))
        assert config.database_path.is_absolute()
        assert config.get_database_url() == f"sqlite:///{config.database_path}"

    def test_database_url_overrides_path(self, clean_env):
        config = LibraryConfig(_env_file=None, database_url="sqlite:///:memory:")
        assert config.get_database_url() == "sqlite:///:memory:"

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("DIGITAL_LIBRARY_LOAN_PERIOD_DAYS", "21")
        clean_env.setenv("DIGITAL_LIBRARY_LOG_LEVEL", "debug")
        config = LibraryConfig(_env_file=None)
        assert config.loan_period == timedelta(days=21)
        assert config.log_level == "DEBUG"
        assert config.is_development

    @pytest.mark.parametrize("days", [0, 91])
    def test_loan_period_bounds(self, clean_env, days):
        with pytest.raises(ValidationError):
            LibraryConfig(_env_file=None, loan_period_days=days)

    def test_invalid_transport(self, clean_env):
        with pytest.raises(ValidationError):
            LibraryConfig(_env_file=None, transport="carrier-pigeon")


def test_config_singleton(test_config):
    assert get_config() is test_config

    replacement = LibraryConfig(_env_file=None, loan_period_days=7)
    set_config(replacement)
    assert get_config() is replacement

    reset_config()
    assert get_config() is not replacement
