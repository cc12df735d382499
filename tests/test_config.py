import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_production_rejects_placeholder_secret():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ENVIRONMENT="production", SECRET_KEY="change-me", DATABASE_URL="postgresql://db/lms")


def test_production_rejects_sqlite():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ENVIRONMENT="Production", SECRET_KEY="x" * 40, DATABASE_URL="sqlite:///./lms.db")


def test_production_accepts_server_database():
    settings = Settings(_env_file=None, ENVIRONMENT=" PRODUCTION ", SECRET_KEY="x" * 40, DATABASE_URL="postgresql://db/lms")
    assert settings.ENVIRONMENT == "production"
    assert settings.is_sqlite is False


def test_negative_retry_budget_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, REDEMPTION_MAX_RETRIES=-1)


def test_only_environment_selects_deployment_mode():
    assert "ENV" not in Settings.model_fields
