import pytest
from pydantic import ValidationError

from backoffice.config.settings import QboEnvironment, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Back Office"
    assert settings.version == "1.0.0"
    assert settings.worker_poll_interval_ms == 5000
    assert settings.worker_batch_size == 10
    assert settings.worker_lease_ttl_s == 300
    assert settings.worker_concurrency == 1
    assert settings.job_max_attempts == 3
    assert settings.qbo_env == QboEnvironment.SANDBOX


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("WORKER_BATCH_SIZE", "25")
    monkeypatch.setenv("JOB_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("QBO_ENV", "production")

    settings = Settings()

    assert settings.worker_batch_size == 25
    assert settings.job_max_attempts == 7
    assert settings.qbo_env == QboEnvironment.PRODUCTION


@pytest.mark.parametrize(
    "field",
    ["worker_poll_interval_ms", "worker_batch_size", "worker_lease_ttl_s", "job_max_attempts"],
)
def test_non_positive_values_rejected(field):
    with pytest.raises(ValidationError, match="must be a positive integer"):
        Settings(**{field: 0})


@pytest.mark.parametrize("jitter", [-0.1, 1.5])
def test_jitter_out_of_range_rejected(jitter):
    with pytest.raises(ValidationError, match="between 0 and 1"):
        Settings(job_backoff_jitter=jitter)


def test_qbo_api_base_url():
    assert Settings(qbo_env="sandbox").qbo_api_base_url == (
        "https://sandbox-quickbooks.api.intuit.com"
    )
    assert Settings(qbo_env="production").qbo_api_base_url == (
        "https://quickbooks.api.intuit.com"
    )


def test_require_worker_secrets_lists_missing():
    settings = Settings(
        qbo_client_id="id", qbo_client_secret=None, qbo_token_encryption_key=None
    )

    with pytest.raises(ValueError) as exc_info:
        settings.require_worker_secrets()

    message = str(exc_info.value)
    assert "QBO_CLIENT_SECRET" in message
    assert "QBO_TOKEN_ENCRYPTION_KEY" in message
    assert "QBO_CLIENT_ID" not in message


def test_require_worker_secrets_passes(test_settings):
    test_settings.require_worker_secrets()


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Back Office"
