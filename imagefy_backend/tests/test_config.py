import logging

import pytest

from imagefy_backend.core.config import load_settings, normalize_code, validate_config
from imagefy_backend.core.rate_limit import FixedWindowLimiter, WindowPolicy, build_rate_limit_policies
from imagefy_backend.core.validation import EnvValidationError, validate_env


def _settings(**overrides):
    return load_settings(_env_file=None, **overrides)


def test_defaults():
    cfg = _settings()
    assert cfg.PORT == 3000
    assert cfg.redemption_codes == frozenset({"IMAGEFY2025PRO"})
    assert cfg.cors_origins == ["*"]
    assert cfg.billing_enabled is False


def test_redemption_codes_are_normalized():
    cfg = _settings(REDEMPTION_CODES=" alpha , Beta,,")
    assert cfg.redemption_codes == frozenset({"ALPHA", "BETA"})
    assert normalize_code("  imagefy2025pro ") == "IMAGEFY2025PRO"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_env")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test")

    cfg = _settings()

    assert cfg.billing_enabled is True
    assert cfg.cors_origins == ["https://a.test", "https://b.test"]


def test_validate_config_warns(caplog):
    cfg = _settings()
    with caplog.at_level(logging.WARNING, logger="imagefy"):
        assert validate_config(cfg, strict=False) is True
    assert "DATABASE_URL" in caplog.text


def test_validate_config_strict_raises():
    with pytest.raises(RuntimeError):
        validate_config(_settings(), strict=True)


def test_production_requires_secrets(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)
    cfg = _settings(ENV="production", DATABASE_URL="postgresql://u:p@db:5432/imagefy")

    with pytest.raises(EnvValidationError):
        validate_env(cfg)


def test_production_rejects_sqlite(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)
    cfg = _settings(
        ENV="production",
        DATABASE_URL="sqlite:///imagefy.db",
        STRIPE_SECRET_KEY="sk",
        STRIPE_WEBHOOK_SECRET="whsec",
    )

    with pytest.raises(EnvValidationError):
        validate_env(cfg)


def test_production_valid(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)
    cfg = _settings(
        ENV="production",
        DATABASE_URL="postgresql://u:p@db:5432/imagefy",
        STRIPE_SECRET_KEY="sk",
        STRIPE_WEBHOOK_SECRET="whsec",
    )
    assert validate_env(cfg) is True


def test_invalid_database_url(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)
    with pytest.raises(EnvValidationError):
        validate_env(_settings(DATABASE_URL="not-a-url"))


def test_skip_env_validation(monkeypatch):
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")
    assert validate_env(_settings(ENV="production")) is True


def test_non_positive_timeout_rejected(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)
    with pytest.raises(EnvValidationError):
        validate_env(_settings(STRIPE_TIMEOUT_SECONDS=0))


def test_fixed_window_limiter():
    now = [1000.0]
    limiter = FixedWindowLimiter(limit=2, window_seconds=900, time_fn=lambda: now[0])

    assert limiter.allow("redeem:1.2.3.4")
    assert limiter.allow("redeem:1.2.3.4")
    assert not limiter.allow("redeem:1.2.3.4")
    assert limiter.allow("redeem:5.6.7.8")
    assert limiter.retry_after("redeem:1.2.3.4") == 900

    now[0] += 900
    assert limiter.allow("redeem:1.2.3.4")


def test_fixed_window_limiter_forgets_expired_windows():
    now = [1000.0]
    limiter = FixedWindowLimiter(limit=5, window_seconds=900, time_fn=lambda: now[0])
    for i in range(100):
        limiter.allow(f"redeem:10.0.{i}.1")
    assert len(limiter.windows) == 100

    now[0] += 900
    limiter.allow("redeem:1.2.3.4")

    assert list(limiter.windows) == ["redeem:1.2.3.4"]


def test_rate_limit_policies():
    assert build_rate_limit_policies(_settings()) == {"redeem": WindowPolicy(limit=5, window_seconds=900)}
    assert build_rate_limit_policies(_settings(REDEEM_RATE_LIMIT=0)) == {"redeem": None}
