import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import FrozenSet, List, Optional


DEFAULT_REDEMPTION_CODE = "IMAGEFY2025PRO"


def normalize_code(code: str) -> str:
    """Canonical form for redemption codes (trimmed, upper-case)."""
    return code.strip().upper()


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    PORT: int = 3000

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    PORTAL_RETURN_URL: str = "https://imagefy.app"

    # Database
    DATABASE_URL: Optional[str] = None

    # Lifetime access codes (comma-separated)
    REDEMPTION_CODES: str = DEFAULT_REDEMPTION_CODE

    # Rate limiting on /verify-code
    REDEEM_RATE_LIMIT: int = 5
    REDEEM_RATE_WINDOW_SECONDS: int = 900
    # Only enable behind a proxy that overwrites X-Forwarded-For
    TRUST_FORWARDED_FOR: bool = False

    # Image search proxy
    IMAGE_SEARCH_API_KEY: Optional[str] = None
    IMAGE_SEARCH_URL: str = "https://api.pexels.com/v1/search"

    # CORS (comma-separated, "*" for any)
    CORS_ORIGINS: str = "*"

    # Bounded external calls
    DATABASE_TIMEOUT_SECONDS: float = 5.0
    STRIPE_TIMEOUT_SECONDS: float = 10.0
    IMAGE_SEARCH_TIMEOUT_SECONDS: float = 10.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @property
    def redemption_codes(self) -> FrozenSet[str]:
        return frozenset(normalize_code(code) for code in _split_csv(self.REDEMPTION_CODES))

    @property
    def cors_origins(self) -> List[str]:
        return _split_csv(self.CORS_ORIGINS) or ["*"]

    @property
    def billing_enabled(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)


def load_settings(**overrides) -> Settings:
    """Build the process-wide settings once; overrides win over the environment."""
    return Settings(**overrides)


def validate_config(settings_obj: Settings, strict: Optional[bool] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    log = logger or logging.getLogger("imagefy")
    strict_mode = strict if strict is not None else settings_obj.CONFIG_STRICT

    required_keys = [
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(settings_obj, key, None)]
    if not settings_obj.redemption_codes:
        missing.append("REDEMPTION_CODES")
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
