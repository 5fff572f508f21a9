import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from imagefy_backend.api import billing, entitlements, health, images, webhook
from imagefy_backend.core.config import Settings, load_settings, validate_config
from imagefy_backend.core.database import check_connection, create_all_tables, init_engine
from imagefy_backend.core.errors import register_error_handlers
from imagefy_backend.core.logging import LOGGER_NAME, configure_logging
from imagefy_backend.core.middleware.request_id import RequestIdMiddleware
from imagefy_backend.core.rate_limit import RateLimitMiddleware, build_rate_limit_policies
from imagefy_backend.core.validation import validate_env
from imagefy_backend.features.billing.provider import BillingProvider
from imagefy_backend.features.billing.reconciler import Reconciler
from imagefy_backend.features.billing.stripe_provider import StripeProvider
from imagefy_backend.features.entitlements.service import EntitlementService
from imagefy_backend.features.entitlements.store import EntitlementStore
from imagefy_backend.features.images.service import ImageSearchClient


ProviderFactory = Callable[[Settings], Optional[BillingProvider]]


def build_provider(cfg: Settings) -> Optional[BillingProvider]:
    """Stripe provider, or None when no secret key is configured (billing disabled)."""
    if not cfg.billing_enabled:
        logging.getLogger(LOGGER_NAME).warning(
            "billing.disabled",
            extra={"reason": "STRIPE_SECRET_KEY not set"},
        )
        return None
    return StripeProvider(cfg.STRIPE_SECRET_KEY, cfg.STRIPE_WEBHOOK_SECRET)


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    provider_factory: ProviderFactory = build_provider,
    image_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    Components are created in the lifespan and published on app.state; the
    ``ready`` flag flips only after the store answered a health check, so requests
    arriving earlier get a 503 instead of touching half-built state.
    """
    cfg = settings or load_settings()

    configure_logging(cfg.ENV)
    validate_env(cfg)
    validate_config(cfg, strict=cfg.CONFIG_STRICT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger(LOGGER_NAME)
        logger.info("Starting Imagefy backend...")

        owns_engine = engine is None
        db_engine = engine if engine is not None else init_engine(cfg.DATABASE_URL)
        try:
            create_all_tables(db_engine)
            # Fail fast: a process that cannot reach its store should not serve
            check_connection(db_engine)

            store = EntitlementStore(db_engine, timeout=cfg.DATABASE_TIMEOUT_SECONDS)
            provider = provider_factory(cfg)

            app.state.store = store
            app.state.billing_provider = provider
            app.state.reconciler = Reconciler(store, provider, provider_timeout=cfg.STRIPE_TIMEOUT_SECONDS)
            app.state.entitlements = EntitlementService(
                store,
                provider,
                redemption_codes=cfg.redemption_codes,
                portal_return_url=cfg.PORTAL_RETURN_URL,
                provider_timeout=cfg.STRIPE_TIMEOUT_SECONDS,
            )
            app.state.image_search = ImageSearchClient(
                cfg.IMAGE_SEARCH_URL,
                cfg.IMAGE_SEARCH_API_KEY,
                timeout=cfg.IMAGE_SEARCH_TIMEOUT_SECONDS,
                transport=image_transport,
            )
            app.state.ready = True
            logger.info("Imagefy backend ready", extra={"status": "ready"})

            yield
        finally:
            app.state.ready = False
            if owns_engine:
                db_engine.dispose()
            logger.info("Stopping Imagefy backend...")

    app = FastAPI(title="Imagefy - Backend", lifespan=lifespan)
    app.state.settings = cfg
    app.state.ready = False

    # Middlewares
    app.add_middleware(
        RateLimitMiddleware,
        policies=build_rate_limit_policies(cfg),
        trust_forwarded_for=cfg.TRUST_FORWARDED_FOR,
    )
    app.add_middleware(RequestIdMiddleware)

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials="*" not in cfg.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhook.router)
    app.include_router(entitlements.router)
    app.include_router(billing.router)
    app.include_router(images.router)
    app.include_router(health.router)

    return app
