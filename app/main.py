# app/main.py
from typing import Optional
import logging

from fastapi import FastAPI
import uvicorn
from x402.facilitator import FacilitatorClient

from app.api.endpoints import gateway
from app.api.endpoints.proxy import build_payment_routes, build_proxy_router
from app.core.catalog import AppConfig, load_config
from app.core.config import Settings, get_settings
from app.core.version import VERSION
from app.services.usage_ledger import UsageLedger
from app.x402.middleware import verify_and_settle

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    config: Optional[AppConfig] = None,
    ledger: Optional[UsageLedger] = None,
    facilitator_client: Optional[FacilitatorClient] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Anything not passed in is taken from the environment: settings from
    get_settings(), the catalog from SERVICES_CONFIG_PATH, and a fresh ledger.

    Raises:
        RuntimeError: If RAPIDAPI_KEY is not configured
        ConfigValidationError: If the service catalog is invalid
    """
    settings = settings or get_settings()

    if not settings.RAPIDAPI_KEY:
        raise RuntimeError("RAPIDAPI_KEY environment variable is required")

    if config is None:
        config = load_config(settings.SERVICES_CONFIG_PATH)
    if ledger is None:
        ledger = UsageLedger()

    payment_routes = build_payment_routes(config)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=VERSION,
        middleware=[
            verify_and_settle(
                payment_routes,
                facilitator_url=settings.X402_FACILITATOR_URL,
                enabled=settings.X402_ENABLED,
                facilitator_client=facilitator_client,
            )
        ],
    )

    app.state.settings = settings
    app.state.catalog = config
    app.state.ledger = ledger

    # Gateway routes first so a catalog path can never shadow them
    app.include_router(gateway.router, tags=["gateway"])
    app.include_router(build_proxy_router(config, settings.RAPIDAPI_KEY, ledger), tags=["paid"])

    logger.info(f"Facilitator: {settings.X402_FACILITATOR_URL}")
    logger.info(f"Services: {len(config.services)}")
    if not settings.X402_ENABLED:
        logger.warning("x402 payment bypass is active (test mode): paid routes are served for free")

    return app


def run() -> None:
    """Console entry point: load settings, build the app and serve it with uvicorn."""
    settings = get_settings()

    # Configure basic logging
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = create_app(settings)
    logger.info(f"{settings.PROJECT_NAME} listening on port {settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
