# app/api/endpoints/gateway.py
from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional
import logging

from app.api.models.gateway import CatalogEntry, ClearLogsResponse, HealthResponse
from app.api.models.usage import UsageLogEntry, UsageStats
from app.core.catalog import AppConfig
from app.core.config import Settings
from app.services.usage_ledger import DEFAULT_RECENT_LIMIT, UsageLedger
from app.x402.discovery import DISCOVERY_PATH, build_discovery_page

logger = logging.getLogger(__name__)

router = APIRouter()


# Dependencies resolved from the objects wired up in app.main.create_app()

def get_catalog(request: Request) -> AppConfig:
    return request.app.state.catalog


def get_ledger(request: Request) -> UsageLedger:
    return request.app.state.ledger


def get_gateway_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health(settings: Settings = Depends(get_gateway_settings)) -> HealthResponse:
    """ Basic health check endpoint. Reports test mode when payment bypass is active. """
    if not settings.X402_ENABLED:
        return HealthResponse(status="ok", testMode=True)
    return HealthResponse(status="ok")


@router.get("/catalog", response_model=List[CatalogEntry])
async def catalog(config: AppConfig = Depends(get_catalog)) -> List[CatalogEntry]:
    """List every payable endpoint, in catalog order."""
    return [
        CatalogEntry(
            path=service.route_path,
            method=service.method,
            price=service.price,
            description=service.description,
        )
        for service in config.services
    ]


@router.get("/logs", response_model=List[UsageLogEntry])
async def get_logs(
    limit: Optional[str] = Query(None, description="Maximum number of entries to return (default 100)"),
    ledger: UsageLedger = Depends(get_ledger),
) -> List[UsageLogEntry]:
    """Most recent proxy calls, newest first."""
    try:
        count = int(limit) if limit is not None else DEFAULT_RECENT_LIMIT
    except ValueError:
        count = DEFAULT_RECENT_LIMIT
    return ledger.recent(count)


@router.delete("/logs", response_model=ClearLogsResponse)
async def clear_logs(ledger: UsageLedger = Depends(get_ledger)) -> ClearLogsResponse:
    ledger.clear()
    return ClearLogsResponse()


@router.get("/stats", response_model=UsageStats)
async def get_stats(ledger: UsageLedger = Depends(get_ledger)) -> UsageStats:
    return ledger.statistics()


@router.get(DISCOVERY_PATH)
async def discovery(
    request: Request,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    config: AppConfig = Depends(get_catalog),
    settings: Settings = Depends(get_gateway_settings),
) -> dict:
    """
    x402 discovery manifest.

    Resource URLs are built from PUBLIC_BASE_URL when configured, otherwise
    from the URL this request arrived on.
    """
    base_url = settings.PUBLIC_BASE_URL or str(request.base_url)
    return build_discovery_page(config, base_url, limit=limit, offset=offset)
