# app/api/endpoints/proxy.py
"""
Route tables derived from the service catalog.

build_payment_routes() produces the per-route price/network/payee table handed
to the x402 payment middleware. build_proxy_router() produces the FastAPI
routes that forward paid requests to RapidAPI and record each outcome in the
usage ledger. Both are pure functions of the catalog and can be called any
number of times.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from app.core.catalog import AppConfig, ServiceConfig
from app.services.rapidapi import ProxyResult, proxy_to_rapidapi
from app.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

# Returned on any proxy failure. Upstream error text is never exposed.
PROXY_ERROR_MESSAGE = "Service temporarily unavailable"


@dataclass(frozen=True)
class PaymentRoute:
    """Payment requirement for one gateway route."""
    price: str
    network: str
    pay_to: str
    description: str
    scheme: str = "exact"


def build_payment_routes(config: AppConfig) -> Dict[str, PaymentRoute]:
    """
    Build the payment requirement table, keyed "<METHOD> /<path>".

    Example:
        {"GET /user": PaymentRoute(price="$0.001", network="eip155:84532", ...)}
    """
    return {
        service.route_key: PaymentRoute(
            price=service.price,
            network=config.network,
            pay_to=config.pay_to,
            description=service.description,
        )
        for service in config.services
    }


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def _read_json_body(request: Request) -> Any:
    """Return the decoded JSON body, or None when no JSON body was sent."""
    if "json" not in request.headers.get("content-type", ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    return json.loads(raw)


def _to_response(result: ProxyResult) -> Response:
    """Relay the upstream status and body unchanged."""
    if result.status < 200 or result.status in (204, 304):
        return Response(status_code=result.status)
    if not result.is_json:
        return PlainTextResponse(result.data, status_code=result.status)
    return JSONResponse(content=result.data, status_code=result.status)


def _make_proxy_handler(
    service: ServiceConfig,
    api_key: str,
    ledger: UsageLedger,
) -> Callable:
    backend = service.rapidapi

    def record(status_code: int, duration_ms: int, caller_agent: Optional[str]) -> None:
        ledger.record(
            method=service.method,
            path=service.route_path,
            backend_host=backend.host,
            backend_path=backend.path,
            price=service.price,
            status_code=status_code,
            duration_ms=duration_ms,
            caller_agent=caller_agent,
        )

    async def proxy_handler(request: Request) -> Response:
        start = time.monotonic()
        caller_agent = request.headers.get("user-agent")

        # Repeated keys collapse to the last value
        query_params = dict(request.query_params)

        try:
            body = await _read_json_body(request)
        except ValueError:
            logger.warning(f"Rejected malformed JSON body for {service.route_key}")
            return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

        try:
            result = await run_in_threadpool(
                proxy_to_rapidapi,
                backend,
                api_key,
                query_params or None,
                body,
            )
        except Exception as e:
            duration_ms = _elapsed_ms(start)
            logger.error(f"Proxy call {service.route_key} -> {backend.host}{backend.path} failed: {e}")
            record(502, duration_ms, caller_agent)
            return JSONResponse(status_code=502, content={"error": PROXY_ERROR_MESSAGE})

        duration_ms = _elapsed_ms(start)
        record(result.status, duration_ms, caller_agent)
        logger.info(f"{service.route_key} -> {backend.host} {result.status} ({duration_ms}ms)")
        return _to_response(result)

    proxy_handler.__name__ = f"proxy_{service.path.replace('/', '_').replace('-', '_')}"
    return proxy_handler


def build_proxy_router(config: AppConfig, api_key: str, ledger: UsageLedger) -> APIRouter:
    """
    Build one FastAPI route per catalog service.

    Args:
        config: Validated service catalog
        api_key: RapidAPI key shared by every backend call
        ledger: Usage ledger that receives one entry per proxied call

    Returns:
        APIRouter with a route at /<path> for each service
    """
    router = APIRouter()

    for service in config.services:
        router.add_api_route(
            service.route_path,
            _make_proxy_handler(service, api_key, ledger),
            methods=[service.method],
            summary=service.description,
            description=f"Paid endpoint, {service.price} per request.",
        )

    return router
