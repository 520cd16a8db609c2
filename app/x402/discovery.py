# app/x402/discovery.py
"""
Discovery manifest for x402-aware service registries.

Lists every payable catalog service as an x402 resource, one page at a time.
The manifest is a pure function of the catalog: no I/O, no clock.

Amounts use a fixed conversion: the configured USD price multiplied by 1000,
rounded half up (so "$0.001" is advertised as 1).
"""
import math
from typing import Any, Dict, List, Optional, Union

from app.core.catalog import AppConfig, ServiceConfig, parse_price

DISCOVERY_PATH = "/.well-known/x402"

X402_VERSION = 1
DISCOVERY_NETWORK = "base"
DISCOVERY_ASSET = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"  # USDC on Base
DISCOVERY_TIMEOUT_SECONDS = 60
DISCOVERY_AMOUNT_FACTOR = 1000

DEFAULT_PAGE_LIMIT = 100
MAX_PAGE_LIMIT = 100


def _parse_int(value: Union[str, int, None]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_pagination(
    limit: Union[str, int, None] = None,
    offset: Union[str, int, None] = None,
) -> Dict[str, int]:
    """
    Apply pagination defaults and bounds.

    limit: default 100 when absent, non-numeric or not positive; at most 100.
    offset: default 0 when absent or non-numeric; never negative.
    """
    parsed_limit = _parse_int(limit)
    if parsed_limit is None or parsed_limit <= 0:
        parsed_limit = DEFAULT_PAGE_LIMIT

    parsed_offset = _parse_int(offset)
    if parsed_offset is None:
        parsed_offset = 0

    return {
        "limit": min(parsed_limit, MAX_PAGE_LIMIT),
        "offset": max(parsed_offset, 0),
    }


def discovery_amount(price: str) -> int:
    """Advertised amount for a price string, e.g. "$0.001" -> 1."""
    return int(math.floor(parse_price(price) * DISCOVERY_AMOUNT_FACTOR + 0.5))


def build_resource(service: ServiceConfig, pay_to: str, base_resource_url: str) -> Dict[str, Any]:
    """Describe one service as an x402 resource with a single payment option."""
    resource_url = f"{base_resource_url.rstrip('/')}{service.route_path}"

    return {
        "resource": resource_url,
        "type": "http",
        "x402Version": X402_VERSION,
        "description": service.description,
        "accepts": [
            {
                "scheme": "exact",
                "network": DISCOVERY_NETWORK,
                "maxAmountRequired": str(discovery_amount(service.price)),
                "resource": resource_url,
                "description": service.description,
                "mimeType": "application/json",
                "payTo": pay_to,
                "maxTimeoutSeconds": DISCOVERY_TIMEOUT_SECONDS,
                "asset": DISCOVERY_ASSET,
                "outputSchema": {
                    "input": {"type": "http", "method": service.method},
                    "output": {"type": "json"},
                },
            }
        ],
    }


def build_discovery_page(
    config: AppConfig,
    base_resource_url: str,
    limit: Union[str, int, None] = None,
    offset: Union[str, int, None] = None,
) -> Dict[str, Any]:
    """
    Build one page of the discovery manifest.

    Args:
        config: Validated service catalog
        base_resource_url: Public base URL of the gateway, e.g. https://api.example.com
        limit: Page size (clamped to 100)
        offset: Index of the first service on the page

    Returns:
        Dict with:
        - x402Version: protocol version
        - resources: one resource descriptor per service on the page
        - pagination: limit, offset, and total catalog size
    """
    page = normalize_pagination(limit, offset)
    start = page["offset"]
    services = config.services[start:start + page["limit"]]

    resources: List[Dict[str, Any]] = [
        build_resource(service, config.pay_to, base_resource_url)
        for service in services
    ]

    return {
        "x402Version": X402_VERSION,
        "resources": resources,
        "pagination": {
            "limit": page["limit"],
            "offset": page["offset"],
            "total": len(config.services),
        },
    }
