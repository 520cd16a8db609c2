# app/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to routes listed in the payment requirement table
2. Skips verification entirely when payment bypass is active
3. Verifies the X-PAYMENT header via the facilitator
4. Settles payments via the facilitator after a successful response
5. Returns 402 Payment Required when needed

Uses the official x402 Python SDK for payment handling.
"""
import json
import logging
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from x402.types import PaymentRequirements, PaymentPayload, SettleResponse
from x402.facilitator import FacilitatorClient
from x402.encoding import safe_base64_decode, safe_base64_encode

from app.api.endpoints.proxy import PaymentRoute
from app.core.catalog import parse_price

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# CAIP-2 identifiers accepted in the catalog, mapped to SDK network names
NETWORK_ALIASES = {
    "eip155:8453": "base",
    "eip155:84532": "base-sepolia",
}

# USDC contract addresses by network
USDC_ADDRESSES = {
    "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}

USDC_DECIMALS = 6
PAYMENT_TIMEOUT_SECONDS = 300


def normalize_network(network: str) -> str:
    """Map a CAIP-2 network id to the SDK network name, if known."""
    return NETWORK_ALIASES.get(network, network)


def route_key_for(method: str, path: str) -> str:
    """Key of a request in the payment requirement table, e.g. "GET /user"."""
    normalized = "/" + path.strip("/")
    return f"{method.upper()} {normalized}"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


def create_payment_requirements(request: Request, route: PaymentRoute) -> PaymentRequirements:
    """
    Create PaymentRequirements for a protected route.

    Args:
        request: The incoming request
        route: Price, network and payee from the payment requirement table

    Returns:
        PaymentRequirements object for the x402 response
    """
    network = normalize_network(route.network)

    # USDC has 6 decimals, so $1.00 = 1,000,000 smallest units
    amount_usdc = round(parse_price(route.price) * 10 ** USDC_DECIMALS)

    asset = USDC_ADDRESSES.get(network, USDC_ADDRESSES["base-sepolia"])

    return PaymentRequirements(
        scheme=route.scheme,
        network=network,
        max_amount_required=str(amount_usdc),
        resource=str(request.url),
        description=route.description,
        mime_type="application/json",
        pay_to=route.pay_to,
        max_timeout_seconds=PAYMENT_TIMEOUT_SECONDS,
        asset=asset,
        extra=None
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: str = "Payment required"
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_requirements: The payment requirements to include
        error_message: Error message for the response

    Returns:
        JSONResponse with 402 status and payment details
    """
    response_body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [payment_requirements.model_dump(by_alias=True)]
    }

    return JSONResponse(
        status_code=402,
        content=response_body,
        headers={"Content-Type": "application/json"}
    )


def decode_payment_header(header_value: str) -> Optional[PaymentPayload]:
    """
    Decode the X-PAYMENT header into a PaymentPayload.

    Args:
        header_value: Base64-encoded payment payload

    Returns:
        PaymentPayload if successfully decoded, None otherwise
    """
    try:
        # safe_base64_decode returns str, not bytes
        decoded_str = safe_base64_decode(header_value)
        if decoded_str is None:
            logger.warning("Failed to decode X-PAYMENT header: invalid base64")
            return None

        payload_dict = json.loads(decoded_str)
        return PaymentPayload.model_validate(payload_dict)

    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse X-PAYMENT header JSON: {e}")
        return None
    except Exception as e:
        logger.warning(f"Failed to decode X-PAYMENT header: {e}")
        return None


def encode_payment_response(settle_response: SettleResponse) -> str:
    """
    Encode a settlement response for the X-PAYMENT-RESPONSE header.

    Args:
        settle_response: The settlement response from the facilitator

    Returns:
        Base64-encoded JSON string
    """
    response_dict = settle_response.model_dump(by_alias=True)
    response_json = json.dumps(response_dict)
    return safe_base64_encode(response_json.encode("utf-8"))


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment verification middleware for FastAPI.

    When enabled, this middleware:
    - Looks up the request in the payment requirement table
    - Verifies payment signatures on listed routes
    - Returns HTTP 402 with payment requirements if no valid payment
    - Settles payments via the configured facilitator

    When disabled (payment bypass), all requests pass through unchanged.
    """

    def __init__(
        self,
        app,
        routes: Dict[str, PaymentRoute],
        facilitator_url: str = "https://x402.org/facilitator",
        enabled: bool = True,
        facilitator_client: Optional[FacilitatorClient] = None,
    ):
        super().__init__(app)
        self._routes = {route_key_for(*key.split(" ", 1)): route for key, route in routes.items()}
        self._facilitator_url = facilitator_url
        self._enabled = enabled
        self._facilitator_client = facilitator_client

    @property
    def facilitator_client(self) -> FacilitatorClient:
        """Lazy initialization of facilitator client."""
        if self._facilitator_client is None:
            self._facilitator_client = FacilitatorClient({"url": self._facilitator_url})
        return self._facilitator_client

    def match_route(self, request: Request) -> Optional[PaymentRoute]:
        return self._routes.get(route_key_for(request.method, request.url.path))

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        """
        Process the request through x402 payment verification.

        Flow:
        1. Skip if payment bypass is active or the route is not paid
        2. If no X-PAYMENT header, return 402 with payment requirements
        3. If X-PAYMENT header present, verify with facilitator
        4. If valid, process request and settle payment on 2xx
        5. Add X-PAYMENT-RESPONSE header to successful response
        """
        if not self._enabled:
            return await call_next(request)

        route = self.match_route(request)
        if route is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing paid request from {client_ip}: {request.method} {request.url.path}")

        payment_requirements = create_payment_requirements(request, route)

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No X-PAYMENT header, returning 402 for {route.price}")
            return create_402_response(
                payment_requirements=payment_requirements,
                error_message="X-PAYMENT header is required"
            )

        payment_payload = decode_payment_header(payment_header)
        if payment_payload is None:
            logger.warning(f"x402: Invalid X-PAYMENT header from {client_ip}")
            return create_402_response(
                payment_requirements=payment_requirements,
                error_message="Invalid X-PAYMENT header format"
            )

        try:
            verify_response = await self.facilitator_client.verify(
                payment_payload,
                payment_requirements
            )
        except Exception as e:
            logger.error(f"x402: Facilitator verification failed: {e}")
            return JSONResponse(
                status_code=502,
                content={"error": "Payment verification failed"}
            )

        if not verify_response.is_valid:
            logger.warning(f"x402: Payment verification failed: {verify_response.invalid_reason}")
            return create_402_response(
                payment_requirements=payment_requirements,
                error_message=f"Payment verification failed: {verify_response.invalid_reason or 'Unknown reason'}"
            )

        logger.info(f"x402: Payment verified for payer {verify_response.payer}")

        response = await call_next(request)

        # Only successful responses are charged
        if not 200 <= response.status_code < 300:
            return response

        try:
            settle_response = await self.facilitator_client.settle(
                payment_payload,
                payment_requirements
            )
        except Exception as e:
            logger.error(f"x402: Payment settlement failed: {e}")
            return response

        logger.info("x402: Payment settled successfully")

        # Rebuild the response to attach the settlement header
        body = b""
        async for chunk in response.body_iterator:
            body += chunk

        new_response = Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type
        )
        new_response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(settle_response)

        return new_response


def verify_and_settle(
    routes: Dict[str, PaymentRoute],
    facilitator_url: str = "https://x402.org/facilitator",
    enabled: bool = True,
    facilitator_client: Optional[FacilitatorClient] = None,
) -> Middleware:
    """
    Wrap the payment requirement table in an x402 middleware definition.

    Pass the result to FastAPI(middleware=[...]).
    """
    return Middleware(
        X402Middleware,
        routes=routes,
        facilitator_url=facilitator_url,
        enabled=enabled,
        facilitator_client=facilitator_client,
    )
