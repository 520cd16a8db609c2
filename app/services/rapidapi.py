# app/services/rapidapi.py
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from app.core.catalog import RapidAPIBackend

logger = logging.getLogger(__name__)

RAPIDAPI_KEY_HEADER = "x-rapidapi-key"
RAPIDAPI_HOST_HEADER = "x-rapidapi-host"

# Only these backend methods carry a request body upstream
BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass(frozen=True)
class ProxyResult:
    """Upstream status code and body.

    is_json tells whether data was decoded from an application/json body
    or holds the raw response text.
    """
    status: int
    data: Any
    is_json: bool = True


def build_backend_url(backend: RapidAPIBackend, query_params: Optional[Dict[str, str]] = None) -> str:
    """
    Build the target URL for a RapidAPI backend.

    Query parameters are merged onto any query string already present in
    backend.path; on duplicate keys the caller's value wins.
    """
    parts = urlsplit(f"https://{backend.host}{backend.path}")

    if not query_params:
        return urlunsplit(parts)

    merged = dict(parse_qsl(parts.query, keep_blank_values=True))
    merged.update(query_params)
    return urlunsplit(parts._replace(query=urlencode(merged)))


def proxy_to_rapidapi(
    backend: RapidAPIBackend,
    api_key: str,
    query_params: Optional[Dict[str, str]] = None,
    body: Any = None,
) -> ProxyResult:
    """
    Forward one request to a RapidAPI backend.

    Args:
        backend: Host, path and method of the upstream endpoint
        api_key: RapidAPI key sent in the x-rapidapi-key header
        query_params: String query parameters to append to the URL
        body: JSON-serializable payload, forwarded only for POST/PUT/PATCH

    Returns:
        ProxyResult with the upstream status and body. Upstream 4xx/5xx
        responses are returned as-is.

    Raises:
        RequestException: If the HTTP request to RapidAPI fails
        ValueError: If a JSON response cannot be decoded
    """
    url = build_backend_url(backend, query_params)
    headers = {
        RAPIDAPI_KEY_HEADER: api_key,
        RAPIDAPI_HOST_HEADER: backend.host,
    }

    data = None
    if body is not None and backend.method in BODY_METHODS:
        headers["content-type"] = "application/json"
        data = json.dumps(body)

    # No timeout override: a single attempt with the transport default
    response = requests.request(backend.method, url, headers=headers, data=data)

    content_type = response.headers.get("content-type", "")
    is_json = "application/json" in content_type
    payload = response.json() if is_json else response.text

    logger.debug(f"RapidAPI {backend.method} {backend.host}{backend.path} -> {response.status_code}")
    return ProxyResult(status=response.status_code, data=payload, is_json=is_json)
