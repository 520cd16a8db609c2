# app/core/catalog.py
"""
Service catalog loading and validation.

The catalog is a JSON document listing every payable endpoint the gateway
exposes and the RapidAPI backend each one proxies to:

    {
        "payTo": "0x...",
        "network": "eip155:84532",
        "services": [
            {
                "path": "user",
                "method": "GET",
                "price": "$0.001",
                "description": "Get user profile by username",
                "rapidapi": {"host": "...", "path": "/user", "method": "GET"}
            }
        ]
    }

Every field is required. A document that fails validation is rejected as a
whole, and the gateway refuses to start.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

PRICE_PATTERN = re.compile(r"^\$?\d+(\.\d+)?$")


class ConfigValidationError(ValueError):
    """Raised when a service catalog document does not match the schema."""


def parse_price(price: str) -> float:
    """
    Convert a currency string such as "$0.001" to a float.

    Returns 0.0 when the string cannot be parsed.
    """
    try:
        return float(price.strip().lstrip("$"))
    except (AttributeError, ValueError):
        return 0.0


def _normalize_method(value: str) -> str:
    method = value.upper()
    if method not in HTTP_METHODS:
        raise ValueError(f"must be one of {', '.join(HTTP_METHODS)}")
    return method


class RapidAPIBackend(BaseModel):
    """Upstream RapidAPI endpoint a service proxies to."""
    model_config = ConfigDict(frozen=True)

    host: StrictStr = Field(..., min_length=1, description="RapidAPI host, e.g. twitter241.p.rapidapi.com")
    path: StrictStr = Field(..., min_length=1, description="Path on the RapidAPI host")
    method: StrictStr = Field(..., min_length=1, description="HTTP method used upstream")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        return _normalize_method(v)


class ServiceConfig(BaseModel):
    """One payable endpoint exposed by the gateway."""
    model_config = ConfigDict(frozen=True)

    path: StrictStr = Field(..., min_length=1, description="URL segment, without leading slash")
    method: StrictStr = Field(..., min_length=1)
    price: StrictStr = Field(..., min_length=1, description="Price per request, e.g. $0.001")
    description: StrictStr = Field(..., min_length=1)
    rapidapi: RapidAPIBackend

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        path = v.strip("/")
        if not path:
            raise ValueError("must not be empty")
        return path

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        return _normalize_method(v)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: str) -> str:
        if not PRICE_PATTERN.match(v.strip()):
            raise ValueError("must be a currency amount such as $0.001")
        return v.strip()

    @property
    def route_path(self) -> str:
        return f"/{self.path}"

    @property
    def route_key(self) -> str:
        """Key used by the payment requirement table, e.g. "GET /user"."""
        return f"{self.method} {self.route_path}"


class AppConfig(BaseModel):
    """The whole service catalog. Loaded once at startup, read-only afterwards."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pay_to: StrictStr = Field(..., alias="payTo", min_length=1)
    network: StrictStr = Field(..., min_length=1)
    services: Tuple[ServiceConfig, ...] = Field(..., min_length=1)

    @field_validator("services")
    @classmethod
    def validate_unique_paths(cls, v: Tuple[ServiceConfig, ...]) -> Tuple[ServiceConfig, ...]:
        seen = set()
        for service in v:
            if service.path in seen:
                raise ValueError(f"duplicate service path '{service.path}'")
            seen.add(service.path)
        return v


def _format_location(loc: Tuple[Union[int, str], ...]) -> str:
    location = ""
    for part in loc:
        if isinstance(part, int):
            location += f"[{part}]"
        else:
            location += f".{part}" if location else part
    return location or "document"


def format_validation_error(exc: ValidationError) -> str:
    """Render a pydantic ValidationError as a single message naming each bad field."""
    problems = [
        f"'{_format_location(error['loc'])}': {error['msg']}"
        for error in exc.errors()
    ]
    return "Config validation error: " + "; ".join(problems)


def parse_config(data: Any) -> AppConfig:
    """
    Validate an already-decoded catalog document.

    Raises:
        ConfigValidationError: If the document does not match the schema
    """
    if not isinstance(data, dict):
        raise ConfigValidationError("Config validation error: document must be a JSON object")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(format_validation_error(e)) from e


def load_config(path: Union[str, Path]) -> AppConfig:
    """
    Load and validate the service catalog from a JSON file.

    Args:
        path: Path to the JSON catalog

    Returns:
        Validated, immutable AppConfig

    Raises:
        FileNotFoundError / OSError: If the file cannot be read
        json.JSONDecodeError: If the file is not valid JSON
        ConfigValidationError: If the document does not match the schema
    """
    config_path = Path(path)
    raw = config_path.read_text(encoding="utf-8")
    data = json.loads(raw)

    config = parse_config(data)
    logger.info(f"Loaded {len(config.services)} services from {config_path}")
    return config
