"""Shared fixtures: a small two-service catalog."""
import copy

import pytest

from app.core.catalog import AppConfig, parse_config

CATALOG_DATA = {
    "payTo": "0xABC123",
    "network": "eip155:84532",
    "services": [
        {
            "path": "translate",
            "method": "POST",
            "price": "$0.001",
            "description": "Translate text via Google Translate",
            "rapidapi": {
                "host": "google-translate1.p.rapidapi.com",
                "path": "/language/translate/v2",
                "method": "POST",
            },
        },
        {
            "path": "weather",
            "method": "GET",
            "price": "$0.002",
            "description": "Current weather data",
            "rapidapi": {
                "host": "weatherapi-com.p.rapidapi.com",
                "path": "/v1/current.json",
                "method": "GET",
            },
        },
    ],
}


@pytest.fixture
def catalog_data() -> dict:
    return copy.deepcopy(CATALOG_DATA)


@pytest.fixture
def app_config(catalog_data) -> AppConfig:
    return parse_config(catalog_data)
