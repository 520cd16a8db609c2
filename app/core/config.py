# app/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "RapidAPI x402 Gateway"

    # Path to the JSON service catalog
    SERVICES_CONFIG_PATH: str = "./services.json"

    # Upstream credential. Checked at startup, not at import time.
    RAPIDAPI_KEY: Optional[str] = None

    # x402 payment settings
    X402_ENABLED: bool = True  # False = payment bypass (test mode)
    X402_FACILITATOR_URL: str = "https://x402.org/facilitator"

    # Base URL used in the discovery manifest. Falls back to the request URL.
    PUBLIC_BASE_URL: Optional[str] = None

    HOST: str = "0.0.0.0"
    PORT: int = 4000
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()
