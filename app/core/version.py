"""Gateway version, from package metadata or a VERSION file."""
from functools import lru_cache
from importlib import metadata
from pathlib import Path


DISTRIBUTION_NAME = "rapidapi-x402-gateway"
VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"


@lru_cache()
def get_version() -> str:
    """Return the version string shown in the OpenAPI document.

    Priority:
    1. VERSION file (for Docker/production)
    2. Installed package metadata
    3. Fallback to 0.0.0-unknown
    """
    if VERSION_FILE.exists():
        version = VERSION_FILE.read_text().strip()
        if version:
            return version

    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0-unknown"


VERSION = get_version()
