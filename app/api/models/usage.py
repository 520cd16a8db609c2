from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UsageLogEntry(BaseModel):
    """One completed (successful or failed) proxy call."""
    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=_utc_now_iso, description="ISO-8601 UTC time the call completed")
    method: str = Field(..., description="HTTP method of the gateway route")
    path: str = Field(..., description="Gateway route path, e.g. /user")
    backendHost: str = Field(..., description="RapidAPI host the call was proxied to")
    backendPath: str = Field(..., description="Path on the RapidAPI host")
    price: str = Field(..., description="Configured price of the route, e.g. $0.001")
    statusCode: int = Field(..., description="Upstream status, or 502 when the proxy call failed")
    durationMs: int = Field(..., description="Elapsed time in whole milliseconds")
    callerAgent: Optional[str] = Field(None, description="User-Agent header of the caller, if any")


class EndpointUsage(BaseModel):
    endpoint: str
    count: int
    totalCost: float


class HostUsage(BaseModel):
    host: str
    count: int
    totalCost: float


class UsageStats(BaseModel):
    """Aggregate statistics over the entries currently held by the ledger."""
    totalRequests: int
    totalCost: str = Field(..., description="Sum of entry prices, formatted to 4 decimal places")
    byEndpoint: List[EndpointUsage] = Field(default_factory=list, description="Top 20 endpoints by request count")
    byHost: List[HostUsage] = Field(default_factory=list)
