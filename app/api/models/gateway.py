from pydantic import BaseModel, Field
from typing import Optional


class HealthResponse(BaseModel):
    status: str = "ok"
    testMode: Optional[bool] = Field(None, description="Present and true when payment bypass is active")


class CatalogEntry(BaseModel):
    """Public description of one payable endpoint."""
    path: str = Field(..., description="Gateway route, e.g. /user")
    method: str
    price: str
    description: str


class ClearLogsResponse(BaseModel):
    status: str = "cleared"
