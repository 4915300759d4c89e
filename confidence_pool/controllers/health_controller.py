"""
Health controller - service status
"""

from fastapi import APIRouter
from pydantic import BaseModel

from confidence_pool.core.dependencies import Integration
from confidence_pool.database import Database


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check answer."""
    status: str
    database: str
    mode: str
    unified: str
    errors: str


@router.get("/health", response_model=HealthResponse)
async def health_check(integration: Integration):
    """
    Checks that the API is up, the database connected and the unified path answering.
    """
    health = await integration.health_check()

    return HealthResponse(
        status="ok" if health["integration"] == "healthy" else "degraded",
        database="connected" if await Database.is_connected() else "disconnected",
        mode=health["mode"],
        unified=health["unified"]["status"],
        errors=health["errors"]["status"],
    )
