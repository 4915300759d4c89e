"""
System controller - metrics, cache control and the integration mode switch
"""

from fastapi import APIRouter, HTTPException, Path, status

from confidence_pool.core.dependencies import Errors, Integration, Manager, Monitor


router = APIRouter(prefix="/system", tags=["system"])


@router.get("/metrics")
async def get_metrics(integration: Integration, monitor: Monitor, errors: Errors):
    """
    Manager counters, the performance report and the error report.
    """
    return {
        "status": integration.status(),
        "performance": monitor.generate_report(),
        "errors": errors.error_report(),
    }


@router.post("/cache/clear")
async def clear_cache(manager: Manager):
    manager.clear_cache()
    return {"cleared": True, "cache_size": manager.cache.size}


@router.post("/cache/invalidate/{week_number}")
async def invalidate_week(manager: Manager, week_number: int = Path(..., ge=1, le=18)):
    """
    Drop the cached boards for a week and every cached season board.
    """
    removed = manager.invalidate_cache(week_number)
    return {"week_number": week_number, "removed": removed}


@router.put("/mode/{mode}")
async def set_mode(mode: str, integration: Integration):
    """
    Force every request to the unified or the legacy path.
    """
    try:
        integration.set_mode(mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return integration.status()
