"""
FastAPI dependencies

The services are built once in the app lifespan and kept on app.state;
endpoints receive them through these aliases.
"""

from typing import Annotated

from fastapi import Depends, Request

from confidence_pool.services.confidence_manager import ConfidenceManager
from confidence_pool.services.error_handler import ErrorHandler
from confidence_pool.services.integration import ConfidenceIntegration
from confidence_pool.services.performance_monitor import PerformanceMonitor


def get_integration(request: Request) -> ConfidenceIntegration:
    return request.app.state.integration


def get_manager(request: Request) -> ConfidenceManager:
    return request.app.state.integration.manager


def get_error_handler(request: Request) -> ErrorHandler:
    return request.app.state.integration.error_handler


def get_monitor(request: Request) -> PerformanceMonitor:
    return request.app.state.integration.monitor


# Type aliases so endpoints stay short
Integration = Annotated[ConfidenceIntegration, Depends(get_integration)]
Manager = Annotated[ConfidenceManager, Depends(get_manager)]
Errors = Annotated[ErrorHandler, Depends(get_error_handler)]
Monitor = Annotated[PerformanceMonitor, Depends(get_monitor)]
