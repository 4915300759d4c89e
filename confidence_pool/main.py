"""
Entry point of the API
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

from confidence_pool.core.config import Settings, get_settings
from confidence_pool.database import Database
from confidence_pool.repositories.document_store import DocumentStore, MongoDocumentStore
from confidence_pool.services.confidence_manager import ConfidenceManager
from confidence_pool.services.error_handler import ErrorHandler
from confidence_pool.services.game_feed import EspnGameResultFeed, GameResultFeed, StaticGameResultFeed
from confidence_pool.services.integration import ConfidenceIntegration
from confidence_pool.services.legacy_leaderboard import LegacyLeaderboardService
from confidence_pool.services.performance_monitor import PerformanceMonitor

from confidence_pool.controllers.health_controller import router as health_router
from confidence_pool.controllers.leaderboard_controller import router as leaderboard_router
from confidence_pool.controllers.picks_controller import router as picks_router
from confidence_pool.controllers.system_controller import router as system_router

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_feed(settings: Settings) -> GameResultFeed:
    if settings.espn_enabled:
        return EspnGameResultFeed(
            settings.espn_scoreboard_url,
            settings.season,
            timeout=settings.espn_timeout_seconds,
        )
    logger.warning("⚠️ ESPN feed disabled, no game results will be scored")
    return StaticGameResultFeed()


def build_integration(
    settings: Settings,
    store: DocumentStore,
    feed: Optional[GameResultFeed] = None,
) -> ConfidenceIntegration:
    """Wires the services once per process"""
    feed = feed or build_feed(settings)
    manager = ConfidenceManager(store, feed, settings)
    legacy = LegacyLeaderboardService(
        manager.repository,
        manager.membership,
        feed,
        current_week=lambda: manager.current_week,
        clock=manager.clock,
    )
    return ConfidenceIntegration(
        manager,
        legacy,
        ErrorHandler(connectivity_check=store.ping),
        PerformanceMonitor(),
        mode=settings.integration_mode,
    )


class CORSMiddleware(BaseHTTPMiddleware):
    """
    CORS middleware that answers OPTIONS preflight before routing.
    """

    def __init__(self, app, origins: list[str]):
        super().__init__(app)
        self.origins = origins

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin", "")
        allowed = bool(origin) and origin in self.origins

        if request.method == "OPTIONS":
            if not allowed:
                return Response(status_code=403, content="Origin not allowed")
            return Response(
                status_code=200,
                headers={
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
                    "Access-Control-Allow-Headers": "Content-Type, Accept, Origin, X-Requested-With",
                    "Access-Control-Max-Age": "86400",  # Cache preflight for 24 hours
                },
            )

        response = await call_next(request)
        if allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
        return response


def create_app(integration: Optional[ConfidenceIntegration] = None) -> FastAPI:
    """
    Builds the API. Without an integration the lifespan connects to MongoDB
    and wires the services itself.
    """
    settings = get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if integration is None:
            await Database.connect(settings)
            app.state.integration = build_integration(settings, MongoDocumentStore(Database.get_db()))
        yield
        if integration is None:
            await Database.disconnect()

    app = FastAPI(
        title="Confidence Pool API",
        description="Confidence pool scoring and leaderboards",
        version="1.0.0",
        lifespan=lifespan,
    )
    if integration is not None:
        app.state.integration = integration

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    app.add_middleware(CORSMiddleware, origins=origins)

    app.include_router(health_router)
    app.include_router(leaderboard_router)
    app.include_router(picks_router)
    app.include_router(system_router)

    @app.get("/")
    async def root():
        # Root endpoint, confirms the API is up
        return {
            "name": "Confidence Pool API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    return app


app = create_app()
