"""
Portfolio API — Health Check & Service Descriptor
==================================================

What:  `GET /health` for load balancer probes and `GET /` describing the API.
How:   The health check runs `SELECT 1` against the database; a failed probe
       reports "unhealthy" with 503 so the instance is taken out of rotation.
       The descriptor lists every registered (method, path) pair.
Who:   Docker health checks, load balancers, humans poking at the root URL.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from portfolio_api import __version__
from portfolio_api.config import Settings
from portfolio_api.core.envelope import ApiResponse
from portfolio_api.core.routing import Router
from portfolio_api.database import Database

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "HealthController"


class HealthController:
    def __init__(self, settings: Settings, database: Database, router: Router):
        self.settings = settings
        self.database = database
        self.router = router
        self._start_time = time.time()

    async def check(self) -> ApiResponse:
        database_status = "connected"
        try:
            async with self.database.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.error("Health check: database unreachable: %s", e)
            database_status = "disconnected"

        healthy = database_status == "connected"
        return ApiResponse(
            status_code=200 if healthy else 503,
            body={
                "status": "healthy" if healthy else "unhealthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": __version__,
                "environment": self.settings.app_env,
                "database": database_status,
                "uptime_seconds": round(time.time() - self._start_time, 1),
            },
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.settings.app_name,
            "version": __version__,
            "environment": self.settings.app_env,
            "endpoints": [
                {"method": method, "path": path}
                for method, path in self.router.routes()
            ],
        }


def register(router: Router, controller: HealthController) -> None:
    router.registry.register(CONTROLLER_NAME, controller)
    router.get("/health", f"{CONTROLLER_NAME}@check")
    router.get("/", f"{CONTROLLER_NAME}@describe")
