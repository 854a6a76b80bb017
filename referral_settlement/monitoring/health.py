"""
Dependency checks behind /health and /health/ready.

The settlement path needs the database (orders), Redis (revenue snapshot and
rankings) and a running cache invalidation worker; each is one check.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger(__name__)

DependencyCheck = Callable[[], Awaitable[str]]


class HealthCheckError(Exception):
    """A dependency check failed."""


class HealthCheck:
    """Runs the dependency checks and aggregates them into one status."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: aioredis.Redis,
        invalidation_worker: Optional[Any] = None,
    ) -> None:
        self.session_factory = session_factory
        self.redis_client = redis_client
        self.invalidation_worker = invalidation_worker
        self.dependency_checks: Dict[str, DependencyCheck] = {
            "database": self.check_database,
            "redis": self.check_redis,
            "cache_invalidation": self.check_invalidation_worker,
        }

    async def check_database(self) -> str:
        try:
            async with self.session_factory() as db:
                (await db.execute(text("SELECT 1"))).scalar()
        except Exception as e:
            raise HealthCheckError(f"Database unreachable: {e}") from e
        return "Database connection successful"

    async def check_redis(self) -> str:
        try:
            await self.redis_client.ping()
        except Exception as e:
            raise HealthCheckError(f"Redis unreachable: {e}") from e
        return "Redis connection successful"

    async def check_invalidation_worker(self) -> str:
        worker = self.invalidation_worker
        if worker is None or not worker.is_running:
            raise HealthCheckError("Cache invalidation worker is not running")
        return f"{worker.pending} keys pending"

    async def check_all(self) -> Dict[str, Any]:
        """
        Run every dependency check.

        Returns:
            Dict[str, Any]: ``status`` is healthy only if all checks pass;
            ``checks`` holds one entry per dependency
        """
        checks: Dict[str, Dict[str, Any]] = {}
        for service, check_fn in self.dependency_checks.items():
            try:
                checks[service] = {"status": "healthy", "service": service, "message": await check_fn()}
            except HealthCheckError as e:
                logger.error("health_check_failed", service=service, error=str(e))
                checks[service] = {"status": "unhealthy", "service": service, "error": str(e)}

        healthy = all(check["status"] == "healthy" for check in checks.values())
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """The process answers; dependencies are not checked."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
