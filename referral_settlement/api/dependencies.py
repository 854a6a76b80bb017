"""
Service container and request dependencies.

The application lifespan builds one ``Services`` graph, starts its invalidation
worker and stores it on ``app.state``; routes receive it through
``get_services``.
"""
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
import structlog
from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_settlement.config import Settings
from referral_settlement.core.accounts import AccountService
from referral_settlement.core.ambassadors import AmbassadorRevenueCache
from referral_settlement.core.background import BestEffortDispatcher
from referral_settlement.core.cache_invalidation import CacheInvalidationWorker
from referral_settlement.core.leaderboard import Leaderboard
from referral_settlement.core.settlement import SettlementCoordinator
from referral_settlement.integrations.notifier import EmailNotifier
from referral_settlement.integrations.stripe_client import StripeClient
from referral_settlement.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Long-lived components shared by every request."""

    settings: Settings
    redis_client: aioredis.Redis
    invalidation_worker: CacheInvalidationWorker
    dispatcher: BestEffortDispatcher
    leaderboard: Leaderboard
    coordinator: SettlementCoordinator
    revenue_cache: AmbassadorRevenueCache
    accounts: AccountService
    health_check: HealthCheck

    async def shutdown(self) -> None:
        """Drain background work and close the Redis connection."""
        await self.invalidation_worker.stop(self.settings.cache_invalidation_drain_timeout)
        await self.dispatcher.drain(timeout=self.settings.smtp_timeout * 2)
        await self.redis_client.aclose()
        logger.info("services_stopped")


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Optional[aioredis.Redis] = None,
    stripe_client: Optional[StripeClient] = None,
    notifier: Optional[EmailNotifier] = None,
) -> Services:
    """
    Wire the component graph. The invalidation worker is created here and
    nowhere else.
    """
    if redis_client is None:
        redis_client = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    invalidation_worker = CacheInvalidationWorker(
        redis_client, delay_seconds=settings.cache_invalidation_delay_seconds
    )
    dispatcher = BestEffortDispatcher()
    leaderboard = Leaderboard(redis_client, key=settings.rankings_key)
    revenue_cache = AmbassadorRevenueCache(redis_client, invalidation_worker, settings=settings)

    coordinator = SettlementCoordinator(
        stripe_client=stripe_client or StripeClient(settings),
        leaderboard=leaderboard,
        invalidation_worker=invalidation_worker,
        notifier=notifier or EmailNotifier(settings),
        dispatcher=dispatcher,
        settings=settings,
    )

    return Services(
        settings=settings,
        redis_client=redis_client,
        invalidation_worker=invalidation_worker,
        dispatcher=dispatcher,
        leaderboard=leaderboard,
        coordinator=coordinator,
        revenue_cache=revenue_cache,
        accounts=AccountService(revenue_cache),
        health_check=HealthCheck(session_factory, redis_client, invalidation_worker),
    )


def get_services(request: Request) -> Services:
    """Dependency returning the application's service container."""
    return request.app.state.services


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> int:
    """
    Identity of the caller as resolved by the authentication layer.

    Raises:
        HTTPException: 401 if no valid identity was forwarded
    """
    if not x_user_id or not x_user_id.isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthenticated")
    return int(x_user_id)
