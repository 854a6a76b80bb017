"""
Ambassador revenue and referral link read models.

``AmbassadorRevenueCache`` serves every ambassador with their earned revenue
using cache-aside: the JSON snapshot in Redis is returned on a hit, rebuilt from
completed orders on a miss. Writes that change the snapshot push its key onto
the invalidation worker instead of deleting it inline.
"""
import json
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as aioredis
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from referral_settlement.config import Settings, get_settings
from referral_settlement.core.cache_invalidation import CacheInvalidationWorker
from referral_settlement.core.errors import LinkNotFound, PersistenceError
from referral_settlement.database.models import Link, Order, User
from referral_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def calculate_revenue(user: User, orders: Iterable[Order]) -> float:
    """Referrer revenue of ``user`` over the completed orders it owns."""
    revenue = 0.0
    for order in orders:
        if order.user_id != user.id or not order.complete:
            continue
        for item in order.order_items:
            revenue += item.ambassador_revenue
    return revenue


def serialize_ambassador(user: User, revenue: float) -> Dict[str, Any]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "revenue": revenue,
    }


class AmbassadorRevenueCache:
    """Cache-aside accessor for the ambassador revenue snapshot."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        invalidation_worker: CacheInvalidationWorker,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.redis_client = redis_client
        self.invalidation_worker = invalidation_worker
        self.cache_key = self.settings.ambassadors_cache_key
        self.ttl = self.settings.ambassadors_cache_ttl

    async def get_ambassadors_with_revenue(self, db: AsyncSession) -> List[Dict[str, Any]]:
        """
        Every ambassador with the revenue earned from completed orders.

        Ambassadors without completed orders are listed with revenue 0.

        Raises:
            PersistenceError: If the snapshot has to be rebuilt and the query fails
        """
        cached = await self._read_snapshot()
        if cached is not None:
            return cached

        ambassadors = await self._build_snapshot(db)
        await self._store_snapshot(ambassadors)
        return ambassadors

    async def _read_snapshot(self) -> Optional[List[Dict[str, Any]]]:
        """Cached snapshot or None. Records exactly one of hit, miss or error."""
        try:
            payload = await self.redis_client.get(self.cache_key)
        except Exception as e:
            metrics.record_ambassador_cache_lookup("error")
            logger.warning("ambassador_cache_read_error", cache_key=self.cache_key, error=str(e))
            return None

        if payload is None:
            metrics.record_ambassador_cache_lookup("miss")
            return None

        try:
            snapshot = json.loads(payload)
        except ValueError as e:
            metrics.record_ambassador_cache_lookup("error")
            logger.warning(
                "ambassador_cache_corrupt", cache_key=self.cache_key, error=str(e)
            )
            return None

        metrics.record_ambassador_cache_lookup("hit")
        return snapshot

    async def _build_snapshot(self, db: AsyncSession) -> List[Dict[str, Any]]:
        ambassador_ids = select(User.id).where(User.is_ambassador.is_(True))
        try:
            users = (
                await db.execute(
                    select(User).where(User.is_ambassador.is_(True)).order_by(User.id)
                )
            ).scalars().all()
            orders = (
                await db.execute(
                    select(Order)
                    .options(selectinload(Order.order_items))
                    .where(Order.complete.is_(True), Order.user_id.in_(ambassador_ids))
                )
            ).scalars().all()
        except SQLAlchemyError as e:
            logger.error("ambassador_revenue_query_failed", error=str(e))
            raise PersistenceError("Failed to fetch ambassadors") from e

        orders_by_owner: Dict[int, List[Order]] = defaultdict(list)
        for order in orders:
            orders_by_owner[order.user_id].append(order)

        ambassadors = [
            serialize_ambassador(user, calculate_revenue(user, orders_by_owner.get(user.id, [])))
            for user in users
        ]

        logger.info(
            "ambassador_snapshot_built",
            ambassadors=len(ambassadors),
            completed_orders=len(orders),
        )
        return ambassadors

    async def _store_snapshot(self, ambassadors: List[Dict[str, Any]]) -> None:
        try:
            await self.redis_client.set(self.cache_key, json.dumps(ambassadors), ex=self.ttl)
            logger.info("ambassador_snapshot_cached", cache_key=self.cache_key, ttl=self.ttl)
        except Exception as e:
            logger.warning("ambassador_cache_store_error", cache_key=self.cache_key, error=str(e))

    def invalidate(self) -> None:
        """Queue the snapshot key for deletion."""
        self.invalidation_worker.clear_cache(self.cache_key)


async def link_stats(db: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
    """
    Per-link completed order count and revenue for one ambassador.

    Raises:
        PersistenceError: If the query fails
    """
    return [
        {
            "code": link.code,
            "count": len(orders),
            "revenue": sum(order.get_total() for order in orders),
        }
        for link, orders in await links_with_orders(db, user_id)
    ]


async def ambassador_revenue(db: AsyncSession, user: User) -> float:
    """
    Revenue ``user`` earned from its completed orders.

    Raises:
        PersistenceError: If the query fails
    """
    try:
        orders = (
            await db.execute(
                select(Order)
                .options(selectinload(Order.order_items))
                .where(Order.user_id == user.id, Order.complete.is_(True))
            )
        ).scalars().all()
    except SQLAlchemyError as e:
        logger.error("ambassador_revenue_query_failed", user_id=user.id, error=str(e))
        raise PersistenceError("Failed to calculate revenue") from e

    return calculate_revenue(user, orders)


async def links_with_orders(
    db: AsyncSession, user_id: int
) -> List[Tuple[Link, List[Order]]]:
    """
    Links of one user, each paired with its completed orders (items loaded).

    Raises:
        PersistenceError: If the query fails
    """
    try:
        links = (
            await db.execute(select(Link).where(Link.user_id == user_id).order_by(Link.id))
        ).scalars().all()

        orders: List[Order] = []
        if links:
            orders = list(
                (
                    await db.execute(
                        select(Order)
                        .options(selectinload(Order.order_items))
                        .where(
                            Order.code.in_([link.code for link in links]),
                            Order.complete.is_(True),
                        )
                        .order_by(Order.id)
                    )
                ).scalars().all()
            )
    except SQLAlchemyError as e:
        logger.error("user_links_query_failed", user_id=user_id, error=str(e))
        raise PersistenceError("Failed to fetch links") from e

    orders_by_code: Dict[str, List[Order]] = defaultdict(list)
    for order in orders:
        orders_by_code[order.code].append(order)

    return [(link, orders_by_code[link.code]) for link in links]


async def get_link(db: AsyncSession, code: str) -> Link:
    """
    Referral link by code, with its owner and products loaded for checkout.

    Raises:
        LinkNotFound: If no link has this code
        PersistenceError: If the query fails
    """
    try:
        link = (
            await db.execute(
                select(Link)
                .options(selectinload(Link.user), selectinload(Link.products))
                .where(Link.code == code)
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("link_lookup_failed", code=code, error=str(e))
        raise PersistenceError("Failed to fetch link") from e

    if link is None:
        raise LinkNotFound("Link not found", code=code)
    return link
