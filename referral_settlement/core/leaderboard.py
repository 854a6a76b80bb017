"""Ambassador leaderboard kept in a Redis sorted set."""
from typing import Dict, Optional

import redis.asyncio as aioredis
import structlog

from referral_settlement.config import get_settings

logger = structlog.get_logger(__name__)


class Leaderboard:
    """Cumulative referrer revenue keyed by ambassador display name."""

    def __init__(self, redis_client: aioredis.Redis, key: Optional[str] = None):
        self.redis_client = redis_client
        self.key = key or get_settings().rankings_key

    async def increment(self, member: str, amount: float) -> float:
        """
        Add ``amount`` to the member's score.

        Returns:
            float: The member's new score
        """
        score = await self.redis_client.zincrby(self.key, amount, member)
        logger.info("leaderboard_incremented", member=member, amount=amount, score=score)
        return float(score)

    async def rankings(self) -> Dict[str, float]:
        """
        Read the whole leaderboard, highest revenue first.

        Returns:
            Dict[str, float]: Display name to cumulative revenue
        """
        entries = await self.redis_client.zrevrangebyscore(
            self.key, "+inf", "-inf", withscores=True
        )
        return {
            (member.decode() if isinstance(member, bytes) else member): float(score)
            for member, score in entries
        }
