"""User writes that feed the ambassador revenue snapshot."""
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from referral_settlement.core.ambassadors import AmbassadorRevenueCache
from referral_settlement.core.errors import (
    DuplicateEmail,
    InvalidRequest,
    PersistenceError,
    UserNotFound,
)
from referral_settlement.database.models import User

logger = structlog.get_logger(__name__)


class AccountService:
    """
    Registers users and updates their profile.

    Password hashing and identity resolution belong to the auth layer; this
    service receives an already hashed password and a resolved user id. Every
    committed write invalidates the ambassador revenue snapshot.
    """

    def __init__(self, revenue_cache: AmbassadorRevenueCache):
        self.revenue_cache = revenue_cache

    @staticmethod
    def _require(**fields: str) -> None:
        missing = [name for name, value in fields.items() if not value or not value.strip()]
        if missing:
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

    async def _ensure_email_free(
        self, db: AsyncSession, email: str, user_id: Optional[int] = None
    ) -> None:
        stmt = select(User.id).where(User.email == email)
        if user_id is not None:
            stmt = stmt.where(User.id != user_id)
        if (await db.execute(stmt)).first() is not None:
            raise DuplicateEmail("Email already registered", email=email)

    async def _commit(self, db: AsyncSession, email: str) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise DuplicateEmail("Email already registered", email=email) from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("user_write_failed", email=email, error=str(e))
            raise PersistenceError("Failed to save user") from e

    async def register(
        self,
        db: AsyncSession,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: bytes,
        is_ambassador: bool,
    ) -> User:
        """
        Persist a new user.

        Raises:
            InvalidRequest: If a field is empty
            DuplicateEmail: If the email is taken
            PersistenceError: If the write fails
        """
        self._require(first_name=first_name, last_name=last_name, email=email)
        await self._ensure_email_free(db, email)

        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password=password_hash,
            is_ambassador=is_ambassador,
        )
        db.add(user)
        await self._commit(db, email)
        self.revenue_cache.invalidate()

        logger.info("user_registered", user_id=user.id, is_ambassador=is_ambassador)
        return user

    async def update_info(
        self,
        db: AsyncSession,
        user_id: int,
        first_name: str,
        last_name: str,
        email: str,
    ) -> User:
        """
        Update name and email of an existing user.

        Raises:
            UserNotFound: If no user has this id
            InvalidRequest: If a field is empty
            DuplicateEmail: If the email belongs to another user
            PersistenceError: If the write fails
        """
        self._require(first_name=first_name, last_name=last_name, email=email)

        user = await db.get(User, user_id)
        if user is None:
            raise UserNotFound("User not found", user_id=user_id)

        await self._ensure_email_free(db, email, user_id=user_id)

        user.first_name = first_name
        user.last_name = last_name
        user.email = email
        await self._commit(db, email)
        self.revenue_cache.invalidate()

        logger.info("user_info_updated", user_id=user_id)
        return user

    async def get_user(self, db: AsyncSession, user_id: int) -> User:
        """
        Load the caller's account.

        Raises:
            UserNotFound: If no user has this id
            PersistenceError: If the read fails
        """
        try:
            user = await db.get(User, user_id)
        except SQLAlchemyError as e:
            logger.error("user_lookup_failed", user_id=user_id, error=str(e))
            raise PersistenceError("Failed to fetch user") from e

        if user is None:
            raise UserNotFound("User not found", user_id=user_id)
        return user
