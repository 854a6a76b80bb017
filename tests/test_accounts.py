"""
Tests for user registration and profile updates.
"""
from typing import Any, Dict

import pytest

from referral_settlement.core.accounts import AccountService
from referral_settlement.core.ambassadors import AmbassadorRevenueCache
from referral_settlement.core.errors import DuplicateEmail, InvalidRequest, UserNotFound
from referral_settlement.database.models import User


@pytest.fixture
def accounts(fake_redis: Any, invalidation_worker: Any, test_settings: Any) -> AccountService:
    return AccountService(
        AmbassadorRevenueCache(fake_redis, invalidation_worker, settings=test_settings)
    )


class TestRegister:
    """Test suite for AccountService.register."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_ambassador(
        self,
        accounts: AccountService,
        test_db: Any,
        session_factory: Any,
        invalidation_worker: Any,
    ) -> None:
        user = await accounts.register(
            test_db,
            first_name="Alan",
            last_name="Turing",
            email="alan@example.com",
            password_hash=b"$2b$12$hash",
            is_ambassador=True,
        )

        assert user.id is not None
        async with session_factory() as db:
            stored = await db.get(User, user.id)
        assert stored.is_ambassador is True
        assert stored.password == b"$2b$12$hash"
        assert invalidation_worker.pending == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_duplicate_email(
        self,
        accounts: AccountService,
        test_db: Any,
        seed: Dict[str, Any],
        invalidation_worker: Any,
    ) -> None:
        with pytest.raises(DuplicateEmail):
            await accounts.register(
                test_db,
                first_name="Ada",
                last_name="Again",
                email="ada@example.com",
                password_hash=b"x",
                is_ambassador=True,
            )

        assert invalidation_worker.pending == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_register_requires_names(self, accounts: AccountService, test_db: Any) -> None:
        with pytest.raises(InvalidRequest, match="first_name"):
            await accounts.register(
                test_db,
                first_name="",
                last_name="Turing",
                email="alan@example.com",
                password_hash=b"x",
                is_ambassador=False,
            )


class TestUpdateInfo:
    """Test suite for AccountService.update_info."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_info(
        self,
        accounts: AccountService,
        test_db: Any,
        session_factory: Any,
        seed: Dict[str, Any],
        invalidation_worker: Any,
    ) -> None:
        user = await accounts.update_info(
            test_db,
            user_id=seed["ambassador_id"],
            first_name="Augusta",
            last_name="King",
            email="augusta@example.com",
        )

        assert user.name == "Augusta King"
        async with session_factory() as db:
            stored = await db.get(User, seed["ambassador_id"])
        assert stored.email == "augusta@example.com"
        assert invalidation_worker.pending == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_info_keeps_own_email(
        self, accounts: AccountService, test_db: Any, seed: Dict[str, Any]
    ) -> None:
        user = await accounts.update_info(
            test_db,
            user_id=seed["ambassador_id"],
            first_name="Ada",
            last_name="Byron",
            email="ada@example.com",
        )

        assert user.last_name == "Byron"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_info_email_taken(
        self, accounts: AccountService, test_db: Any, seed: Dict[str, Any]
    ) -> None:
        with pytest.raises(DuplicateEmail):
            await accounts.update_info(
                test_db,
                user_id=seed["ambassador_id"],
                first_name="Ada",
                last_name="Lovelace",
                email="grace@example.com",
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_info_unknown_user(
        self, accounts: AccountService, test_db: Any, seed: Dict[str, Any]
    ) -> None:
        with pytest.raises(UserNotFound):
            await accounts.update_info(
                test_db,
                user_id=4242,
                first_name="Nobody",
                last_name="Here",
                email="nobody@example.com",
            )
