"""
Integration tests for the HTTP API.
"""
from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from referral_settlement.api.dependencies import Services, build_services
from referral_settlement.api.main import app
from referral_settlement.database.connection import get_db
from referral_settlement.database.models import Link, link_products


@pytest_asyncio.fixture
async def services(
    test_settings: Any,
    session_factory: Any,
    fake_redis: Any,
    stripe_client: Any,
    notifier: Any,
) -> AsyncGenerator[Services, Any]:
    services = build_services(
        test_settings,
        session_factory,
        redis_client=fake_redis,
        stripe_client=stripe_client,
        notifier=notifier,
    )
    services.invalidation_worker.start()

    yield services

    await services.shutdown()


@pytest_asyncio.fixture
async def client(services: Services, session_factory: Any) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""

    async def _get_db() -> AsyncGenerator[Any, Any]:
        async with session_factory() as session:
            yield session
            await session.commit()

    app.state.services = services
    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _order_payload(seed: Dict[str, Any], **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "first_name": "John",
        "last_name": "Doe",
        "email": "john@example.com",
        "address": "1 Main St",
        "country": "US",
        "city": "Springfield",
        "zip": "12345",
        "code": seed["code"],
        "products": [
            {"product_id": seed["mug_id"], "quantity": 2},
            {"product_id": seed["shirt_id"], "quantity": 1},
        ],
    }
    payload.update(overrides)
    return payload


class TestCheckoutEndpoints:
    """Test suite for checkout routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_confirm_order(
        self, client: AsyncClient, seed: Dict[str, Any], fake_redis: Any
    ) -> None:
        response = await client.post("/api/checkout/orders", json=_order_payload(seed))

        assert response.status_code == 200
        assert "X-Request-ID" in response.headers
        session = response.json()
        assert session["id"] == "cs_test_1"
        assert session["url"].endswith("cs_test_1")

        response = await client.post(
            "/api/checkout/orders/confirm", json={"source": session["id"]}
        )
        assert response.status_code == 200
        assert response.json()["message"] == "success"
        assert response.json()["already_completed"] is False

        response = await client.post(
            "/api/checkout/orders/confirm", json={"source": session["id"]}
        )
        assert response.status_code == 200
        assert response.json()["already_completed"] is True

        response = await client.get("/api/ambassador/rankings")
        assert response.status_code == 200
        assert response.json() == {"Ada Lovelace": pytest.approx(4.55)}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_link(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        response = await client.post(
            "/api/checkout/orders", json=_order_payload(seed, code="abc123")
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_link"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_quantity(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        payload = _order_payload(seed, products=[{"product_id": seed["mug_id"], "quantity": 0}])

        response = await client.post("/api/checkout/orders", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_quantity"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_link(
        self, client: AsyncClient, seed: Dict[str, Any], session_factory: Any
    ) -> None:
        async with session_factory() as db:
            link_id = (
                await db.execute(select(Link.id).where(Link.code == seed["code"]))
            ).scalar_one()
            await db.execute(
                link_products.insert(), [{"link_id": link_id, "product_id": seed["mug_id"]}]
            )
            await db.commit()

        response = await client.get(f"/api/checkout/links/{seed['code']}")

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == "ada42"
        assert body["user"]["email"] == "ada@example.com"
        assert "password" not in body["user"]
        assert [(p["title"], p["price"]) for p in body["products"]] == [("Mug", 10.0)]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_link_not_found(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        response = await client.get("/api/checkout/links/nope")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "link_not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_confirm_without_source(self, client: AsyncClient) -> None:
        response = await client.post("/api/checkout/orders/confirm", json={})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "missing_source"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_confirm_unknown_source(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/checkout/orders/confirm", json={"source": "cs_test_missing"}
        )

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "order_not_found"


class TestAdminEndpoints:
    """Test suite for admin routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ambassadors_with_revenue(
        self, client: AsyncClient, seed: Dict[str, Any], add_order: Any
    ) -> None:
        await add_order(seed["ambassador_id"], seed["code"], [(10.0, 3)])

        response = await client.get("/api/admin/ambassadors")

        assert response.status_code == 200
        assert response.json() == [
            {
                "id": seed["ambassador_id"],
                "first_name": "Ada",
                "last_name": "Lovelace",
                "email": "ada@example.com",
                "revenue": pytest.approx(3.0),
            }
        ]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_orders(self, client: AsyncClient, seed: Dict[str, Any], add_order: Any) -> None:
        await add_order(seed["ambassador_id"], seed["code"], [(10.0, 2), (2.5, 2)])

        response = await client.get("/api/admin/orders")

        assert response.status_code == 200
        orders = response.json()
        assert len(orders) == 1
        assert orders[0]["name"] == "Buyer One"
        assert orders[0]["total"] == pytest.approx(25.0)
        assert len(orders[0]["order_items"]) == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_user_links(
        self, client: AsyncClient, seed: Dict[str, Any], add_order: Any
    ) -> None:
        paid = await add_order(seed["ambassador_id"], seed["code"], [(10.0, 2)])
        await add_order(seed["ambassador_id"], seed["code"], [(99.0, 1)], complete=False)

        response = await client.get(
            f"/api/admin/users/{seed['ambassador_id']}/links",
            headers={"X-User-Id": str(seed["admin_id"])},
        )

        assert response.status_code == 200
        links = response.json()
        assert [link["code"] for link in links] == ["ada42"]
        assert [order["id"] for order in links[0]["orders"]] == [paid]
        assert links[0]["orders"][0]["total"] == pytest.approx(20.0)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_user_links_empty(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        response = await client.get(f"/api/admin/users/{seed['admin_id']}/links")

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_admin_user(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        response = await client.get(
            "/api/admin/user", headers={"X-User-Id": str(seed["admin_id"])}
        )

        assert response.status_code == 200
        assert response.json() == {
            "id": seed["admin_id"],
            "first_name": "Grace",
            "last_name": "Hopper",
            "email": "grace@example.com",
            "is_ambassador": False,
        }


class TestAmbassadorEndpoints:
    """Test suite for ambassador routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stats_requires_identity(self, client: AsyncClient) -> None:
        response = await client.get("/api/ambassador/stats")

        assert response.status_code == 401

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ambassador_user_includes_revenue(
        self, client: AsyncClient, seed: Dict[str, Any], add_order: Any
    ) -> None:
        await add_order(seed["ambassador_id"], seed["code"], [(10.0, 2), (25.5, 1)])
        await add_order(seed["ambassador_id"], seed["code"], [(100.0, 1)], complete=False)

        response = await client.get(
            "/api/ambassador/user", headers={"X-User-Id": str(seed["ambassador_id"])}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["email"] == "ada@example.com"
        assert body["is_ambassador"] is True
        assert body["revenue"] == pytest.approx(4.55)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ambassador_user_unknown(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        response = await client.get("/api/ambassador/user", headers={"X-User-Id": "4242"})

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "user_not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ambassador_user_requires_identity(self, client: AsyncClient) -> None:
        response = await client.get("/api/ambassador/user")

        assert response.status_code == 401

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, seed: Dict[str, Any], add_order: Any) -> None:
        await add_order(seed["ambassador_id"], seed["code"], [(10.0, 2)])

        response = await client.get(
            "/api/ambassador/stats", headers={"X-User-Id": str(seed["ambassador_id"])}
        )

        assert response.status_code == 200
        assert response.json() == [{"code": "ada42", "count": 1, "revenue": pytest.approx(20.0)}]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_ambassador(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/ambassador/register",
            json={
                "first_name": "Alan",
                "last_name": "Turing",
                "email": "alan@example.com",
                "password": "enigma",
                "password_confirm": "enigma",
            },
        )

        assert response.status_code == 201
        assert response.json()["is_ambassador"] is True
        assert "password" not in response.json()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_password_mismatch(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/ambassador/register",
            json={
                "first_name": "Alan",
                "last_name": "Turing",
                "email": "alan@example.com",
                "password": "enigma",
                "password_confirm": "bombe",
            },
        )

        assert response.status_code == 400

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_info(self, client: AsyncClient, seed: Dict[str, Any]) -> None:
        response = await client.put(
            "/api/ambassador/users/info",
            headers={"X-User-Id": str(seed["ambassador_id"])},
            json={"first_name": "Augusta", "last_name": "King", "email": "augusta@example.com"},
        )

        assert response.status_code == 200
        assert response.json()["email"] == "augusta@example.com"


class TestMonitoringEndpoints:
    """Test suite for health and metrics routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert set(body["checks"]) == {"database", "redis", "cache_invalidation"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_readiness_fails_when_redis_is_down(
        self, client: AsyncClient, fake_redis: Any
    ) -> None:
        fake_redis.fail_on.add("ping")

        response = await client.get("/health/ready")

        assert response.status_code == 503

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient) -> None:
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "orders_created_total" in response.text
