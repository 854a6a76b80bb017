"""
API routes for checkout, settlement and ambassador reporting.
"""
import time
from typing import Any, Dict, List

import bcrypt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from referral_settlement.core.ambassadors import (
    ambassador_revenue,
    get_link,
    link_stats,
    links_with_orders,
)
from referral_settlement.core.errors import SettlementError
from referral_settlement.core.settlement import CheckoutRequest, OrderLine
from referral_settlement.database.connection import get_db
from referral_settlement.database.models import Order, User

from .dependencies import Services, get_current_user_id, get_services
from .schemas import (
    AmbassadorProfileResponse,
    AmbassadorResponse,
    CheckoutLinkResponse,
    CheckoutSessionResponse,
    CompleteOrderRequest,
    CompleteOrderResponse,
    CreateOrderRequest,
    HealthCheckResponse,
    LinkResponse,
    LinkStatsResponse,
    OrderResponse,
    RegisterRequest,
    UpdateInfoRequest,
    UserResponse,
)

logger = structlog.get_logger(__name__)

checkout_router = APIRouter(prefix="/api/checkout", tags=["checkout"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])
ambassador_router = APIRouter(prefix="/api/ambassador", tags=["ambassador"])
monitoring_router = APIRouter(tags=["monitoring"])


def _http_error(e: SettlementError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_dict()["error"])


def _order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "transaction_id": order.transaction_id,
        "user_id": order.user_id,
        "code": order.code,
        "ambassador_email": order.ambassador_email,
        "name": order.name,
        "email": order.email,
        "address": order.address,
        "city": order.city,
        "country": order.country,
        "zip": order.zip,
        "complete": order.complete,
        "total": order.get_total(),
        "order_items": [
            {
                "id": item.id,
                "product_title": item.product_title,
                "price": item.price,
                "quantity": item.quantity,
                "admin_revenue": item.admin_revenue,
                "ambassador_revenue": item.ambassador_revenue,
            }
            for item in order.order_items
        ],
    }


def _user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "is_ambassador": user.is_ambassador,
    }


@checkout_router.post(
    "/orders",
    response_model=CheckoutSessionResponse,
    summary="Create an order",
    description="Stage an order for a referral link and open a checkout session",
)
async def create_order(
    request: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Create a pending order; nothing is persisted unless the checkout session exists."""
    start_time = time.time()

    checkout = CheckoutRequest(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        address=request.address,
        country=request.country,
        city=request.city,
        zip=request.zip,
        code=request.code,
        products=[OrderLine(p.product_id, p.quantity) for p in request.products],
    )

    try:
        session = await services.coordinator.create_order(checkout, db)
    except SettlementError as e:
        logger.warning("api_create_order_error", error=e.message, error_code=e.error_code)
        raise _http_error(e)

    logger.info(
        "api_create_order_success",
        session_id=session.id,
        duration_seconds=time.time() - start_time,
    )
    return {"id": session.id, "url": session.url}


@checkout_router.post(
    "/orders/confirm",
    response_model=CompleteOrderResponse,
    summary="Complete an order",
    description="Settle the order paid through the given checkout session",
)
async def complete_order(
    request: CompleteOrderRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Mark the order paid, credit the referrer and notify in the background."""
    try:
        result = await services.coordinator.complete_order(request.source, db)
    except SettlementError as e:
        logger.warning("api_complete_order_error", error=e.message, error_code=e.error_code)
        raise _http_error(e)

    return {
        "message": "success",
        "order_id": result.order_id,
        "already_completed": result.already_completed,
    }


@checkout_router.get(
    "/links/{code}",
    response_model=CheckoutLinkResponse,
    summary="Referral link for checkout",
)
async def checkout_link(code: str, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    """The link's owner and the products a buyer can order through it."""
    try:
        link = await get_link(db, code)
    except SettlementError as e:
        raise _http_error(e)

    return {
        "id": link.id,
        "code": link.code,
        "user": _user_to_dict(link.user),
        "products": [
            {
                "id": product.id,
                "title": product.title,
                "description": product.description,
                "image": product.image,
                "price": product.price,
            }
            for product in sorted(link.products, key=lambda product: product.id)
        ],
    }


@admin_router.get(
    "/ambassadors",
    response_model=List[AmbassadorResponse],
    summary="Ambassadors with revenue",
)
async def ambassadors(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> List[Dict[str, Any]]:
    """Every ambassador with revenue from completed orders, served from cache."""
    try:
        return await services.revenue_cache.get_ambassadors_with_revenue(db)
    except SettlementError as e:
        raise _http_error(e)


@admin_router.get("/orders", response_model=List[OrderResponse], summary="All orders")
async def orders(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> List[Dict[str, Any]]:
    """Every order with its items, buyer name and total."""
    try:
        return [_order_to_dict(order) for order in await services.coordinator.list_orders(db)]
    except SettlementError as e:
        raise _http_error(e)


@admin_router.get(
    "/users/{user_id}/links",
    response_model=List[LinkResponse],
    summary="Links of a user",
)
async def user_links(user_id: int, db: AsyncSession = Depends(get_db)) -> List[Dict[str, Any]]:
    """Every link of the user with the completed orders placed through it."""
    try:
        links = await links_with_orders(db, user_id)
    except SettlementError as e:
        raise _http_error(e)

    return [
        {
            "id": link.id,
            "code": link.code,
            "user_id": link.user_id,
            "orders": [_order_to_dict(order) for order in orders],
        }
        for link, orders in links
    ]


@admin_router.get("/user", response_model=UserResponse, summary="Current user")
async def admin_user(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    try:
        return _user_to_dict(await services.accounts.get_user(db, user_id))
    except SettlementError as e:
        raise _http_error(e)


@ambassador_router.get(
    "/user", response_model=AmbassadorProfileResponse, summary="Current ambassador"
)
async def ambassador_user(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """The caller's profile with the revenue of its completed orders."""
    try:
        user = await services.accounts.get_user(db, user_id)
        revenue = await ambassador_revenue(db, user)
    except SettlementError as e:
        raise _http_error(e)
    return {**_user_to_dict(user), "revenue": revenue}


@ambassador_router.get("/rankings", response_model=Dict[str, float], summary="Leaderboard")
async def rankings(services: Services = Depends(get_services)) -> Dict[str, float]:
    """Ambassador display names with cumulative revenue, highest first."""
    try:
        return await services.leaderboard.rankings()
    except Exception as e:
        logger.error("api_rankings_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Rankings unavailable"
        )


@ambassador_router.get("/stats", response_model=List[LinkStatsResponse], summary="Link stats")
async def stats(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Completed orders and revenue per link of the calling ambassador."""
    try:
        return await link_stats(db, user_id)
    except SettlementError as e:
        raise _http_error(e)


async def _register(
    request: RegisterRequest, is_ambassador: bool, db: AsyncSession, services: Services
) -> Dict[str, Any]:
    if request.password != request.password_confirm:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")

    password_hash = bcrypt.hashpw(request.password.encode(), bcrypt.gensalt(12))
    try:
        user = await services.accounts.register(
            db,
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            password_hash=password_hash,
            is_ambassador=is_ambassador,
        )
    except SettlementError as e:
        raise _http_error(e)
    return _user_to_dict(user)


@admin_router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an admin",
)
async def register_admin(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return await _register(request, False, db, services)


@ambassador_router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an ambassador",
)
async def register_ambassador(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return await _register(request, True, db, services)


@admin_router.put("/users/info", response_model=UserResponse, summary="Update profile")
@ambassador_router.put("/users/info", response_model=UserResponse, summary="Update profile")
async def update_info(
    request: UpdateInfoRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Update the caller's name and email."""
    try:
        user = await services.accounts.update_info(
            db,
            user_id=user_id,
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
        )
    except SettlementError as e:
        raise _http_error(e)
    return _user_to_dict(user)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await services.health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Liveness endpoint."""
    return await services.health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
)
async def readiness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Readiness endpoint."""
    result = await services.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
