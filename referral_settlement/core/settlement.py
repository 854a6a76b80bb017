"""
Order settlement coordinator.

Owns the two state transitions of an order:

CreateOrder
1. Validate input
2. Resolve the referral link
3. Stage the order and its items (price snapshot + revenue split)
4. Request a checkout session with the staged line items
5. Attach the session id
6. Commit, or roll everything back if any step failed

CompleteOrder
1. Find the order by checkout session id
2. Flip ``complete`` (conditional update, so a repeated call cannot settle twice)
3. Commit and invalidate the ambassador revenue snapshot
4. Increment the leaderboard
5. Send settlement e-mails in the background
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from referral_settlement.config import Settings, get_settings
from referral_settlement.core.background import BestEffortDispatcher
from referral_settlement.core.cache_invalidation import CacheInvalidationWorker
from referral_settlement.core.errors import (
    InvalidLink,
    InvalidProduct,
    InvalidQuantity,
    InvalidRequest,
    MissingSource,
    OrderNotFound,
    PersistenceError,
    ProviderError,
    SettlementError,
    UserLookupFailed,
)
from referral_settlement.core.leaderboard import Leaderboard
from referral_settlement.core.revenue import split_revenue, sum_revenue, to_minor_units
from referral_settlement.database.models import Link, Order, OrderItem, Product, User
from referral_settlement.integrations.notifier import EmailNotifier, NotificationError
from referral_settlement.integrations.stripe_client import (
    CheckoutSession,
    PaymentLineItem,
    StripeClient,
    StripeError,
)
from referral_settlement.monitoring.logging import bind_order_context
from referral_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class OrderLine:
    """Requested product and quantity."""

    product_id: int
    quantity: int


@dataclass
class CheckoutRequest:
    """Buyer details and products for a new order."""

    first_name: str
    last_name: str
    email: str
    address: str
    country: str
    city: str
    zip: str
    code: str
    products: List[OrderLine] = field(default_factory=list)


@dataclass
class CompletionResult:
    """Outcome of a completion call."""

    order_id: int
    transaction_id: str
    ambassador_revenue: float
    admin_revenue: float
    already_completed: bool = False


class SettlementCoordinator:
    """
    Creates orders with a checkout session and settles them once paid.

    Handles the complete order lifecycle with all-or-nothing checkout and
    best-effort side effects after settlement.
    """

    def __init__(
        self,
        stripe_client: StripeClient,
        leaderboard: Leaderboard,
        invalidation_worker: CacheInvalidationWorker,
        notifier: EmailNotifier,
        dispatcher: BestEffortDispatcher,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            stripe_client: Checkout session provider
            leaderboard: Ambassador leaderboard
            invalidation_worker: Queue for stale cache keys
            notifier: E-mail sender
            dispatcher: Runner for fire-and-forget notifications
            settings: Optional settings override
        """
        self.settings = settings or get_settings()
        self.stripe_client = stripe_client
        self.leaderboard = leaderboard
        self.invalidation_worker = invalidation_worker
        self.notifier = notifier
        self.dispatcher = dispatcher

        logger.info(
            "settlement_coordinator_initialized",
            idempotent_completion=self.settings.idempotent_completion,
        )

    @staticmethod
    def _validate_checkout_request(request: CheckoutRequest) -> None:
        """
        Validate checkout request parameters.

        Raises:
            InvalidRequest: If a buyer field or the product list is empty
            InvalidQuantity: If any quantity is below 1
        """
        required = {
            "first_name": request.first_name,
            "last_name": request.last_name,
            "email": request.email,
            "address": request.address,
            "country": request.country,
            "city": request.city,
            "zip": request.zip,
            "code": request.code,
        }
        missing = [name for name, value in required.items() if not value or not value.strip()]
        if missing:
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

        if not request.products:
            raise InvalidRequest("At least one product is required")

        for line in request.products:
            if line.quantity < 1:
                raise InvalidQuantity(
                    "Quantity for each product must be at least 1",
                    product_id=line.product_id,
                )

    async def _load_link(self, db: AsyncSession, code: str) -> Link:
        stmt = select(Link).options(selectinload(Link.user)).where(Link.code == code)
        result = await db.execute(stmt)
        link = result.scalar_one_or_none()
        if link is None:
            raise InvalidLink(f"Invalid link: {code}")
        return link

    async def create_order(self, request: CheckoutRequest, db: AsyncSession) -> CheckoutSession:
        """
        Create a pending order and its checkout session.

        The order and every item are committed if and only if the checkout
        session was created; any failure rolls the whole transaction back.

        Args:
            request: Buyer details, referral code and products
            db: Database session

        Returns:
            CheckoutSession: Session the buyer is redirected to

        Raises:
            InvalidRequest: If input validation fails
            InvalidLink: If the referral code is unknown
            InvalidProduct: If a product id is unknown
            ProviderError: If the checkout session could not be created
            PersistenceError: If the database write fails
        """
        correlation_id = uuid.uuid4()

        logger.info(
            "order_creation_started",
            correlation_id=str(correlation_id),
            code=request.code,
            products=len(request.products),
        )

        try:
            self._validate_checkout_request(request)
        except InvalidRequest:
            metrics.record_order_created("invalid")
            raise

        try:
            link = await self._load_link(db, request.code)

            order = Order(
                code=link.code,
                user_id=link.user_id,
                ambassador_email=link.user.email,
                first_name=request.first_name,
                last_name=request.last_name,
                email=request.email,
                address=request.address,
                country=request.country,
                city=request.city,
                zip=request.zip,
                complete=False,
                created_at=datetime.now(timezone.utc),
            )
            db.add(order)
            await db.flush()

            line_items: List[PaymentLineItem] = []
            for line in request.products:
                product = await db.get(Product, line.product_id)
                if product is None:
                    raise InvalidProduct(
                        f"Invalid product ID: {line.product_id}", product_id=line.product_id
                    )

                split = split_revenue(product.price, line.quantity, self.settings.referrer_share)
                db.add(
                    OrderItem(
                        order_id=order.id,
                        product_title=product.title,
                        price=product.price,
                        quantity=line.quantity,
                        ambassador_revenue=split.ambassador_revenue,
                        admin_revenue=split.admin_revenue,
                    )
                )
                metrics.record_order_amount(split.line_total)

                line_items.append(
                    PaymentLineItem(
                        name=product.title,
                        description=product.description,
                        image=product.image,
                        unit_amount=to_minor_units(product.price),
                        quantity=line.quantity,
                    )
                )

            await db.flush()
            bind_order_context(order_id=order.id)

            logger.info(
                "order_staged",
                correlation_id=str(correlation_id),
                items=len(line_items),
            )

            start_time = time.time()
            try:
                session = await self.stripe_client.create_checkout_session(
                    line_items=line_items,
                    idempotency_key=f"checkout:{correlation_id}",
                    metadata={"order_id": str(order.id), "code": order.code},
                )
            except StripeError as e:
                logger.error(
                    "checkout_session_failed",
                    correlation_id=str(correlation_id),
                    error=str(e),
                    error_type=e.error_type.value,
                )
                raise ProviderError(f"Checkout failed: {e}", error_type=e.error_type.value) from e
            finally:
                metrics.record_checkout_session_duration(time.time() - start_time)

            order.transaction_id = session.id
            bind_order_context(transaction_id=session.id)
            await db.flush()
            await db.commit()

        except SettlementError as e:
            await db.rollback()
            metrics.record_order_created(
                "provider_error" if isinstance(e, ProviderError) else "invalid"
            )
            logger.warning(
                "order_creation_rolled_back",
                correlation_id=str(correlation_id),
                error=e.message,
                error_code=e.error_code,
            )
            raise

        except SQLAlchemyError as e:
            await db.rollback()
            metrics.record_order_created("failed")
            logger.error(
                "order_creation_persistence_error",
                correlation_id=str(correlation_id),
                error=str(e),
            )
            raise PersistenceError("Failed to create order") from e

        metrics.record_order_created("created")
        logger.info("order_created_successfully", correlation_id=str(correlation_id))

        return session

    async def _find_by_transaction(self, db: AsyncSession, source: str) -> Order:
        stmt = (
            select(Order)
            .options(selectinload(Order.order_items))
            .where(Order.transaction_id == source)
        )
        result = await db.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound("Order not found", transaction_id=source)
        return order

    async def _mark_complete(self, db: AsyncSession, order: Order) -> bool:
        """
        Flip ``complete`` to true and commit.

        Returns:
            bool: False if another call already completed the order
        """
        if not self.settings.idempotent_completion:
            order.complete = True
            await db.flush()
            await db.commit()
            return True

        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.complete.is_(False))
            .values(complete=True)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    async def complete_order(self, source: str, db: AsyncSession) -> CompletionResult:
        """
        Settle a paid order.

        Once the order row is committed as complete there is no compensation:
        a failed referrer lookup, leaderboard update or e-mail leaves the order
        settled. Operators reconcile those cases from the logs.

        Args:
            source: Checkout session id the provider confirmed
            db: Database session

        Returns:
            CompletionResult: Settled revenue, or ``already_completed``

        Raises:
            MissingSource: If ``source`` is empty
            OrderNotFound: If no order carries this session id
            UserLookupFailed: If the owning referrer no longer exists
            PersistenceError: If the database read or write fails
        """
        if not source or not source.strip():
            metrics.record_order_completed("invalid")
            raise MissingSource("Source is required")

        bind_order_context(transaction_id=source)
        logger.info("order_completion_started")

        try:
            order = await self._find_by_transaction(db, source)
        except OrderNotFound:
            metrics.record_order_completed("not_found")
            logger.warning("order_completion_not_found")
            raise
        except SQLAlchemyError as e:
            metrics.record_order_completed("failed")
            logger.error("order_lookup_failed", error=str(e))
            raise PersistenceError("Failed to fetch order") from e

        bind_order_context(order_id=order.id)
        ambassador_revenue, admin_revenue = sum_revenue(order.order_items)

        if order.complete and self.settings.idempotent_completion:
            return self._already_completed(order, ambassador_revenue, admin_revenue)

        try:
            settled = await self._mark_complete(db, order)
        except SQLAlchemyError as e:
            await db.rollback()
            metrics.record_order_completed("failed")
            logger.error("order_update_failed", error=str(e))
            raise PersistenceError("Failed to update order") from e

        if not settled:
            return self._already_completed(order, ambassador_revenue, admin_revenue)

        self.invalidation_worker.clear_cache(self.settings.ambassadors_cache_key)

        try:
            user = await db.get(User, order.user_id)
        except SQLAlchemyError as e:
            logger.error("order_owner_lookup_error", error=str(e))
            user = None

        if user is None:
            metrics.record_order_completed("user_lookup_failed")
            logger.error(
                "order_completed_without_owner",
                user_id=order.user_id,
                ambassador_revenue=ambassador_revenue,
            )
            raise UserLookupFailed("Failed to fetch user", order_id=order.id)

        try:
            await self.leaderboard.increment(user.name, ambassador_revenue)
            metrics.record_leaderboard_increment("success")
        except Exception as e:
            metrics.record_leaderboard_increment("failed")
            logger.error(
                "leaderboard_update_failed",
                member=user.name,
                amount=ambassador_revenue,
                error=str(e),
            )

        self.dispatcher.spawn(
            "settlement_notifications",
            self._send_notifications,
            order.id,
            order.code,
            order.ambassador_email,
            ambassador_revenue,
            admin_revenue,
        )

        metrics.record_order_completed("settled")
        logger.info(
            "order_completed_successfully",
            ambassador_revenue=ambassador_revenue,
            admin_revenue=admin_revenue,
        )

        return CompletionResult(
            order_id=order.id,
            transaction_id=source,
            ambassador_revenue=ambassador_revenue,
            admin_revenue=admin_revenue,
        )

    def _already_completed(
        self, order: Order, ambassador_revenue: float, admin_revenue: float
    ) -> CompletionResult:
        metrics.record_order_completed("already_completed")
        logger.warning("order_already_completed")
        return CompletionResult(
            order_id=order.id,
            transaction_id=order.transaction_id,
            ambassador_revenue=ambassador_revenue,
            admin_revenue=admin_revenue,
            already_completed=True,
        )

    async def _send_notifications(
        self,
        order_id: int,
        code: str,
        ambassador_email: str,
        ambassador_revenue: float,
        admin_revenue: float,
    ) -> None:
        messages = [
            (
                ambassador_email,
                f"You earned ${ambassador_revenue:.2f} from the link #{code}",
            ),
            (
                self.settings.admin_email,
                f"Order #{order_id} with a total of ${admin_revenue:.2f} has been completed",
            ),
        ]
        for recipient, body in messages:
            try:
                await self.notifier.send(recipient, body)
            except NotificationError as e:
                logger.error(
                    "settlement_email_failed",
                    order_id=order_id,
                    recipient=recipient,
                    error=str(e),
                )

    async def list_orders(self, db: AsyncSession) -> List[Order]:
        """
        Fetch every order with its items.

        Raises:
            PersistenceError: If the query fails
        """
        stmt = select(Order).options(selectinload(Order.order_items)).order_by(Order.id)
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("order_listing_failed", error=str(e))
            raise PersistenceError("Failed to fetch orders") from e
        return list(result.scalars().all())
