"""
Stripe Checkout client with retry logic and error classification.

Implements:
- Exponential backoff for transient errors
- Circuit breaker pattern
- Idempotent checkout session creation
- Per-call timeout
"""
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from referral_settlement.config import Settings, get_settings
from referral_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class StripeError(Exception):
    """Base exception for Stripe-related errors."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Original Stripe exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StripeError) and error.error_type != StripeErrorType.PERMANENT


@dataclass(frozen=True)
class PaymentLineItem:
    """One product line of a checkout session."""

    name: str
    description: str
    image: str
    unit_amount: int  # smallest currency unit
    quantity: int

    def to_stripe(self, currency: str) -> Dict[str, Any]:
        """Render as a Checkout ``line_items`` entry."""
        product_data: Dict[str, Any] = {"name": self.name}
        if self.description:
            product_data["description"] = self.description
        if self.image:
            product_data["images"] = [self.image]

        return {
            "price_data": {
                "currency": currency,
                "product_data": product_data,
                "unit_amount": self.unit_amount,
            },
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class CheckoutSession:
    """Checkout session descriptor returned to the buyer."""

    id: str
    url: Optional[str]


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Stops sending requests for ``timeout`` seconds once ``failure_threshold``
    consecutive calls failed.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def before_call(self) -> None:
        """
        Refuse the call while the circuit is open.

        Raises:
            StripeError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self.state = "half_open"
                self.success_count = 0
                metrics.set_circuit_breaker_state(self.state)
                logger.info("circuit_breaker_half_open")
            else:
                raise StripeError(
                    "Circuit breaker is open",
                    StripeErrorType.TRANSIENT,
                )

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = "closed"
                metrics.set_circuit_breaker_state(self.state)
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self.state = "open"
            metrics.set_circuit_breaker_state(self.state)
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


class StripeClient:
    """
    Wrapper for Stripe Checkout with production-grade error handling.

    The Stripe SDK is blocking, so calls run in the default executor and are
    bounded by ``stripe_timeout_seconds``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Stripe client."""
        settings = settings or get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=settings.stripe_api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: Exception) -> StripeErrorType:
        """
        Classify Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            StripeErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _to_client_error(self, error: Exception) -> StripeError:
        error_type = self._classify_error(error)
        metrics.record_stripe_api_error(error_type.value)

        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )

        return StripeError(
            message=str(error),
            error_type=error_type,
            original_error=error,
        )

    async def create_checkout_session(
        self,
        line_items: List[PaymentLineItem],
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Create a Stripe Checkout session for the given line items.

        Transient and rate-limit errors are retried with exponential backoff
        under the same idempotency key, so a retried request never opens a
        second session.

        Args:
            line_items: Products, prices and quantities to charge
            idempotency_key: Idempotency key for preventing duplicate sessions
            metadata: Optional metadata attached to the session

        Returns:
            CheckoutSession: Session id and hosted checkout URL

        Raises:
            StripeError: If session creation fails
        """
        retrying = retry(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.settings.stripe_max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=16),
            reraise=True,
        )
        return await retrying(self._create_checkout_session)(
            line_items, idempotency_key, metadata
        )

    async def _create_checkout_session(
        self,
        line_items: List[PaymentLineItem],
        idempotency_key: str,
        metadata: Optional[Dict[str, str]],
    ) -> CheckoutSession:
        logger.info(
            "creating_checkout_session",
            line_items=len(line_items),
            idempotency_key=idempotency_key,
        )

        def _create() -> Any:
            return stripe.checkout.Session.create(
                success_url=self.settings.checkout_success_url,
                cancel_url=self.settings.checkout_cancel_url,
                payment_method_types=["card"],
                mode="payment",
                line_items=[item.to_stripe(self.settings.stripe_currency) for item in line_items],
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )

        self.circuit_breaker.before_call()
        loop = asyncio.get_running_loop()
        try:
            session = await asyncio.wait_for(
                loop.run_in_executor(None, _create),
                timeout=self.settings.stripe_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.circuit_breaker.on_failure()
            metrics.record_stripe_api_error(StripeErrorType.TRANSIENT.value)
            logger.error("checkout_session_timeout", idempotency_key=idempotency_key)
            raise StripeError("Checkout session request timed out", StripeErrorType.TRANSIENT)
        except stripe.StripeError as e:
            self.circuit_breaker.on_failure()
            raise self._to_client_error(e)

        self.circuit_breaker.on_success()
        logger.info("checkout_session_created", session_id=session.id)

        return CheckoutSession(id=session.id, url=getattr(session, "url", None))
