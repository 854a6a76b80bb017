"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CheckoutSessionResponse,
    CompleteOrderRequest,
    CompleteOrderResponse,
    CreateOrderRequest,
)

__all__ = [
    "app",
    "CheckoutSessionResponse",
    "CompleteOrderRequest",
    "CompleteOrderResponse",
    "CreateOrderRequest",
]
