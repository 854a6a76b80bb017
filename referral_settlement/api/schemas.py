"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OrderLineRequest(BaseModel):
    """One product of a checkout request."""

    product_id: int = Field(..., description="Catalog product id")
    quantity: int = Field(..., description="Units to buy (at least 1)")


class CreateOrderRequest(BaseModel):
    """Request schema for creating an order through a referral link."""

    first_name: str = Field(..., description="Buyer first name")
    last_name: str = Field(..., description="Buyer last name")
    email: str = Field(..., description="Buyer email")
    address: str = Field(..., description="Street address")
    country: str = Field(..., description="Country")
    city: str = Field(..., description="City")
    zip: str = Field(..., description="Postal code")
    code: str = Field(..., description="Referral link code")
    products: List[OrderLineRequest] = Field(..., description="Products and quantities")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "first_name": "Ada",
                    "last_name": "Lovelace",
                    "email": "ada@example.com",
                    "address": "12 Analytical Row",
                    "country": "UK",
                    "city": "London",
                    "zip": "N1 9GU",
                    "code": "ambassador42",
                    "products": [{"product_id": 1, "quantity": 2}],
                }
            ]
        }
    }


class CheckoutSessionResponse(BaseModel):
    """Response schema for order creation."""

    id: str = Field(..., description="Checkout session id")
    url: Optional[str] = Field(default=None, description="Hosted checkout page to redirect to")


class CompleteOrderRequest(BaseModel):
    """Request schema for confirming a paid checkout."""

    source: str = Field(default="", description="Checkout session id returned at creation")


class CompleteOrderResponse(BaseModel):
    """Response schema for order completion."""

    message: str = Field(..., description="Acknowledgement")
    order_id: int = Field(..., description="Completed order id")
    already_completed: bool = Field(
        default=False, description="True if the order had been settled by an earlier call"
    )


class AmbassadorResponse(BaseModel):
    """Ambassador with aggregated referral revenue."""

    id: int
    first_name: str
    last_name: str
    email: str
    revenue: float = Field(..., description="Revenue earned from completed orders")


class OrderItemResponse(BaseModel):
    """Line item of an order."""

    id: int
    product_title: str
    price: float
    quantity: int
    admin_revenue: float
    ambassador_revenue: float


class OrderResponse(BaseModel):
    """Order with items and totals."""

    id: int
    transaction_id: Optional[str]
    user_id: int
    code: str
    ambassador_email: str
    name: str = Field(..., description="Buyer full name")
    email: str
    address: str
    city: str
    country: str
    zip: str
    complete: bool
    total: float = Field(..., description="Sum of price * quantity")
    order_items: List[OrderItemResponse]


class LinkStatsResponse(BaseModel):
    """Completed order count and revenue of one referral link."""

    code: str
    count: int
    revenue: float


class RegisterRequest(BaseModel):
    """Request schema for registering a user."""

    first_name: str
    last_name: str
    email: str
    password: str = Field(..., min_length=1, max_length=72)
    password_confirm: str = Field(..., min_length=1, max_length=72)


class UpdateInfoRequest(BaseModel):
    """Request schema for updating profile information."""

    first_name: str
    last_name: str
    email: str


class UserResponse(BaseModel):
    """Public user fields."""

    id: int
    first_name: str
    last_name: str
    email: str
    is_ambassador: bool


class AmbassadorProfileResponse(UserResponse):
    """Caller profile on the ambassador surface."""

    revenue: float = Field(..., description="Revenue earned from the caller's completed orders")


class ProductResponse(BaseModel):
    id: int
    title: str
    description: str
    image: str
    price: float


class LinkResponse(BaseModel):
    """Referral link with the completed orders placed through it."""

    id: int
    code: str
    user_id: int
    orders: List[OrderResponse]


class CheckoutLinkResponse(BaseModel):
    """Link as shown on the checkout page: its owner and the products it sells."""

    id: int
    code: str
    user: UserResponse
    products: List[ProductResponse]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
