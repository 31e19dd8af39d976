"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from domain.order import PendingOrder
from domain.pricing import PaymentMethod
from services.claim_service import AccessValidation


# ============================================================================
# Webhook Models
# ============================================================================

class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment gateway."""
    received: bool = True
    outcome: str
    checkout_id: Optional[str] = None
    status: Optional[str] = None
    detail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "received": True,
                "outcome": "applied",
                "checkout_id": "co_5f1e3c7d9a2b4e6f8a0b1c2d3e4f5a6b",
                "status": "completed",
                "detail": ""
            }
        }


# ============================================================================
# Checkout Models
# ============================================================================

class CreateOrderRequest(BaseModel):
    """Request to start a checkout."""
    email: str = Field(..., min_length=3, description="Buyer email")
    name: Optional[str] = None
    product_id: str = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.PIX
    coupon_code: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "email": "buyer@example.com",
                "name": "Maria Silva",
                "product_id": "PRODUCT_ANNUAL_2025",
                "payment_method": "PIX",
                "coupon_code": "SAVE50"
            }
        }


class PriceBreakdownResponse(BaseModel):
    original_price: Decimal
    pix_discount: Decimal
    coupon_discount: Decimal
    final_price: Decimal


class CreateOrderResponse(BaseModel):
    """Created pending order with its claim token."""
    checkout_id: str
    status: str
    claim_token: Optional[str]
    claim_token_expires_at: Optional[datetime]
    expires_at: Optional[datetime]
    price: PriceBreakdownResponse

    class Config:
        json_schema_extra = {
            "example": {
                "checkout_id": "co_5f1e3c7d9a2b4e6f8a0b1c2d3e4f5a6b",
                "status": "pending",
                "claim_token": "m0Zk3...",
                "claim_token_expires_at": "2025-01-08T12:00:00Z",
                "expires_at": "2025-01-08T12:00:00Z",
                "price": {
                    "original_price": "297.00",
                    "pix_discount": "50.00",
                    "coupon_discount": "50.00",
                    "final_price": "197.00"
                }
            }
        }


class LinkGatewayRequest(BaseModel):
    """Gateway ids issued after the gateway checkout was created."""
    gateway_checkout_id: str = Field(..., min_length=1)
    gateway_payment_id: Optional[str] = None


class PendingOrderResponse(BaseModel):
    """Pending order details for the confirmation screen."""
    checkout_id: str
    email: str
    name: Optional[str] = None
    product_id: str
    status: str
    payment_method: Optional[str] = None
    original_price: Optional[Decimal] = None
    discount_amount: Decimal
    final_price: Decimal
    coupon_code: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: PendingOrder) -> "PendingOrderResponse":
        return cls(
            checkout_id=order.checkout_id,
            email=order.email,
            name=order.name,
            product_id=order.product_id,
            status=order.status.value,
            payment_method=order.payment_method,
            original_price=order.original_price,
            discount_amount=order.discount_amount,
            final_price=order.final_price,
            coupon_code=order.coupon_code,
            created_at=order.created_at,
            expires_at=order.expires_at,
        )


class PaymentStatusResponse(BaseModel):
    """Payment status poll result; the claim token appears once confirmed."""
    checkout_id: str
    status: str  # "pending" | "confirmed" | "failed"
    order_status: str
    claim_token: Optional[str] = None
    email: str
    product_id: str
    final_price: Decimal


# ============================================================================
# Claim Models
# ============================================================================

class AccessValidationResponse(BaseModel):
    """Whether the visitor may create an account, plus order metadata."""
    is_valid: bool
    flow: Optional[str] = None
    reason: Optional[str] = None
    checkout_id: Optional[str] = None
    email: Optional[str] = None
    product_id: Optional[str] = None
    final_price: Optional[Decimal] = None

    @classmethod
    def from_validation(cls, validation: AccessValidation) -> "AccessValidationResponse":
        order = validation.order if validation.is_valid else None
        return cls(
            is_valid=validation.is_valid,
            flow=validation.flow.value if validation.flow is not None else None,
            reason=validation.reason,
            checkout_id=order.checkout_id if order else None,
            email=order.email if order else None,
            product_id=order.product_id if order else None,
            final_price=order.final_price if order else None,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "is_valid": True,
                "flow": "claim_token",
                "reason": None,
                "checkout_id": "co_5f1e3c7d9a2b4e6f8a0b1c2d3e4f5a6b",
                "email": "buyer@example.com",
                "product_id": "PRODUCT_ANNUAL_2025",
                "final_price": "197.00"
            }
        }


class ResolveAccessRequest(BaseModel):
    """Any of the supported signup credentials; the first supplied decides."""
    claim_token: Optional[str] = None
    signup_token: Optional[str] = None
    order_id: Optional[str] = None


class CompleteSignupRequest(BaseModel):
    claim_token: str = Field(..., min_length=1)
    identity_user_id: str = Field(..., min_length=1)


class CompleteSignupResponse(BaseModel):
    completed: bool
    checkout_id: Optional[str] = None
    account_id: Optional[str] = None
    reason: Optional[str] = None


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Invalid request",
                "detail": "Coupon SAVE50 not found",
                "status_code": 400
            }
        }
