"""
Checkout API Endpoints.

Endpoints for creating pending orders and polling their payment status.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_checkout_service
from api.models import (
    CreateOrderRequest,
    CreateOrderResponse,
    ErrorResponse,
    LinkGatewayRequest,
    PaymentStatusResponse,
    PendingOrderResponse,
    PriceBreakdownResponse,
)
from services.checkout_service import CheckoutError, CheckoutService

router = APIRouter()


@router.post(
    "/checkout/orders",
    response_model=CreateOrderResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    summary="Create Pending Order",
    description="Price a product for a payment method (and optional coupon) and create a pending order."
)
def create_order(
    request: CreateOrderRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Create a pending order before redirecting the buyer to the gateway.

    **Pricing:**
    - PIX uses the plan's PIX price when one is configured
    - Coupons apply on top of the method price, never below the coupon's
      minimum price or zero

    The returned `checkout_id` must be sent to the gateway as the external
    reference. The `claim_token` lets the buyer finish signup after payment.
    """
    try:
        result = service.create_pending_order(
            email=request.email,
            product_id=request.product_id,
            payment_method=request.payment_method,
            name=request.name,
            coupon_code=request.coupon_code,
        )
        breakdown = result.breakdown
        return CreateOrderResponse(
            checkout_id=result.checkout_id,
            status=result.order.status.value,
            claim_token=result.claim_token,
            claim_token_expires_at=result.order.claim_token_expires_at,
            expires_at=result.order.expires_at,
            price=PriceBreakdownResponse(
                original_price=breakdown.original_price,
                pix_discount=breakdown.pix_discount,
                coupon_discount=breakdown.coupon_discount,
                final_price=breakdown.final_price,
            ),
        )

    except CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to create order: {str(e)}"
        )


@router.post(
    "/checkout/orders/{checkout_id}/gateway",
    response_model=PendingOrderResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Link Gateway Checkout",
    description="Record the checkout/payment ids the gateway issued for this order."
)
def link_gateway_checkout(
    checkout_id: str,
    request: LinkGatewayRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    try:
        if service.get_pending_order(checkout_id) is None:
            raise HTTPException(status_code=404, detail=f"Order {checkout_id} not found")

        order = service.link_gateway_checkout(
            checkout_id,
            request.gateway_checkout_id,
            request.gateway_payment_id,
        )
        return PendingOrderResponse.from_order(order)

    except HTTPException:
        raise
    except CheckoutError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to link gateway checkout: {str(e)}"
        )


@router.get(
    "/checkout/orders/{checkout_id}",
    response_model=PendingOrderResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get Pending Order",
)
def get_order(
    checkout_id: str,
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Look up an order by checkout id (email, price and product for the
    confirmation screen).
    """
    try:
        order = service.get_pending_order(checkout_id)
        if order is None:
            raise HTTPException(status_code=404, detail=f"Order {checkout_id} not found")
        return PendingOrderResponse.from_order(order)

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch order: {str(e)}"
        )


@router.get(
    "/checkout/orders/{checkout_id}/status",
    response_model=PaymentStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Check Payment Status",
)
def get_payment_status(
    checkout_id: str,
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Poll whether the order's payment was confirmed.

    `status` is `pending`, `confirmed` or `failed`. The claim token is only
    returned once payment is confirmed.
    """
    try:
        result = service.check_payment_status(checkout_id)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Order {checkout_id} not found")

        return PaymentStatusResponse(
            checkout_id=result.order.checkout_id,
            status=result.status.value,
            order_status=result.order.status.value,
            claim_token=result.claim_token,
            email=result.order.email,
            product_id=result.order.product_id,
            final_price=result.order.final_price,
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to check payment status: {str(e)}"
        )
