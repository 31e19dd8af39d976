"""
Webhook API Endpoints.

Callbacks from the payment gateways. Any 2xx tells the gateway to stop
retrying, so only authentication failures (4xx) and internal failures (5xx)
answer anything else.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from api.dependencies import get_webhook_service
from api.models import ErrorResponse, WebhookResponse
from services.order_state_machine import TransitionOutcome
from services.webhook_receiver import WebhookAuthenticationError
from services.webhook_service import PaymentWebhookService

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return body


def _to_response(result: TransitionOutcome) -> WebhookResponse:
    return WebhookResponse(
        outcome=result.outcome.value,
        checkout_id=result.checkout_id,
        status=result.status.value if result.status is not None else None,
        detail=result.detail or None,
    )


@router.post(
    "/webhooks/asaas",
    response_model=WebhookResponse,
    responses=_ERROR_RESPONSES,
    summary="Asaas Webhook",
    description="Receive Asaas payment and checkout events."
)
async def asaas_webhook(
    request: Request,
    service: PaymentWebhookService = Depends(get_webhook_service),
):
    """
    Process an Asaas callback.

    Authenticated with the `asaas-access-token` header. Duplicate, orphaned
    and unhandled events are acknowledged with 200.

    **Example request:**
    ```json
    {
      "id": "evt_05b708f961d739ea7eba7e4db318f621",
      "event": "PAYMENT_CONFIRMED",
      "payment": {
        "id": "pay_080225913252",
        "status": "CONFIRMED",
        "value": 197.0,
        "externalReference": "co_5f1e3c7d9a2b4e6f8a0b1c2d3e4f5a6b-pix"
      }
    }
    ```
    """
    body = await _json_body(request)
    try:
        result = await run_in_threadpool(service.handle_asaas, request.headers, body)
        return _to_response(result)

    except WebhookAuthenticationError as e:
        logger.warning(f"Rejected Asaas webhook: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Asaas webhook failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to process webhook: {str(e)}"
        )


@router.post(
    "/webhooks/mercado-pago",
    response_model=WebhookResponse,
    responses=_ERROR_RESPONSES,
    summary="Mercado Pago Webhook",
    description="Receive Mercado Pago payment notifications."
)
async def mercado_pago_webhook(
    request: Request,
    service: PaymentWebhookService = Depends(get_webhook_service),
):
    """
    Process a Mercado Pago notification `{type, data: {id}}`.

    Authenticated with the `x-signature` / `x-request-id` headers. The
    payment is fetched from the Mercado Pago API before classification.
    """
    body = await _json_body(request)
    query_data_id: Optional[str] = request.query_params.get("data.id")
    try:
        result = await run_in_threadpool(service.handle_mercado_pago, request.headers, body, query_data_id)
        return _to_response(result)

    except WebhookAuthenticationError as e:
        logger.warning(f"Rejected Mercado Pago webhook: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Mercado Pago webhook failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to process webhook: {str(e)}"
        )
