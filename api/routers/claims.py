"""
Claims API Endpoints.

Signup access checks for paying customers. An invalid or expired credential
is a normal answer (`is_valid: false`), not an HTTP error.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_claim_service
from api.models import (
    AccessValidationResponse,
    CompleteSignupRequest,
    CompleteSignupResponse,
    ResolveAccessRequest,
)
from services.claim_service import ClaimService

router = APIRouter()


@router.get(
    "/claims/legacy/signup-token/{signup_token}",
    response_model=AccessValidationResponse,
    summary="Validate Legacy Signup Token",
)
def validate_legacy_signup_token(
    signup_token: str,
    service: ClaimService = Depends(get_claim_service),
):
    try:
        return AccessValidationResponse.from_validation(service.validate_legacy_signup_token(signup_token))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to validate signup token: {str(e)}"
        )


@router.get(
    "/claims/legacy/orders/{checkout_id}",
    response_model=AccessValidationResponse,
    summary="Validate Legacy Order Access",
)
def validate_legacy_order_access(
    checkout_id: str,
    service: ClaimService = Depends(get_claim_service),
):
    try:
        return AccessValidationResponse.from_validation(service.validate_legacy_order_access(checkout_id))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to validate order access: {str(e)}"
        )


@router.post(
    "/claims/resolve",
    response_model=AccessValidationResponse,
    summary="Resolve Signup Access",
    description="Validate whichever credential is supplied: claim token, then legacy signup token, then order id."
)
def resolve_signup_access(
    request: ResolveAccessRequest,
    service: ClaimService = Depends(get_claim_service),
):
    try:
        validation = service.resolve_signup_access(
            claim_token=request.claim_token,
            signup_token=request.signup_token,
            order_id=request.order_id,
        )
        return AccessValidationResponse.from_validation(validation)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to resolve signup access: {str(e)}"
        )


@router.post(
    "/claims/complete",
    response_model=CompleteSignupResponse,
    summary="Complete Signup",
    description="Consume a claim token after the user signed up and link the account to the order."
)
def complete_signup(
    request: CompleteSignupRequest,
    service: ClaimService = Depends(get_claim_service),
):
    """
    Finish signup for a paid order.

    Marks the claim token used, activates the account and completes the
    order. An unusable token returns `completed: false` with a reason.
    """
    try:
        result = service.complete_signup(request.claim_token, request.identity_user_id)
        return CompleteSignupResponse(
            completed=result.is_completed,
            checkout_id=result.order.checkout_id if result.order else None,
            account_id=result.account_id,
            reason=result.reason,
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to complete signup: {str(e)}"
        )


@router.get(
    "/claims/{claim_token}",
    response_model=AccessValidationResponse,
    summary="Validate Claim Token",
)
def validate_claim_token(
    claim_token: str,
    service: ClaimService = Depends(get_claim_service),
):
    """
    Check a claim token: it must exist, be unexpired and unused, and its
    order must be paid or awaiting signup.
    """
    try:
        return AccessValidationResponse.from_validation(service.validate_claim_token(claim_token))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to validate claim token: {str(e)}"
        )
