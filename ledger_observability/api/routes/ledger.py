"""Throttled ledger endpoints.

The accounting behaviour behind these endpoints lives elsewhere; here they
acknowledge the call and record one counter sample each, so they carry the
rate limit rules and feed the metrics pipeline.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header

from ledger_observability.core.container import Services, get_services
from ledger_observability.core.request_context import get_request_context
from ledger_observability.schemas.ledger import MessageResponse, ThrottleErrorBody


def bind_identity(
    x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
    x_company_id: Annotated[str | None, Header(alias="X-Company-ID")] = None,
) -> None:
    """Copy caller identity headers onto the request context for logging."""

    context = get_request_context()
    if context is None:
        return
    if x_user_id:
        context.user_id = x_user_id
    if x_company_id:
        context.company_id = x_company_id


router = APIRouter(
    tags=["Ledger"],
    dependencies=[Depends(bind_identity)],
    responses={429: {"model": ThrottleErrorBody, "description": "Rate limit exceeded"}},
)

ServicesDep = Annotated[Services, Depends(get_services)]


def _company_tags() -> dict[str, str]:
    context = get_request_context()
    if context is None or context.company_id is None:
        return {}
    return {"company_id": str(context.company_id)}


@router.post("/otp/generate", response_model=MessageResponse)
def generate_otp(services: ServicesDep) -> MessageResponse:
    services.tracker.track_counter("otp.generated", 1, _company_tags())
    return MessageResponse(message="OTP sent")


@router.post("/otp/validate", response_model=MessageResponse)
def validate_otp(services: ServicesDep) -> MessageResponse:
    services.tracker.track_counter("otp.validated", 1, _company_tags())
    return MessageResponse(message="OTP validated")


@router.post("/receipts", response_model=MessageResponse)
def upload_receipt(services: ServicesDep) -> MessageResponse:
    services.tracker.track_counter("receipts.uploaded", 1, _company_tags())
    return MessageResponse(message="Receipt uploaded")


@router.post("/ai/categorize", response_model=MessageResponse)
def categorize_entry(services: ServicesDep) -> MessageResponse:
    with services.tracker.timed("ai.categorization_ms", _company_tags()):
        services.tracker.track_counter("ai.categorizations", 1, _company_tags())
    return MessageResponse(message="Entry categorized")


@router.post("/entries", response_model=MessageResponse)
def create_entry(services: ServicesDep) -> MessageResponse:
    services.tracker.track_counter("entries.created", 1, _company_tags())
    return MessageResponse(message="Entry created")
