"""Event creation and read routes."""

import base64
import binascii
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel, Field

from festos_api.errors import ValidationError
from festos_api.services.container import get_health_monitor, get_orchestrator
from festos_api.services.orchestrator import EventOrchestrator
from festos_api.utils.responses import success

router = APIRouter(prefix="/v1/events", tags=["events"])


class EventPrepareRequest(BaseModel):
    """Event creation request."""

    title: str
    description: str = ""
    location: str = ""
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    max_capacity: int
    ticket_price: Decimal = Field(..., description="Price in native token units, e.g. 0.01")
    visibility: str = "public"
    require_approval: bool = False
    has_poap: bool = False
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    creator_id: str = Field(..., description="Creator wallet address")
    banner_image_base64: Optional[str] = Field(None, description="Banner image bytes, base64 encoded")
    banner_content_type: str = "image/jpeg"
    idempotency_token: Optional[str] = Field(None, max_length=255)


class EventFinalizeRequest(BaseModel):
    """Signed ledger operation for a prepared event."""

    signed_operation: str = Field(..., description="Transaction hash or raw signed transaction")
    timeout_seconds: Optional[float] = Field(None, ge=0, le=600)


def _decode_banner(encoded: Optional[str]) -> Optional[bytes]:
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Banner image is not valid base64", field="banner_image_base64") from e


@router.post("/prepare", status_code=status.HTTP_201_CREATED)
def prepare_event(
    request_data: EventPrepareRequest,
    request: Request,
    idempotency_key: Optional[str] = Header(None),
    orchestrator: EventOrchestrator = Depends(get_orchestrator),
):
    """Start event creation and return the unsigned ledger operation to sign."""
    fields = request_data.model_dump(exclude={"banner_image_base64"})
    fields["banner_image"] = _decode_banner(request_data.banner_image_base64)
    result = orchestrator.prepare_event_creation(
        fields,
        idempotency_token=request_data.idempotency_token or idempotency_key,
    )
    return success(request, result)


@router.post("/{event_id}/finalize")
def finalize_event(
    event_id: str,
    request_data: EventFinalizeRequest,
    request: Request,
    orchestrator: EventOrchestrator = Depends(get_orchestrator),
):
    """Confirm the signed operation; a pending result means finality was not reached yet."""
    result = orchestrator.finalize_event_creation(
        event_id, request_data.signed_operation, timeout=request_data.timeout_seconds
    )
    return success(request, result)


@router.get("")
def list_events(
    request: Request,
    page: int = Query(1),
    limit: int = Query(20),
    category: Optional[str] = None,
    location: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    creator_id: Optional[str] = None,
    visibility: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    sort_by: Optional[str] = None,
    order: Optional[str] = None,
    orchestrator: EventOrchestrator = Depends(get_orchestrator),
):
    """Search events. Served from the ledger when the database is unavailable."""
    result = orchestrator.get_events(
        {
            "page": page,
            "limit": limit,
            "category": category,
            "location": location,
            "status": status_filter,
            "search": search,
            "creator_id": creator_id,
            "visibility": visibility,
            "price_range": {"min": min_price, "max": max_price},
            "date_range": {"start": start_date, "end": end_date},
            "sort_by": sort_by,
            "order": order,
        }
    )
    return success(request, result)


@router.get("/{event_id}")
def get_event(
    event_id: str,
    request: Request,
    orchestrator: EventOrchestrator = Depends(get_orchestrator),
):
    """Get one event with its ledger verification state."""
    return success(request, orchestrator.get_event_by_id(event_id))


@router.post("/{event_id}/repair")
def repair_event(event_id: str, request: Request, monitor=Depends(get_health_monitor)):
    """Check one event against the ledger and apply the sync policy."""
    return success(request, monitor.repair_event(event_id))
