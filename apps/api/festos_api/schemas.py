"""Input models for the orchestration layer."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class EventCreateInput(BaseModel):
    """Structural shape of an event creation request."""

    title: str
    description: str = ""
    location: str = ""
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    max_capacity: int
    ticket_price: Decimal
    visibility: str = "public"
    require_approval: bool = False
    has_poap: bool = False
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    creator_id: str = Field(..., description="Creator wallet address")
    banner_image: Optional[bytes] = None
    banner_content_type: str = "image/jpeg"
    idempotency_token: Optional[str] = Field(None, max_length=255)
