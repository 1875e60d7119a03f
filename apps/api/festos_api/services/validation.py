"""Semantic validation for event creation input and search filters."""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from festos_api.errors import ValidationError
from festos_api.models.event import EVENT_STATUSES
from festos_api.schemas import EventCreateInput
from festos_api.settings import get_settings
from festos_api.utils.clock import utcnow
from festos_api.utils.units import parse_price, to_wei

WALLET_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
VISIBILITIES = ("public", "private", "unlisted")
SORT_FIELDS = ("start_time", "end_time", "created_at", "ticket_price", "title", "max_capacity")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def to_naive_utc(value: datetime) -> datetime:
    """Normalize to naive UTC with second precision (ledger timestamps are seconds)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def coerce_create_input(data: Union[EventCreateInput, dict]) -> EventCreateInput:
    """Turn a raw payload into EventCreateInput, mapping structural errors to ValidationError."""
    if isinstance(data, EventCreateInput):
        return data
    try:
        return EventCreateInput.model_validate(data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        raise ValidationError(f"{field}: {error['msg']}", field=field) from e


def validate_create_input(data: EventCreateInput, now: Optional[datetime] = None) -> EventCreateInput:
    """
    Check the creation constraints and return a normalized copy.

    Raises:
        ValidationError: with the offending field name
    """
    settings = get_settings()
    now = now or utcnow()

    title = (data.title or "").strip()
    if not title:
        raise ValidationError("Title is required", field="title")
    if len(title) > 200:
        raise ValidationError("Title must be at most 200 characters", field="title", value=len(title))

    start_time = to_naive_utc(data.start_time)
    end_time = to_naive_utc(data.end_time)
    if start_time >= end_time:
        raise ValidationError("End time must be after start time", field="end_time")
    if start_time <= now:
        raise ValidationError("Event must start in the future", field="start_time")

    if not settings.event_min_capacity <= data.max_capacity <= settings.event_max_capacity:
        raise ValidationError(
            f"Max capacity must be between {settings.event_min_capacity} and {settings.event_max_capacity}",
            field="max_capacity",
            value=data.max_capacity,
        )

    price = data.ticket_price
    if not price.is_finite() or price < 0:
        raise ValidationError("Ticket price must be >= 0", field="ticket_price", value=str(price))
    try:
        to_wei(price)
    except ValueError as e:
        raise ValidationError(str(e), field="ticket_price", value=str(price)) from e

    if not WALLET_ADDRESS_PATTERN.match(data.creator_id or ""):
        raise ValidationError("Valid creator wallet address is required", field="creator_id")

    if data.visibility not in VISIBILITIES:
        raise ValidationError(
            f"Visibility must be one of {VISIBILITIES}", field="visibility", value=data.visibility
        )

    return data.model_copy(
        update={
            "title": title,
            "start_time": start_time,
            "end_time": end_time,
            "creator_id": data.creator_id.lower(),
            "tags": [t.strip() for t in data.tags if t and t.strip()],
        }
    )


def _parse_int(filters: dict, key: str, default: int) -> int:
    value = filters.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an integer", field=key, value=value) from e


def _parse_datetime(value, field: str) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    try:
        return to_naive_utc(datetime.fromisoformat(str(value)))
    except ValueError as e:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field, value=value) from e


def _parse_bound(value, field: str) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        price = parse_price(value)
    except ValueError as e:
        raise ValidationError(f"{field} must be a number", field=field, value=value) from e
    if price < 0:
        raise ValidationError(f"{field} must be >= 0", field=field, value=value)
    return price


def _range(filters: dict, field: str) -> dict:
    value = filters.get(field) or {}
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", field=field, value=value)
    return value


def validate_filters(filters: Optional[dict]) -> dict:
    """
    Validate getEvents filters.

    Accepts page, limit, category, location, status, search, creator_id,
    visibility, price_range {min, max}, date_range {start, end}, sort_by,
    order. Returns a normalized dict.
    """
    filters = dict(filters or {})

    page = _parse_int(filters, "page", 1)
    if page < 1:
        raise ValidationError("page must be >= 1", field="page", value=page)
    limit = _parse_int(filters, "limit", DEFAULT_PAGE_SIZE)
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit", value=limit)

    status = filters.get("status")
    if status is not None and status not in EVENT_STATUSES:
        raise ValidationError(f"Unknown status {status}", field="status", value=status)

    visibility = filters.get("visibility")
    if visibility is not None and visibility not in VISIBILITIES:
        raise ValidationError(f"Unknown visibility {visibility}", field="visibility", value=visibility)

    price_range = _range(filters, "price_range")
    min_price = _parse_bound(price_range.get("min"), "price_range.min")
    max_price = _parse_bound(price_range.get("max"), "price_range.max")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError("price_range.min must not exceed max", field="price_range")

    date_range = _range(filters, "date_range")
    start_after = _parse_datetime(date_range.get("start"), "date_range.start")
    end_before = _parse_datetime(date_range.get("end"), "date_range.end")
    if start_after and end_before and start_after > end_before:
        raise ValidationError("date_range.start must not be after end", field="date_range")

    sort_by = filters.get("sort_by") or "start_time"
    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"Cannot sort by {sort_by}", field="sort_by", value=sort_by)
    order = filters.get("order") or "asc"
    if order not in ("asc", "desc"):
        raise ValidationError("order must be asc or desc", field="order", value=order)

    creator_id = filters.get("creator_id")
    if creator_id is not None and not WALLET_ADDRESS_PATTERN.match(creator_id):
        raise ValidationError("creator_id must be a wallet address", field="creator_id", value=creator_id)

    return {
        "page": page,
        "limit": limit,
        "category": filters.get("category") or None,
        "location": filters.get("location") or None,
        "search": filters.get("search") or None,
        "status": status,
        "visibility": visibility,
        "creator_id": creator_id.lower() if creator_id else None,
        "min_price": min_price,
        "max_price": max_price,
        "start_after": start_after,
        "end_before": end_before,
        "sort_by": sort_by,
        "order": order,
    }
