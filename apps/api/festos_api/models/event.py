"""Event model - the relational copy of a logical event."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)

from festos_api.db.base import Base
from festos_api.utils.clock import utcnow
from festos_api.utils.units import format_price

# Status lifecycle
STATUS_DRAFT = "draft"
STATUS_PENDING_LEDGER = "pending_ledger"
STATUS_ACTIVE = "active"
STATUS_FAILED = "failed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

IN_FLIGHT_STATUSES = (STATUS_DRAFT, STATUS_PENDING_LEDGER)

# Cleared when a row falls to failed
LEDGER_LINKAGE_FIELDS = (
    "ledger_event_id",
    "ledger_contract_address",
    "ledger_chain_id",
    "ledger_transaction_hash",
)
EVENT_STATUSES = (
    STATUS_DRAFT,
    STATUS_PENDING_LEDGER,
    STATUS_ACTIVE,
    STATUS_FAILED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)


class Event(Base):
    """Relational row for an event whose facts span three storage layers."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True)  # UUID, generated at draft creation
    slug = Column(String(255), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    location = Column(String(500), nullable=False, default="")
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    max_capacity = Column(Integer, nullable=False)
    ticket_price = Column(Numeric(36, 18), nullable=False)  # Native token units, not wei
    visibility = Column(String(20), nullable=False, default="public")  # public, private, unlisted
    require_approval = Column(Boolean, nullable=False, default=False)
    has_poap = Column(Boolean, nullable=False, default=False)
    category = Column(String(100), nullable=True, index=True)
    tags = Column(JSON, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    creator_id = Column(String(42), nullable=False, index=True)  # Wallet address, lowercase
    status = Column(String(20), nullable=False, default=STATUS_DRAFT, index=True)
    failure_reason = Column(Text, nullable=True)

    # Saga bookkeeping
    idempotency_token = Column(String(255), nullable=False)
    unsigned_operation = Column(JSON, nullable=True)
    pending_transaction_hash = Column(String(66), nullable=True)

    # Layer linkage
    ledger_event_id = Column(Integer, nullable=True, index=True)
    ledger_contract_address = Column(String(42), nullable=True)
    ledger_chain_id = Column(Integer, nullable=True)
    ledger_transaction_hash = Column(String(66), nullable=True, unique=True)
    content_metadata_ref = Column(String(255), nullable=True)
    content_image_ref = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # At most one in-flight draft per caller token
        Index(
            "uq_events_inflight_idempotency_token",
            "idempotency_token",
            unique=True,
            postgresql_where=text("status IN ('draft', 'pending_ledger')"),
            sqlite_where=text("status IN ('draft', 'pending_ledger')"),
        ),
    )

    @property
    def is_verified_active(self) -> bool:
        """Active rows must carry a ledger transaction hash."""
        return self.status == STATUS_ACTIVE and bool(self.ledger_transaction_hash)

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        if self.status == STATUS_PENDING_LEDGER:
            display_status = "processing"
        else:
            display_status = self.status
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "timezone": self.timezone,
            "max_capacity": self.max_capacity,
            "ticket_price": format_price(self.ticket_price),
            "visibility": self.visibility,
            "require_approval": self.require_approval,
            "has_poap": self.has_poap,
            "category": self.category,
            "tags": list(self.tags or []),
            "view_count": self.view_count,
            "creator_id": self.creator_id,
            "status": self.status,
            "display_status": display_status,
            "purchasable": self.is_verified_active,
            "ledger_event_id": self.ledger_event_id,
            "ledger_contract_address": self.ledger_contract_address,
            "ledger_chain_id": self.ledger_chain_id,
            "ledger_transaction_hash": self.ledger_transaction_hash,
            "content_metadata_ref": self.content_metadata_ref,
            "content_image_ref": self.content_image_ref,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
