"""Domain event types for import operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for audit logging and notification

The pipeline never sends email or websocket messages itself; notifiers
subscribe to these events.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PROVISIONING = "provisioning"
    IMPORT = "import"
    BACKUP = "backup"
    DELETION = "deletion"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links events of one confirm/delete
    actor: str | None  # Operator that triggered the operation
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: UUID | None = None,
        actor: str | None = None,
        source_service: str = "payroll_import",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor=actor,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


@dataclass(frozen=True)
class CollaboratorProvisioned(DomainEvent):
    """A new collaborator was created in pending status.

    Notifiers use the confirmation token to invite the collaborator.
    """

    collaborator_id: UUID
    email: str
    name: str
    kind: str
    confirmation_token: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PROVISIONING


@dataclass(frozen=True)
class ImportCommitted(DomainEvent):
    """A staged import was confirmed."""

    month: int
    year: int
    collaborator_kind: str
    override: bool
    records_written: int
    records_skipped: int
    collaborators_created: int
    bindings_created: int
    error_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.IMPORT


@dataclass(frozen=True)
class BackupCreated(DomainEvent):
    """A scope's monthly records were snapshotted before an overwrite."""

    snapshot_id: UUID
    month: int
    year: int
    collaborator_kind: str
    record_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.BACKUP


@dataclass(frozen=True)
class PeriodDeleted(DomainEvent):
    """A period's monthly records and their orphans were removed."""

    month: int
    year: int
    collaborator_kind: str | None
    records_deleted: int
    bindings_deleted: int
    collaborators_deleted: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.DELETION
