"""Domain events emitted by the import pipeline."""

from payroll_import.events.emitter import EventBatch, EventEmitter, default_emitter, log_event
from payroll_import.events.types import (
    BackupCreated,
    CollaboratorProvisioned,
    DomainEvent,
    EventCategory,
    EventMetadata,
    ImportCommitted,
    PeriodDeleted,
)

__all__ = [
    "BackupCreated",
    "CollaboratorProvisioned",
    "DomainEvent",
    "EventBatch",
    "EventCategory",
    "EventEmitter",
    "EventMetadata",
    "ImportCommitted",
    "PeriodDeleted",
    "default_emitter",
    "log_event",
]
