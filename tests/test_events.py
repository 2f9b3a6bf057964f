"""Tests for domain events and the event emitter.

Tests verify:
1. Event types are properly structured and serializable
2. Event emitter routes to correct handlers
3. Event batching holds events until the unit of work succeeds
4. Handler errors are isolated
"""

import json
import logging
from uuid import uuid4

import pytest

from payroll_import.events import (
    BackupCreated,
    CollaboratorProvisioned,
    EventCategory,
    EventEmitter,
    EventMetadata,
    ImportCommitted,
    PeriodDeleted,
    default_emitter,
)


def provisioned(email: str = "bob@x.com") -> CollaboratorProvisioned:
    return CollaboratorProvisioned(
        metadata=EventMetadata.create(actor="operator"),
        collaborator_id=uuid4(),
        email=email,
        name="Bob",
        kind="contractor",
        confirmation_token="t" * 64,
    )


def deleted() -> PeriodDeleted:
    return PeriodDeleted(
        metadata=EventMetadata.create(),
        month=1,
        year=2025,
        collaborator_kind=None,
        records_deleted=3,
        bindings_deleted=1,
        collaborators_deleted=0,
    )


class TestEventTypes:
    """Event structure and serialization."""

    def test_metadata_defaults(self):
        correlation_id = uuid4()
        metadata = EventMetadata.create(correlation_id=correlation_id)

        assert metadata.correlation_id == correlation_id
        assert metadata.source_service == "payroll_import"
        assert metadata.actor is None

    def test_categories(self):
        assert provisioned().category == EventCategory.PROVISIONING
        assert deleted().category == EventCategory.DELETION
        backup = BackupCreated(
            metadata=EventMetadata.create(),
            snapshot_id=uuid4(),
            month=1,
            year=2025,
            collaborator_kind="employee",
            record_count=2,
        )
        assert backup.category == EventCategory.BACKUP

    def test_to_json(self):
        event = provisioned()

        data = json.loads(event.to_json())

        assert data["event_type"] == "CollaboratorProvisioned"
        assert data["category"] == "provisioning"
        assert data["collaborator_id"] == str(event.collaborator_id)
        assert data["metadata"]["actor"] == "operator"

    def test_events_are_immutable(self):
        event = deleted()
        with pytest.raises(AttributeError):
            event.records_deleted = 0


class TestEventEmitter:
    """Handler routing and isolation."""

    def test_routes_by_type_and_category(self):
        emitter = EventEmitter()
        by_type, by_category, everything = [], [], []
        emitter.on(CollaboratorProvisioned, by_type.append)
        emitter.on_category(EventCategory.DELETION, by_category.append)
        emitter.on_all(everything.append)

        emitter.emit(provisioned())
        emitter.emit(deleted())

        assert [e.event_type for e in by_type] == ["CollaboratorProvisioned"]
        assert [e.event_type for e in by_category] == ["PeriodDeleted"]
        assert len(everything) == 2

    def test_off_unregisters(self):
        emitter = EventEmitter()
        seen = []
        handler = seen.append
        emitter.on_all(handler)
        emitter.off(handler)

        emitter.emit(deleted())

        assert seen == []

    def test_handler_errors_are_isolated(self):
        emitter = EventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("notifier down")

        emitter.on_all(broken)
        emitter.on_all(seen.append)

        errors = emitter.emit(provisioned())

        assert len(seen) == 1
        assert [str(e) for e in errors] == ["notifier down"]


class TestBatching:
    """Batch mode releases events only when the block succeeds."""

    def test_batch_dispatches_on_success(self):
        emitter = EventEmitter()
        seen = []
        emitter.on_all(seen.append)

        with emitter.batch():
            emitter.emit(provisioned("a@x.com"))
            emitter.emit(provisioned("b@x.com"))
            assert seen == []

        assert [e.email for e in seen] == ["a@x.com", "b@x.com"]

    def test_batch_discarded_on_error(self):
        emitter = EventEmitter()
        seen = []
        emitter.on_all(seen.append)

        with pytest.raises(ValueError):
            with emitter.batch():
                emitter.emit(provisioned())
                raise ValueError("commit failed")

        assert seen == []
        emitter.emit(deleted())
        assert len(seen) == 1


class TestAuditLog:
    """The default emitter logs every event."""

    def test_default_emitter_logs_events(self, caplog):
        emitter = default_emitter()
        event = ImportCommitted(
            metadata=EventMetadata.create(),
            month=1,
            year=2025,
            collaborator_kind="contractor",
            override=False,
            records_written=2,
            records_skipped=0,
            collaborators_created=1,
            bindings_created=2,
            error_count=0,
        )

        with caplog.at_level(logging.INFO, logger="payroll_import.audit"):
            emitter.emit(event)

        assert "ImportCommitted" in caplog.text
        assert '"records_written": 2' in caplog.text
