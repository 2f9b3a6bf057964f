"""Import pipeline services."""

from payroll_import.services.backup_service import BackupError, BackupManager
from payroll_import.services.commit_service import CommitEngine
from payroll_import.services.deletion_service import DeletionEngine
from payroll_import.services.import_service import ImportService
from payroll_import.services.locking_service import ScopeBusyError, ScopeLockService
from payroll_import.services.period_service import PeriodService
from payroll_import.services.reconciliation import (
    DirectorySnapshot,
    PersistedCollaborator,
    ReconciliationEngine,
    ReconciliationResult,
    load_directory,
)
from payroll_import.services.staging import (
    FileStagingStore,
    InvalidUploadError,
    StagingReadError,
    StagingStore,
    StagingTokenInvalid,
    StagingWriteError,
)

__all__ = [
    "BackupError",
    "BackupManager",
    "CommitEngine",
    "DeletionEngine",
    "DirectorySnapshot",
    "FileStagingStore",
    "ImportService",
    "InvalidUploadError",
    "PeriodService",
    "PersistedCollaborator",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ScopeBusyError",
    "ScopeLockService",
    "StagingReadError",
    "StagingStore",
    "StagingTokenInvalid",
    "StagingWriteError",
    "load_directory",
]
