"""Staging store for reconciliation results awaiting operator confirmation.

A staging token is valid for at most one successful consume. Consume and
discard invalidate the token by atomically renaming its document before
reading it, so concurrent callers cannot both win.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import shutil
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from payroll_import.errors import PayrollImportError
from payroll_import.schemas import StagingArtifact

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")
ALLOWED_EXTENSIONS = frozenset({".xlsx", ".xlsm"})


class StagingWriteError(PayrollImportError):
    """Raised when an artifact or upload cannot be persisted."""

    code = "STAGING_WRITE_FAILED"


class StagingReadError(PayrollImportError):
    """Raised when a staged artifact exists but cannot be read back."""

    code = "STAGING_READ_FAILED"


class StagingTokenInvalid(PayrollImportError):
    """Raised for unknown, malformed, consumed or discarded tokens."""

    code = "STAGING_TOKEN_INVALID"

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Staging token {token!r} is invalid or was already used")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["token"] = self.token
        return data


class InvalidUploadError(PayrollImportError):
    """Raised when the uploaded file is missing, too large or of the wrong type."""

    code = "INVALID_UPLOAD"


class StagingStore(ABC):
    """Write-once, consume-once store of staging artifacts."""

    @abstractmethod
    def accept_upload(self, source: Path) -> Path:
        """Take ownership of an uploaded file; returns the managed copy."""

    @abstractmethod
    def stage(self, artifact: StagingArtifact) -> str:
        """Persist an artifact and return its opaque token."""

    @abstractmethod
    def peek(self, token: str) -> StagingArtifact:
        """Read an artifact without invalidating the token."""

    @abstractmethod
    def consume(self, token: str) -> StagingArtifact:
        """Read an artifact and invalidate its token."""

    @abstractmethod
    def discard(self, token: str) -> None:
        """Invalidate a token and remove its uploaded file."""

    @abstractmethod
    def remove_upload(self, path: Path) -> None:
        """Remove a managed upload that will never be staged."""

    def remove_source(self, artifact: StagingArtifact) -> None:
        """Remove the uploaded file an artifact refers to."""
        self.remove_upload(Path(artifact.source_file))

    @abstractmethod
    def purge_stale(self, max_age: timedelta) -> int:
        """Discard artifacts older than max_age; returns how many were removed."""


class FileStagingStore(StagingStore):
    """Staging store backed by one JSON document per token on disk."""

    def __init__(self, staging_dir: Path, upload_dir: Path, max_upload_bytes: int):
        self.staging_dir = Path(staging_dir)
        self.upload_dir = Path(upload_dir)
        self.max_upload_bytes = max_upload_bytes

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def accept_upload(self, source: Path) -> Path:
        source = Path(source)
        if not source.is_file():
            raise InvalidUploadError(f"Upload {source} does not exist")

        extension = source.suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise InvalidUploadError(
                f"Only Excel workbooks are accepted ({', '.join(sorted(ALLOWED_EXTENSIONS))}), "
                f"got {source.name}"
            )

        size = source.stat().st_size
        if size > self.max_upload_bytes:
            raise InvalidUploadError(
                f"Upload {source.name} is {size} bytes; limit is {self.max_upload_bytes}"
            )

        target = self.upload_dir / (
            f"planilha-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"
        )
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise StagingWriteError(f"Cannot store upload {source.name}: {e}") from e

        logger.info("Accepted upload %s as %s", source.name, target.name)
        return target

    def remove_upload(self, path: Path) -> None:
        # Only files this store manages are ever deleted.
        try:
            path.resolve().relative_to(self.upload_dir.resolve())
        except ValueError:
            logger.warning("Not removing %s: outside upload directory", path)
            return
        path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def stage(self, artifact: StagingArtifact) -> str:
        token = secrets.token_urlsafe(24)
        path = self._path(token)
        tmp = path.with_name(f".{token}.tmp")
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(artifact.model_dump_json(), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StagingWriteError(f"Cannot write staging artifact: {e}") from e

        logger.info(
            "Staged %d collaborator(s) for %s as %s",
            len(artifact.collaborators),
            artifact.scope,
            token,
        )
        return token

    def peek(self, token: str) -> StagingArtifact:
        path = self._path(token)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise StagingTokenInvalid(token) from None
        except OSError as e:
            raise StagingReadError(f"Cannot read staging artifact {token}: {e}") from e
        return self._parse(token, data)

    def consume(self, token: str) -> StagingArtifact:
        claimed = self._claim(token)
        try:
            data = claimed.read_text(encoding="utf-8")
        except OSError as e:
            raise StagingReadError(f"Cannot read staging artifact {token}: {e}") from e
        finally:
            claimed.unlink(missing_ok=True)

        artifact = self._parse(token, data)
        logger.info("Consumed staging token %s", token)
        return artifact

    def discard(self, token: str) -> None:
        claimed = self._claim(token)
        try:
            artifact = self._parse(token, claimed.read_text(encoding="utf-8"))
        except (OSError, StagingReadError):
            logger.warning("Discarded unreadable staging artifact %s", token)
            artifact = None
        finally:
            claimed.unlink(missing_ok=True)

        if artifact is not None:
            self.remove_source(artifact)
        logger.info("Discarded staging token %s", token)

    def purge_stale(self, max_age: timedelta) -> int:
        if not self.staging_dir.is_dir():
            return 0
        cutoff = time.time() - max_age.total_seconds()
        purged = 0
        for path in self.staging_dir.glob("*.json"):
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                self.discard(path.stem)
            except (FileNotFoundError, StagingTokenInvalid):
                # Consumed concurrently
                continue
            purged += 1
        return purged

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _path(self, token: str) -> Path:
        if not TOKEN_PATTERN.match(token):
            raise StagingTokenInvalid(token)
        return self.staging_dir / f"{token}.json"

    def _claim(self, token: str) -> Path:
        path = self._path(token)
        claimed = path.with_name(f".{token}.claimed-{uuid4().hex}")
        try:
            os.rename(path, claimed)
        except FileNotFoundError:
            raise StagingTokenInvalid(token) from None
        except OSError as e:
            raise StagingReadError(f"Cannot claim staging artifact {token}: {e}") from e
        return claimed

    def _parse(self, token: str, data: str) -> StagingArtifact:
        try:
            return StagingArtifact.model_validate_json(data)
        except ValidationError as e:
            raise StagingReadError(f"Staging artifact {token} is corrupt: {e}") from e
