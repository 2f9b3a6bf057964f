"""Operator command line interface.

Provides:
- Schema creation
- Period pre-check
- Stage / confirm / discard of spreadsheet imports
- Period deletion
- Backup listing
- Stale staging cleanup

Usage:
    payroll-import check --month 3 --year 2025
    payroll-import stage planilha.xlsx --month 3 --year 2025 --kind contractor
    payroll-import confirm <token> --override
    payroll-import delete --month 3 --year 2025 --kind employee
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from payroll_import.config import Settings, get_settings
from payroll_import.database import create_schema, dispose_db, init_db
from payroll_import.errors import PayrollImportError
from payroll_import.services import FileStagingStore, ImportService

KIND_CHOICES = ["contractor", "employee"]


def to_jsonable(value: Any) -> Any:
    """Convert command results to JSON-compatible structures."""
    if isinstance(value, BaseModel):
        data = value.model_dump(mode="json")
        if hasattr(value, "requires_override"):
            data["requires_override"] = value.requires_override
        if hasattr(value, "success"):
            data["success"] = value.success
        return data
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    return value


class ImportCli:
    """Import Command Line Interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-import",
            description="Monthly compensation spreadsheet import",
        )
        parser.add_argument(
            "--actor",
            type=str,
            help="Operator name recorded on emitted events",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create missing database tables")

        check = subparsers.add_parser("check", help="Show existing records for a period")
        self._add_period_args(check)

        stage = subparsers.add_parser("stage", help="Read and reconcile a spreadsheet")
        stage.add_argument("file", type=Path, help="Path to the .xlsx upload")
        self._add_period_args(stage)
        stage.add_argument(
            "--kind",
            type=str,
            choices=KIND_CHOICES,
            required=True,
            help="Collaborator kind of every row in the upload",
        )

        confirm = subparsers.add_parser("confirm", help="Commit a staged import")
        confirm.add_argument("token", type=str, help="Staging token returned by stage")
        confirm.add_argument(
            "--override",
            action="store_true",
            help="Overwrite existing records (a backup is taken first)",
        )

        discard = subparsers.add_parser("discard", help="Cancel a staged import")
        discard.add_argument("token", type=str, help="Staging token returned by stage")

        delete = subparsers.add_parser("delete", help="Delete a period's records")
        self._add_period_args(delete)
        delete.add_argument(
            "--kind",
            type=str,
            choices=KIND_CHOICES,
            help="Only delete this collaborator kind (default: both)",
        )

        backups = subparsers.add_parser("backups", help="List backup snapshots for a period")
        self._add_period_args(backups)
        backups.add_argument("--kind", type=str, choices=KIND_CHOICES)

        purge = subparsers.add_parser("purge-staging", help="Discard stale staged imports")
        purge.add_argument(
            "--max-age-hours",
            type=int,
            help="Age threshold (default: $STAGING_TTL_HOURS)",
        )

        return parser

    @staticmethod
    def _add_period_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--month", type=int, required=True, help="Month (1-12)")
        parser.add_argument("--year", type=int, required=True, help="Year (e.g. 2025)")

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        settings = self.settings or get_settings()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

        handlers: dict[str, Callable[[ImportService, argparse.Namespace], Awaitable[Any]]] = {
            "check": self._cmd_check,
            "stage": self._cmd_stage,
            "confirm": self._cmd_confirm,
            "discard": self._cmd_discard,
            "delete": self._cmd_delete,
            "backups": self._cmd_backups,
            "purge-staging": self._cmd_purge,
        }

        try:
            if parsed.command == "init-db":
                output: Any = asyncio.run(self._init_db(settings))
            else:
                handler = handlers[parsed.command]
                output = asyncio.run(self._run_with_service(settings, handler, parsed))
        except PayrollImportError as e:
            print(json.dumps({"error": e.to_dict()}, default=str, indent=2))
            return 1

        print(json.dumps(to_jsonable(output), default=str, indent=2))
        return 0

    async def _init_db(self, settings: Settings) -> dict[str, Any]:
        engine, _ = init_db(settings.database_url)
        try:
            await create_schema(engine)
        finally:
            await dispose_db()
        return {"schema": "ready"}

    async def _run_with_service(
        self,
        settings: Settings,
        handler: Callable[[ImportService, argparse.Namespace], Awaitable[Any]],
        args: argparse.Namespace,
    ) -> Any:
        _, session_factory = init_db(settings.database_url)
        staging = FileStagingStore(
            staging_dir=settings.staging_dir,
            upload_dir=settings.upload_dir,
            max_upload_bytes=settings.max_upload_bytes,
        )
        try:
            async with session_factory() as session:
                service = ImportService(session, staging, settings=settings)
                return await handler(service, args)
        finally:
            await dispose_db()

    async def _cmd_check(self, service: ImportService, args: argparse.Namespace) -> Any:
        return await service.check_existing(args.month, args.year)

    async def _cmd_stage(self, service: ImportService, args: argparse.Namespace) -> Any:
        return await service.stage(args.file, args.month, args.year, args.kind)

    async def _cmd_confirm(self, service: ImportService, args: argparse.Namespace) -> Any:
        return await service.confirm(args.token, args.override, actor=args.actor)

    async def _cmd_discard(self, service: ImportService, args: argparse.Namespace) -> Any:
        service.discard(args.token)
        return {"discarded": args.token}

    async def _cmd_delete(self, service: ImportService, args: argparse.Namespace) -> Any:
        return await service.delete_period(args.month, args.year, args.kind, actor=args.actor)

    async def _cmd_backups(self, service: ImportService, args: argparse.Namespace) -> Any:
        return await service.list_backups(args.month, args.year, args.kind)

    async def _cmd_purge(self, service: ImportService, args: argparse.Namespace) -> Any:
        max_age = timedelta(hours=args.max_age_hours) if args.max_age_hours else None
        return {"purged": service.purge_staging(max_age)}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    cli = ImportCli()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
