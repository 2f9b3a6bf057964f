"""Entry point for running the operator CLI."""

from payroll_import.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
