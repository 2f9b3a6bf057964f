"""Staged reconciliation import of monthly compensation spreadsheets."""

__version__ = "0.1.0"
