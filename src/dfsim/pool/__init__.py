"""Helpers for turning optimized lineups into contest uploads."""

from .export import ContestExportError, export_lineups_to_csv

__all__ = ["ContestExportError", "export_lineups_to_csv"]
