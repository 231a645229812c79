"""Gridbook — spreadsheet-style tables with typed fields."""

__version__ = "0.1.0"
