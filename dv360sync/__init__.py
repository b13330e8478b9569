"""Spreadsheet based bulk management of Display & Video 360 entities."""

__version__ = "1.0.0"
