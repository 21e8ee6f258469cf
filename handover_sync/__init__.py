"""Handover Sync - keeps construction handover records in step with a spreadsheet."""

__version__ = "1.0.0"
