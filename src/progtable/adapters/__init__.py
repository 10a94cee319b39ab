"""Adapters between rendering passes and spreadsheet files."""
