"""Snapshot validation and settings."""
