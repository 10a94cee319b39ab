"""Snapshot file operations."""
