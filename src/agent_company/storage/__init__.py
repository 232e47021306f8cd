"""Shared storage helpers for JSON documents and SQLite."""
