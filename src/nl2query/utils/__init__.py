"""Shared helpers for nl2query."""
