"""Persistent account storage."""
