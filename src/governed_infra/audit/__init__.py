"""Append-only audit trail for governed actions."""
