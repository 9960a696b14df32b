"""Governed execution: idempotency keys, error normalization and the executor."""
