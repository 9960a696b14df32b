"""Governed infrastructure actions and baseline drift scanning."""

__version__ = "0.1.0"
