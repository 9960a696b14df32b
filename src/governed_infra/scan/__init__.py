"""Baseline drift scanning."""
