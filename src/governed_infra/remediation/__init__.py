"""Remediation planning and step application."""
