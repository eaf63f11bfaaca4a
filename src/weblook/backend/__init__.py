"""Automation backend process management."""
