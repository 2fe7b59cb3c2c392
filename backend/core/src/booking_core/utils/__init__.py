"""Utility helpers shared across booking services."""
