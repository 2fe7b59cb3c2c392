"""Booking lifecycle and payment reconciliation engine for cabin properties."""

__version__ = "0.1.0"
