"""Conversion-event valuation and ad-platform dispatch service."""

__version__ = "0.1.0"
