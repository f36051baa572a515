"""Unitlock API - subscription-gated storage unit access."""

__version__ = "0.3.0"
