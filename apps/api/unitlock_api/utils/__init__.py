"""Utility modules."""

from unitlock_api.utils.logging import JSONFormatter, configure_json_logging

__all__ = ["JSONFormatter", "configure_json_logging"]
