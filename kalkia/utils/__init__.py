"""Utility modules for Kalkia."""

from kalkia.utils.calculation_logger import (
    log_calculation_start,
    log_calculation_complete,
    log_calculation_failed,
)

__all__ = [
    "log_calculation_start",
    "log_calculation_complete",
    "log_calculation_failed",
]
