"""Background workers."""

from .hold_expiry import HoldExpirySweeper, HoldSessionMonitor, SweepResult, lambda_handler

__all__ = [
    "HoldExpirySweeper",
    "HoldSessionMonitor",
    "SweepResult",
    "lambda_handler",
]
