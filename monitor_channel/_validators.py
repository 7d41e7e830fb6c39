"""Shared validation helpers."""

from __future__ import annotations

import math


def validate_positive_finite_timeout(timeout: float, *, name: str = "timeout") -> None:
    """Ensure *timeout* represents a usable socket timeout value."""
    if isinstance(timeout, bool) or not isinstance(timeout, int | float):
        msg = f"{name} must be a real number"
        raise TypeError(msg)

    if not (timeout > 0 and math.isfinite(timeout)):
        msg = f"{name} must be > 0 and finite"
        raise ValueError(msg)


def validate_non_negative_delay(delay: float, *, name: str) -> None:
    """Ensure *delay* is a finite number of seconds no smaller than zero."""
    if isinstance(delay, bool) or not isinstance(delay, int | float):
        msg = f"{name} must be a real number"
        raise TypeError(msg)

    if not (delay >= 0 and math.isfinite(delay)):
        msg = f"{name} must be >= 0 and finite"
        raise ValueError(msg)


def validate_positive_count(value: int, *, name: str) -> None:
    """Ensure *value* is an integer of at least one."""
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an integer"
        raise TypeError(msg)

    if value < 1:
        msg = f"{name} must be >= 1"
        raise ValueError(msg)
