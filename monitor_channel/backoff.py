"""Reconnect backoff policy and state.

The curve is deliberately simple: the delay charged for a failure is the
current interval, and the interval doubles (by default) for the next failure
until it reaches the configured ceiling. Keeping :func:`next_delay` free of
clocks and sockets lets the curve be tested in isolation.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as t

from ._validators import validate_non_negative_delay, validate_positive_finite_timeout

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_BASE: t.Final[float] = 0.1
DEFAULT_BACKOFF_MAX: t.Final[float] = 120.0
DEFAULT_BACKOFF_FACTOR: t.Final[float] = 2.0
DEFAULT_STABLE_AFTER: t.Final[float] = 5.0
DEFAULT_CLOSE_DELAY: t.Final[float] = 1.0


@dc.dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """
    Parameters of the reconnect backoff curve.

    Attributes
    ----------
    base : float
        Interval, in seconds, charged for the first failure.
    maximum : float
        Upper bound for the interval.
    factor : float
        Multiplier applied to the interval after each consecutive failure.
    stable_after : float
        Seconds a connection must stay open before the interval resets.
    close_delay : float
        Fixed pause applied after the daemon sends ``CLOSE``.
    """

    base: float = DEFAULT_BACKOFF_BASE
    maximum: float = DEFAULT_BACKOFF_MAX
    factor: float = DEFAULT_BACKOFF_FACTOR
    stable_after: float = DEFAULT_STABLE_AFTER
    close_delay: float = DEFAULT_CLOSE_DELAY

    def __post_init__(self) -> None:
        """Validate the curve parameters."""
        validate_positive_finite_timeout(self.base, name="base")
        validate_positive_finite_timeout(self.maximum, name="maximum")
        validate_non_negative_delay(self.stable_after, name="stable_after")
        validate_non_negative_delay(self.close_delay, name="close_delay")
        if self.maximum < self.base:
            msg = "maximum must be >= base"
            raise ValueError(msg)
        validate_positive_finite_timeout(self.factor, name="factor")
        if self.factor < 1:
            msg = "factor must be >= 1"
            raise ValueError(msg)


def next_delay(
    previous_interval: float, policy: BackoffPolicy
) -> tuple[float, float]:
    """Return ``(delay, new_interval)`` for a failure at *previous_interval*.

    The delay charged now is *previous_interval*; the interval grows by
    ``policy.factor`` for the next failure and never exceeds
    ``policy.maximum``.
    """
    delay = min(previous_interval, policy.maximum)
    new_interval = min(previous_interval * policy.factor, policy.maximum)
    return delay, new_interval


@dc.dataclass(slots=True)
class BackoffState:
    """Mutable reconnect bookkeeping owned by the connection manager."""

    policy: BackoffPolicy = dc.field(default_factory=BackoffPolicy)
    interval: float = dc.field(init=False)
    not_before: float = 0.0

    def __post_init__(self) -> None:
        self.interval = self.policy.base

    def record_failure(self, now: float) -> float:
        """Charge a failure at *now* and return the delay imposed."""
        delay, self.interval = next_delay(self.interval, self.policy)
        self.not_before = now + delay
        logger.debug(
            "Backing off %.3fs; next interval %.3fs", delay, self.interval
        )
        return delay

    def defer(self, delay: float, now: float) -> None:
        """Hold off the next attempt for *delay* seconds, keeping the interval."""
        self.not_before = now + delay

    def reset(self) -> None:
        """Return the interval to the policy base."""
        if self.interval != self.policy.base:
            logger.debug("Connection stable; backoff reset to %.3fs", self.policy.base)
        self.interval = self.policy.base

    def remaining(self, now: float) -> float:
        """Seconds left before a new attempt may start."""
        return max(0.0, self.not_before - now)


__all__ = [
    "DEFAULT_BACKOFF_BASE",
    "DEFAULT_BACKOFF_FACTOR",
    "DEFAULT_BACKOFF_MAX",
    "DEFAULT_CLOSE_DELAY",
    "DEFAULT_STABLE_AFTER",
    "BackoffPolicy",
    "BackoffState",
    "next_delay",
]
