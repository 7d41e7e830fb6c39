"""Unit tests for the reconnect backoff curve."""

from __future__ import annotations

import pytest

from monitor_channel.backoff import BackoffPolicy, BackoffState, next_delay


def test_next_delay_charges_previous_and_doubles() -> None:
    """The delay is the previous interval; the interval doubles."""
    policy = BackoffPolicy(base=0.1, maximum=120.0)
    assert next_delay(0.1, policy) == (pytest.approx(0.1), pytest.approx(0.2))
    assert next_delay(0.2, policy) == (pytest.approx(0.2), pytest.approx(0.4))


def test_next_delay_is_capped() -> None:
    """Neither the delay nor the interval ever exceed the maximum."""
    policy = BackoffPolicy(base=100.0, maximum=120.0)
    delay, interval = next_delay(100.0, policy)
    assert delay == pytest.approx(100.0)
    assert interval == pytest.approx(120.0)
    assert next_delay(120.0, policy) == (pytest.approx(120.0), pytest.approx(120.0))


def test_curve_is_monotonic_and_bounded() -> None:
    """Consecutive failures never shrink the delay nor exceed the cap."""
    policy = BackoffPolicy(base=0.1, maximum=120.0)
    interval = policy.base
    delays = []
    for _ in range(30):
        delay, interval = next_delay(interval, policy)
        delays.append(delay)

    assert delays == sorted(delays)
    assert max(delays) == pytest.approx(policy.maximum)
    assert all(delay <= policy.maximum for delay in delays)


def test_state_records_failures_against_clock() -> None:
    """record_failure sets not_before from the charged delay."""
    state = BackoffState(BackoffPolicy(base=0.1, maximum=1.0))
    assert state.interval == pytest.approx(0.1)

    assert state.record_failure(now=10.0) == pytest.approx(0.1)
    assert state.not_before == pytest.approx(10.1)
    assert state.interval == pytest.approx(0.2)

    assert state.record_failure(now=20.0) == pytest.approx(0.2)
    assert state.not_before == pytest.approx(20.2)
    assert state.remaining(now=20.05) == pytest.approx(0.15)
    assert state.remaining(now=25.0) == 0.0


def test_defer_keeps_interval() -> None:
    """A graceful close pushes not_before without touching the curve."""
    state = BackoffState(BackoffPolicy(base=0.1, close_delay=1.0))
    state.record_failure(now=0.0)
    state.defer(1.0, now=5.0)
    assert state.not_before == pytest.approx(6.0)
    assert state.interval == pytest.approx(0.2)


def test_reset_returns_to_base() -> None:
    """reset() restores the base interval after a stable connection."""
    state = BackoffState(BackoffPolicy(base=0.1))
    for now in range(5):
        state.record_failure(now=float(now))
    assert state.interval > 0.1
    state.reset()
    assert state.interval == pytest.approx(0.1)


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"base": 0.0}, "base must be > 0"),
        ({"maximum": float("inf")}, "maximum must be > 0 and finite"),
        ({"base": 5.0, "maximum": 1.0}, "maximum must be >= base"),
        ({"factor": 0.5}, "factor must be >= 1"),
        ({"close_delay": -1.0}, "close_delay must be >= 0"),
        ({"stable_after": float("nan")}, "stable_after must be >= 0"),
    ],
)
def test_policy_rejects_invalid_values(kwargs: dict[str, float], message: str) -> None:
    """BackoffPolicy validates its parameters on construction."""
    with pytest.raises(ValueError, match=message):
        BackoffPolicy(**kwargs)


def test_policy_rejects_bool() -> None:
    """Booleans are not accepted as durations."""
    with pytest.raises(TypeError, match="base must be a real number"):
        BackoffPolicy(base=True)  # type: ignore[arg-type]
