"""Exponential restart backoff with jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..values import resolve_now, round_half_up
from .policy import LifecyclePolicy

# 2**30 times any configured base already exceeds every cap.
_MAX_EXPONENT = 30


@dataclass(frozen=True)
class RestartBackoff:
    delay_ms: int
    next_allowed_at: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            'delay_ms': self.delay_ms,
            'next_allowed_at': self.next_allowed_at.isoformat(),
        }


def nominal_restart_delay_ms(restart_count: int, *, policy: LifecyclePolicy | None = None) -> int:
    policy = policy or LifecyclePolicy()
    exponent = min(max(restart_count, 0), _MAX_EXPONENT)
    return min(policy.restart_backoff_base_ms * (2**exponent), policy.restart_backoff_max_ms)


def calculate_restart_backoff(
    restart_count: int,
    *,
    policy: LifecyclePolicy | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> RestartBackoff:
    """Return the delay before the next runner restart may be attempted.

    The jittered delay may exceed the configured cap by the jitter fraction,
    which spreads restarts of many bots that failed together.
    """

    policy = policy or LifecyclePolicy()
    current = resolve_now(now)
    source = rng or random.Random()

    nominal = nominal_restart_delay_ms(restart_count, policy=policy)
    spread = policy.restart_backoff_jitter
    factor = (1 - spread) + source.random() * (2 * spread)
    jittered = nominal * factor
    return RestartBackoff(
        delay_ms=round_half_up(jittered),
        next_allowed_at=current + timedelta(milliseconds=jittered),
    )


__all__ = ['RestartBackoff', 'calculate_restart_backoff', 'nominal_restart_delay_ms']
