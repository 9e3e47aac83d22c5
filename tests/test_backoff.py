from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from unittest import TestCase

from botfleet.lifecycle import LifecyclePolicy, calculate_restart_backoff
from botfleet.lifecycle.backoff import nominal_restart_delay_ms

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self._value = value

    def random(self) -> float:
        return self._value


class TestRestartBackoff(TestCase):
    def test_nominal_delay_doubles_up_to_cap(self) -> None:
        self.assertEqual(nominal_restart_delay_ms(0), 30_000)
        self.assertEqual(nominal_restart_delay_ms(1), 60_000)
        self.assertEqual(nominal_restart_delay_ms(4), 480_000)
        self.assertEqual(nominal_restart_delay_ms(5), 900_000)
        self.assertEqual(nominal_restart_delay_ms(10_000), 900_000)
        self.assertEqual(nominal_restart_delay_ms(-3), 30_000)

    def test_jittered_delay_stays_within_twenty_percent(self) -> None:
        rng = random.Random(1234)
        for _ in range(200):
            first = calculate_restart_backoff(0, now=NOW, rng=rng)
            capped = calculate_restart_backoff(10, now=NOW, rng=rng)
            self.assertGreaterEqual(first.delay_ms, 24_000)
            self.assertLessEqual(first.delay_ms, 36_000)
            self.assertGreaterEqual(capped.delay_ms, 720_000)
            self.assertLessEqual(capped.delay_ms, 1_080_000)

    def test_next_allowed_at_adds_delay_to_now(self) -> None:
        backoff = calculate_restart_backoff(2, now=NOW, rng=_FixedRandom(0.5))

        self.assertEqual(backoff.delay_ms, 120_000)
        self.assertEqual(backoff.next_allowed_at, NOW + timedelta(milliseconds=120_000))
        self.assertEqual(
            backoff.to_payload(),
            {"delay_ms": 120_000, "next_allowed_at": "2026-03-01T12:02:00+00:00"},
        )

    def test_extremes_of_jitter(self) -> None:
        low = calculate_restart_backoff(0, now=NOW, rng=_FixedRandom(0.0))
        policy = LifecyclePolicy(restart_backoff_jitter=0.0)
        flat = calculate_restart_backoff(3, policy=policy, now=NOW, rng=_FixedRandom(0.9))

        self.assertEqual(low.delay_ms, 24_000)
        self.assertEqual(flat.delay_ms, 240_000)

    def test_half_millisecond_delay_rounds_up(self) -> None:
        policy = LifecyclePolicy(restart_backoff_base_ms=5, restart_backoff_jitter=0.5)
        backoff = calculate_restart_backoff(0, policy=policy, now=NOW, rng=_FixedRandom(0.0))

        self.assertEqual(backoff.delay_ms, 3)

    def test_naive_now_is_treated_as_utc(self) -> None:
        backoff = calculate_restart_backoff(2, now=datetime(2026, 3, 1, 12, 0), rng=_FixedRandom(0.5))

        self.assertEqual(backoff.next_allowed_at, NOW + timedelta(milliseconds=120_000))
        self.assertEqual(backoff.to_payload()["next_allowed_at"], "2026-03-01T12:02:00+00:00")
