from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest import TestCase

from botfleet.lifecycle import (
    AutoHealActionType,
    BotContext,
    ImprovementContext,
    InstanceContext,
    JobsSummary,
    evaluate_canonical_state,
    plan_auto_heal,
)
from botfleet.lifecycle.types import JobType

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _bot(**overrides: Any) -> BotContext:
    payload: dict[str, Any] = {
        "bot_id": "bot-7",
        "stage": "PAPER",
        "mode": "SIM_LIVE",
        "is_trading_enabled": True,
        "health_score": 90,
    }
    payload.update(overrides)
    return BotContext.from_payload(payload)


def _instance(**overrides: Any) -> InstanceContext:
    payload: dict[str, Any] = {
        "id": "inst-7",
        "status": "running",
        "activity_state": "SCANNING",
        "last_heartbeat_at": NOW - timedelta(seconds=5),
    }
    payload.update(overrides)
    return InstanceContext.from_payload(payload)


def _plan(
    bot: BotContext,
    instance: InstanceContext | None,
    jobs: JobsSummary | None = None,
    improvement: ImprovementContext | None = None,
) -> list[Any]:
    state = evaluate_canonical_state(bot, instance, jobs or JobsSummary(), improvement, now=NOW)
    return plan_auto_heal(bot, instance, state, now=NOW)


class TestAutoHealPlanner(TestCase):
    def test_healthy_bot_needs_nothing(self) -> None:
        self.assertEqual(_plan(_bot(), _instance()), [])

    def test_stalled_runner_is_restarted(self) -> None:
        actions = _plan(_bot(), _instance(last_heartbeat_at=NOW - timedelta(minutes=5)))

        self.assertEqual(len(actions), 1)
        self.assertEqual(actions[0].action, AutoHealActionType.QUEUE_RUNNER_RESTART)
        self.assertIsNotNone(actions[0].job)
        self.assertEqual(actions[0].job.job_type, JobType.RUNNER_RESTART)
        self.assertEqual(actions[0].job.payload, {"bot_id": "bot-7", "reason": "STALE_HEARTBEAT"})
        self.assertIsNone(actions[0].store_update)

    def test_restart_waits_for_backoff_window(self) -> None:
        waiting = _instance(
            last_heartbeat_at=NOW - timedelta(minutes=5),
            next_restart_allowed_at=NOW + timedelta(seconds=30),
        )
        elapsed = _instance(
            last_heartbeat_at=NOW - timedelta(minutes=5),
            next_restart_allowed_at=NOW - timedelta(seconds=1),
        )

        self.assertEqual(_plan(_bot(), waiting), [])
        self.assertEqual(len(_plan(_bot(), elapsed)), 1)

    def test_backoff_window_with_naive_now(self) -> None:
        waiting = _instance(
            last_heartbeat_at=NOW - timedelta(minutes=5),
            next_restart_allowed_at=NOW + timedelta(seconds=30),
        )
        naive_now = datetime(2026, 3, 1, 12, 0)
        state = evaluate_canonical_state(_bot(), waiting, JobsSummary(), now=naive_now)

        self.assertEqual(plan_auto_heal(_bot(), waiting, state, now=naive_now), [])
        later = naive_now + timedelta(minutes=1)
        self.assertEqual(len(plan_auto_heal(_bot(), waiting, state, now=later)), 1)

    def test_missing_runner_and_bad_mode_follow_blocker_order(self) -> None:
        actions = _plan(_bot(stage="LIVE", mode="SIM_LIVE"), None)

        self.assertEqual(
            [action.action for action in actions],
            [AutoHealActionType.QUEUE_RUNNER_START, AutoHealActionType.FIX_MODE],
        )
        self.assertEqual(actions[0].job.payload, {"bot_id": "bot-7", "reason": "NO_RUNNER"})
        update = actions[1].store_update
        self.assertEqual((update.table, update.id, dict(update.updates)), ("bots", "bot-7", {"mode": "LIVE"}))

    def test_pre_runner_stage_runner_is_stopped(self) -> None:
        actions = _plan(_bot(stage="TRIALS", mode="BACKTEST_ONLY", is_trading_enabled=False), _instance())

        self.assertEqual(len(actions), 1)
        self.assertEqual(
            actions[0].to_payload(),
            {
                "action": "STOP_RUNNER",
                "store_update": {
                    "table": "bot_instances",
                    "id": "inst-7",
                    "updates": {"status": "stopped", "activity_state": "STOPPED"},
                },
            },
        )

    def test_runner_error_is_restarted(self) -> None:
        actions = _plan(_bot(), _instance(status="error"))

        self.assertEqual(
            actions[0].to_payload(),
            {
                "action": "QUEUE_RUNNER_RESTART",
                "job": {"job_type": "RUNNER_RESTART", "payload": {"bot_id": "bot-7", "reason": "ERROR_STATE"}},
            },
        )

    def test_invalid_pause_is_cleared(self) -> None:
        improvement = ImprovementContext.from_payload({"status": "FROZEN", "paused_by": "AUTO"})
        actions = _plan(_bot(), _instance(), improvement=improvement)

        self.assertEqual(len(actions), 1)
        self.assertEqual(actions[0].action, AutoHealActionType.CLEAR_PAUSE)
        update = actions[0].store_update
        self.assertEqual(update.table, "bot_improvement_state")
        self.assertEqual(dict(update.updates), {"status": "IDLE", "pause_scope": None, "paused_by": None})

    def test_non_healable_and_unmapped_blockers_produce_nothing(self) -> None:
        circuit = _instance(circuit_breaker_open=True, circuit_breaker_until=NOW + timedelta(minutes=5))
        aging = _instance(last_heartbeat_at=NOW - timedelta(seconds=90))

        self.assertEqual(_plan(_bot(), circuit), [])
        self.assertEqual(_plan(_bot(), aging), [])
        self.assertEqual(_plan(_bot(is_trading_enabled=False), _instance()), [])
        self.assertEqual(_plan(_bot(), _instance(status="paused", pause_origin="SYSTEM")), [])
