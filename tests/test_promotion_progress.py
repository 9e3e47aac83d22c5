from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest import TestCase

from botfleet.lifecycle import Stage
from botfleet.promotion import (
    MetricsRollup,
    PromotionInput,
    PromotionRules,
    compute_promotion_progress,
    missing_gates,
)
from botfleet.values import round_half_up

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _rollup(**overrides: Any) -> MetricsRollup:
    values: dict[str, Any] = {
        "trades": 50,
        "sharpe": 1.0,
        "profit_factor": 1.5,
        "expectancy": 20.0,
        "max_dd_pct": 3.0,
        "active_days": 10,
        "last_trade_at": NOW - timedelta(hours=6),
    }
    values.update(overrides)
    return MetricsRollup(**values)


def _input(rollup: MetricsRollup | None = None, **overrides: Any) -> PromotionInput:
    values: dict[str, Any] = {
        "bot_id": "bot-42",
        "current_stage": Stage.TRIALS,
        "health_state": "OK",
        "rollup": rollup if rollup is not None else _rollup(),
        "last_backtest_completed_at": NOW - timedelta(days=1),
        "last_backtest_status": "completed",
    }
    values.update(overrides)
    return PromotionInput(**values)


class TestPromotionProgress(TestCase):
    def test_all_gates_satisfied_scores_full_progress(self) -> None:
        progress = compute_promotion_progress(_input(), now=NOW)

        self.assertEqual(progress.target_stage, Stage.PAPER)
        self.assertEqual(progress.percent, 100)
        self.assertFalse(progress.blocked)
        self.assertTrue(all(gate.passed for gate in progress.gates.values()))
        self.assertEqual(missing_gates(progress), [])

    def test_warn_health_scales_progress(self) -> None:
        partial = _rollup(trades=25, sharpe=0.25, max_dd_pct=30.0)
        for rollup in (_rollup(), partial):
            ok = compute_promotion_progress(_input(rollup), now=NOW).percent
            warn = compute_promotion_progress(_input(rollup, health_state="WARN"), now=NOW).percent
            self.assertLessEqual(abs(warn - round_half_up(ok * 0.7)), 1)

        self.assertEqual(compute_promotion_progress(_input(health_state="WARN"), now=NOW).percent, 70)

    def test_zero_trades_never_shows_progress(self) -> None:
        progress = compute_promotion_progress(_input(_rollup(trades=0)), now=NOW)

        self.assertEqual(progress.percent, 0)
        self.assertFalse(progress.blocked)
        self.assertEqual(progress.gates["trades"].score, 0.0)
        self.assertEqual(progress.gates["sharpe"].score, 1.0)
        self.assertEqual(missing_gates(progress), ["Trades: 0 / 50"])

    def test_partial_progress_and_missing_gates(self) -> None:
        rollup = _rollup(trades=25, active_days=3, sharpe=0.25, max_dd_pct=30.0)
        progress = compute_promotion_progress(_input(rollup), now=NOW)

        self.assertEqual(progress.percent, 75)
        self.assertEqual(progress.gates["dd"].score, 0.5)
        self.assertEqual(progress.gates["trades"].score, 0.5)
        self.assertEqual(
            missing_gates(progress),
            ["Trades: 25 / 50", "Sharpe: 0.25 / 0.5", "Max DD: 30% ≤20%"],
        )

    def test_drawdown_only_costs_progress_past_the_allowance(self) -> None:
        def percent(max_dd_pct: float) -> int:
            return compute_promotion_progress(_input(_rollup(max_dd_pct=max_dd_pct)), now=NOW).percent

        self.assertEqual(percent(3.0), 100)
        self.assertEqual(percent(10.0), 100)
        self.assertEqual(percent(20.0), 100)
        self.assertEqual(percent(25.0), 96)
        self.assertEqual(percent(40.0), 85)
        self.assertEqual(percent(60.0), 85)

    def test_degraded_health_blocks_progress(self) -> None:
        progress = compute_promotion_progress(_input(health_state="DEGRADED"), now=NOW)

        self.assertTrue(progress.blocked)
        self.assertEqual(progress.percent, 0)
        self.assertEqual(progress.block_reason, "Health: DEGRADED")
        self.assertTrue(all(gate.score == 0.0 for gate in progress.gates.values()))
        self.assertEqual(missing_gates(progress), ["Health: DEGRADED"])

    def test_missing_metrics_block_progress(self) -> None:
        progress = compute_promotion_progress(replace(_input(), rollup=None), now=NOW)

        self.assertTrue(progress.blocked)
        self.assertEqual(progress.block_reason, "No metrics available")

    def test_final_stage_has_no_target(self) -> None:
        progress = compute_promotion_progress(_input(current_stage=Stage.LIVE), now=NOW)

        self.assertIsNone(progress.target_stage)
        self.assertEqual(progress.percent, 0)
        self.assertFalse(progress.blocked)
        self.assertEqual(missing_gates(progress), [])
        self.assertIsNone(progress.to_payload()["target_stage"])

    def test_stale_activity_and_backtest_gates(self) -> None:
        rollup = _rollup(last_trade_at=None)
        promotion_input = _input(rollup, last_backtest_status="failed")
        progress = compute_promotion_progress(promotion_input, now=NOW)

        self.assertEqual(progress.gates["recent"].value, "Never")
        self.assertEqual(progress.gates["backtest"].value, "Status: failed")
        self.assertEqual(progress.percent, 85)
        self.assertEqual(missing_gates(progress), ["Recent: Never ≤7d", "Backtest: Status: failed"])

    def test_backtest_gate_optional_when_not_required(self) -> None:
        rules = PromotionRules(requires_backtest_coverage=False)
        promotion_input = _input(last_backtest_completed_at=None, last_backtest_status=None)
        gate = compute_promotion_progress(promotion_input, rules, now=NOW).gates["backtest"]

        self.assertTrue(gate.passed)
        self.assertEqual(gate.value, "Not required")
        self.assertEqual(gate.required, "Optional")

    def test_zero_thresholds_score_as_met(self) -> None:
        rules = PromotionRules(min_days=0, min_expectancy=0, max_drawdown_pct=0)
        rollup = _rollup(active_days=0, expectancy=0.0, max_dd_pct=0.0)
        progress = compute_promotion_progress(_input(rollup), rules, now=NOW)

        self.assertEqual(progress.gates["days"].score, 1.0)
        self.assertEqual(progress.gates["expectancy"].score, 1.0)
        self.assertEqual(progress.gates["dd"].score, 1.0)
        self.assertEqual(progress.percent, 100)

    def test_gate_payload_uses_pass_key(self) -> None:
        payload = compute_promotion_progress(_input(), now=NOW).to_payload()

        self.assertEqual(payload["target_stage"], "PAPER")
        self.assertEqual(
            payload["gates"]["health"],
            {"label": "Health", "value": "OK", "required": "OK or WARN", "pass": True, "score": 1.0},
        )
