from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest import TestCase

from botfleet.lifecycle import Stage
from botfleet.promotion import (
    HealthRequirement,
    MetricsRollup,
    PromotionDecision,
    PromotionInput,
    PromotionRules,
    evaluate_promotion,
    evaluate_stage_promotion,
    evaluate_trials_to_paper,
)
from botfleet.promotion.graduation import STAGE_GATE_THRESHOLDS

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _rollup(**overrides: Any) -> MetricsRollup:
    values: dict[str, Any] = {
        "trades": 50,
        "win_rate": 55.0,
        "sharpe": 1.0,
        "profit_factor": 1.5,
        "expectancy": 20.0,
        "max_dd_pct": 3.0,
        "active_days": 10,
        "last_trade_at": NOW - timedelta(days=1),
    }
    values.update(overrides)
    return MetricsRollup(**values)


def _input(rollup: MetricsRollup | None = None, **overrides: Any) -> PromotionInput:
    values: dict[str, Any] = {
        "bot_id": "bot-42",
        "current_stage": Stage.TRIALS,
        "health_state": "OK",
        "rollup": rollup if rollup is not None else _rollup(),
        "last_backtest_completed_at": NOW - timedelta(days=2),
        "last_backtest_status": "completed",
    }
    values.update(overrides)
    return PromotionInput(**values)


class TestPromotionEngine(TestCase):
    def test_promotes_when_every_gate_passes(self) -> None:
        result = evaluate_trials_to_paper(_input(), now=NOW)

        self.assertEqual(result.decision, PromotionDecision.PROMOTE)
        self.assertTrue(result.promoted)
        self.assertEqual(result.from_stage, Stage.TRIALS)
        self.assertEqual(result.to_stage, Stage.PAPER)
        self.assertEqual(
            list(result.reasons),
            ["Passed all promotion criteria", "Trades: 50", "Sharpe: 1.00", "PF: 1.50", "Max DD: 3.0%"],
        )
        self.assertEqual(result.evaluated_at, NOW)

    def test_naive_timestamps_are_read_as_utc(self) -> None:
        naive_now = datetime(2026, 3, 1, 12, 0)
        rollup = _rollup(last_trade_at=naive_now - timedelta(days=1))
        promotion_input = _input(rollup, last_backtest_completed_at=naive_now - timedelta(days=2))

        result = evaluate_trials_to_paper(promotion_input, now=naive_now)

        self.assertEqual(result.decision, PromotionDecision.PROMOTE)
        self.assertEqual(result.evaluated_at, NOW)

    def test_too_few_trades_keeps_bot(self) -> None:
        result = evaluate_trials_to_paper(_input(_rollup(trades=10)), now=NOW)

        self.assertEqual(result.decision, PromotionDecision.KEEP)
        self.assertEqual(result.to_stage, Stage.TRIALS)
        self.assertIn("Trades 10 < required 50", result.reasons)

    def test_degraded_or_frozen_health_freezes_without_metrics(self) -> None:
        degraded = evaluate_trials_to_paper(
            _input(health_state="DEGRADED", health_reasons=("runner stalled", "drawdown")), now=NOW
        )
        frozen = replace(_input(health_state="FROZEN"), rollup=None)

        self.assertEqual(degraded.decision, PromotionDecision.FREEZE)
        self.assertEqual(degraded.reasons, ("Health state is DEGRADED: runner stalled, drawdown",))
        self.assertEqual(evaluate_trials_to_paper(frozen, now=NOW).decision, PromotionDecision.FREEZE)

    def test_wrong_stage_is_skipped(self) -> None:
        result = evaluate_trials_to_paper(_input(current_stage=Stage.PAPER), now=NOW)

        self.assertEqual(result.decision, PromotionDecision.KEEP)
        self.assertEqual(result.reasons, ("Not in TRIALS stage - skipping TRIALS→PAPER evaluation",))
        self.assertEqual(result.from_stage, Stage.PAPER)
        self.assertEqual(result.to_stage, Stage.PAPER)

    def test_disabled_rules_keep_bot(self) -> None:
        result = evaluate_trials_to_paper(_input(), PromotionRules(enabled=False), now=NOW)

        self.assertEqual(result.reasons, ("Auto-promotion is disabled",))

    def test_missing_rollup_keeps_bot_with_single_reason(self) -> None:
        missing = replace(_input(health_state="WARN"), rollup=None)
        result = evaluate_trials_to_paper(
            missing, PromotionRules(health_required=HealthRequirement.OK_ONLY), now=NOW
        )

        self.assertEqual(result.decision, PromotionDecision.KEEP)
        self.assertEqual(result.reasons, ("No 30-day metrics available yet",))
        self.assertIsNone(result.metrics_snapshot)

    def test_warn_health_depends_on_requirement(self) -> None:
        warn = _input(health_state="WARN")
        strict = evaluate_trials_to_paper(warn, PromotionRules(health_required=HealthRequirement.OK_ONLY), now=NOW)
        lenient = evaluate_trials_to_paper(warn, now=NOW)

        self.assertEqual(strict.decision, PromotionDecision.KEEP)
        self.assertEqual(strict.reasons, ("Health must be OK, currently WARN",))
        self.assertEqual(lenient.decision, PromotionDecision.PROMOTE)

    def test_every_failing_metric_is_reported(self) -> None:
        rollup = _rollup(profit_factor=None, sharpe=0.2, max_dd_pct=25.0, expectancy=5.0, last_trade_at=None)
        result = evaluate_trials_to_paper(_input(rollup, last_backtest_completed_at=None), now=NOW)

        self.assertEqual(
            list(result.reasons),
            [
                "Profit factor not available",
                "Sharpe 0.20 < required 0.5",
                "Max DD 25.0% > allowed 20%",
                "Expectancy 5.00 < required 10",
                "No trade activity recorded",
                "No completed backtest found",
            ],
        )

    def test_stale_activity_and_failed_backtest(self) -> None:
        rollup = _rollup(last_trade_at=NOW - timedelta(days=10), active_days=2)
        promotion_input = _input(
            rollup,
            last_backtest_completed_at=NOW - timedelta(days=9),
            last_backtest_status="failed",
        )
        result = evaluate_trials_to_paper(promotion_input, now=NOW)

        self.assertEqual(
            list(result.reasons),
            [
                "Active days 2 < required 3",
                "Last trade 10 days ago > 7 day limit",
                "Backtest 9 days old > 7 day limit",
                "Last backtest status: failed",
            ],
        )

    def test_backtest_coverage_can_be_waived(self) -> None:
        promotion_input = _input(last_backtest_completed_at=None, last_backtest_status=None)
        result = evaluate_trials_to_paper(promotion_input, PromotionRules(requires_backtest_coverage=False), now=NOW)

        self.assertEqual(result.decision, PromotionDecision.PROMOTE)

    def test_dispatch_by_stage(self) -> None:
        paper_rules = PromotionRules.from_thresholds(STAGE_GATE_THRESHOLDS[Stage.PAPER])
        rules_by_stage = {Stage.TRIALS: PromotionRules(), Stage.PAPER: paper_rules, Stage.LIVE: PromotionRules()}

        unconfigured = evaluate_promotion(_input(current_stage=Stage.SHADOW), rules_by_stage, now=NOW)
        paper = evaluate_promotion(_input(current_stage=Stage.PAPER), rules_by_stage, now=NOW)
        live = evaluate_promotion(_input(current_stage=Stage.LIVE), rules_by_stage, now=NOW)

        self.assertEqual(unconfigured.reasons, ("Stage SHADOW evaluation not configured",))
        self.assertEqual(paper.decision, PromotionDecision.KEEP)
        self.assertEqual(paper.reasons, ("Trades 50 < required 100",))
        self.assertEqual(paper.from_stage, Stage.PAPER)
        self.assertEqual(live.reasons, ("Stage LIVE has no promotion target",))

    def test_explicit_source_stage(self) -> None:
        result = evaluate_stage_promotion(
            _input(current_stage=Stage.SHADOW),
            PromotionRules(min_trades=10),
            from_stage=Stage.SHADOW,
            now=NOW,
        )

        self.assertEqual(result.decision, PromotionDecision.PROMOTE)
        self.assertEqual(result.to_stage, Stage.CANARY)

    def test_result_payload(self) -> None:
        payload = evaluate_trials_to_paper(_input(), now=NOW).to_payload()

        self.assertEqual(payload["decision"], "PROMOTE")
        self.assertEqual(payload["to_stage"], "PAPER")
        self.assertEqual(payload["evaluated_at"], "2026-03-01T12:00:00+00:00")
        self.assertEqual(payload["metrics_snapshot"]["trades"], 50)


class TestPromotionRules(TestCase):
    def test_reads_store_keys_and_short_names(self) -> None:
        rules = PromotionRules.from_payload(
            {
                "lab_autopromote_min_trades": "25",
                "lab_autopromote_requires_recent_activity_days": 3,
                "min_sharpe": 0.8,
                "health_required": "OK_ONLY",
                "enabled": "false",
            }
        )

        self.assertEqual(rules.min_trades, 25)
        self.assertEqual(rules.recent_activity_days, 3)
        self.assertEqual(rules.min_sharpe, 0.8)
        self.assertEqual(rules.health_required, HealthRequirement.OK_ONLY)
        self.assertFalse(rules.enabled)
        self.assertEqual(rules.min_profit_factor, 1.2)

    def test_rejects_unknown_health_requirement(self) -> None:
        with self.assertRaises(ValueError):
            PromotionRules.from_payload({"health_required": "SOMETIMES"})

    def test_from_thresholds_uses_stage_table(self) -> None:
        rules = PromotionRules.from_thresholds(STAGE_GATE_THRESHOLDS[Stage.PAPER])

        self.assertEqual(rules.min_trades, 100)
        self.assertEqual(rules.min_days, 5)
        self.assertEqual(rules.max_drawdown_pct, 15)
        self.assertEqual(rules.recent_activity_days, 7)

    def test_input_payload_accepts_camel_case_rollup(self) -> None:
        promotion_input = PromotionInput.from_payload(
            {
                "bot_id": "bot-1",
                "current_stage": "TRIALS",
                "rollup30": {"trades": 12, "winRate": 51.5, "maxDdPct": 4.0, "lastTradeAt": "2026-02-28T00:00:00Z"},
                "last_backtest_status": "COMPLETED",
            }
        )

        self.assertEqual(promotion_input.health_state, "OK")
        self.assertEqual(promotion_input.rollup.win_rate, 51.5)
        self.assertEqual(promotion_input.rollup.max_dd_pct, 4.0)
        self.assertEqual(promotion_input.rollup.last_trade_at, datetime(2026, 2, 28, tzinfo=timezone.utc))
        self.assertTrue(promotion_input.backtest_completed)
