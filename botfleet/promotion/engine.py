"""Deterministic promotion gate evaluation.

Every evaluation returns a decision with at least one reason so the audit log
always explains why a bot moved or stayed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from ..lifecycle.transitions import next_promotion_stage
from ..lifecycle.types import HealthState, Stage
from ..values import MS_PER_DAY, elapsed_ms, format_number, resolve_now
from .rules import HealthRequirement, MetricsRollup, PromotionDecision, PromotionInput, PromotionRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromotionResult:
    bot_id: str
    decision: PromotionDecision
    from_stage: Stage | str
    to_stage: Stage | str
    reasons: tuple[str, ...]
    metrics_snapshot: MetricsRollup | None
    evaluated_at: datetime

    @property
    def promoted(self) -> bool:
        return self.decision == PromotionDecision.PROMOTE

    def to_payload(self) -> dict[str, object]:
        return {
            'bot_id': self.bot_id,
            'decision': str(self.decision),
            'from_stage': str(self.from_stage),
            'to_stage': str(self.to_stage),
            'reasons': list(self.reasons),
            'metrics_snapshot': self.metrics_snapshot.to_payload() if self.metrics_snapshot else None,
            'evaluated_at': self.evaluated_at.isoformat(),
        }


def _whole_days(since: datetime, now: datetime) -> int:
    return math.floor(elapsed_ms(since, now) / MS_PER_DAY)


def _optional_fixed(value: float | None, digits: int) -> str:
    return 'n/a' if value is None else f'{value:.{digits}f}'


def _metric_failures(
    rollup: MetricsRollup,
    promotion_input: PromotionInput,
    rules: PromotionRules,
    now: datetime,
) -> list[str]:
    """Check every metric gate without short-circuiting."""

    failures: list[str] = []

    if rollup.trades < rules.min_trades:
        failures.append(f'Trades {rollup.trades} < required {rules.min_trades}')

    if rollup.active_days < rules.min_days:
        failures.append(f'Active days {rollup.active_days} < required {rules.min_days}')

    if rollup.profit_factor is None:
        failures.append('Profit factor not available')
    elif rollup.profit_factor < rules.min_profit_factor:
        failures.append(
            f'Profit factor {rollup.profit_factor:.2f} < required {format_number(rules.min_profit_factor)}'
        )

    if rollup.sharpe is None:
        failures.append('Sharpe ratio not available')
    elif rollup.sharpe < rules.min_sharpe:
        failures.append(f'Sharpe {rollup.sharpe:.2f} < required {format_number(rules.min_sharpe)}')

    if rollup.max_dd_pct is not None and rollup.max_dd_pct > rules.max_drawdown_pct:
        failures.append(f'Max DD {rollup.max_dd_pct:.1f}% > allowed {format_number(rules.max_drawdown_pct)}%')

    if rollup.expectancy is not None and rollup.expectancy < rules.min_expectancy:
        failures.append(f'Expectancy {rollup.expectancy:.2f} < required {format_number(rules.min_expectancy)}')

    if rollup.last_trade_at is None:
        failures.append('No trade activity recorded')
    elif elapsed_ms(rollup.last_trade_at, now) > rules.recent_activity_days * MS_PER_DAY:
        failures.append(
            f'Last trade {_whole_days(rollup.last_trade_at, now)} days ago > '
            f'{rules.recent_activity_days} day limit'
        )

    if rules.requires_backtest_coverage:
        completed_at = promotion_input.last_backtest_completed_at
        if completed_at is None:
            failures.append('No completed backtest found')
        else:
            if elapsed_ms(completed_at, now) > rules.backtest_max_age_days * MS_PER_DAY:
                failures.append(
                    f'Backtest {_whole_days(completed_at, now)} days old > {rules.backtest_max_age_days} day limit'
                )
            if not promotion_input.backtest_completed:
                failures.append(f'Last backtest status: {promotion_input.last_backtest_status or "unknown"}')

    return failures


def _result(
    promotion_input: PromotionInput,
    decision: PromotionDecision,
    from_stage: Stage | str,
    to_stage: Stage | str,
    reasons: list[str],
    snapshot: MetricsRollup | None,
    now: datetime,
) -> PromotionResult:
    result = PromotionResult(
        bot_id=promotion_input.bot_id,
        decision=decision,
        from_stage=from_stage,
        to_stage=to_stage,
        reasons=tuple(reasons),
        metrics_snapshot=snapshot,
        evaluated_at=now,
    )
    logger.debug(
        'promotion evaluated bot_id=%s decision=%s from=%s to=%s reasons=%s',
        result.bot_id,
        result.decision,
        result.from_stage,
        result.to_stage,
        '; '.join(result.reasons),
    )
    return result


def evaluate_stage_promotion(
    promotion_input: PromotionInput,
    rules: PromotionRules | None = None,
    *,
    from_stage: Stage | str = Stage.TRIALS,
    now: datetime | None = None,
) -> PromotionResult:
    """Evaluate one bot for promotion out of ``from_stage``.

    Wrong stage, disabled rules, a frozen or degraded bot and a missing rollup
    return immediately. Otherwise every metric gate is checked and each
    failure contributes one reason; the bot is promoted only when none fail.
    """

    rules = rules or PromotionRules()
    current = resolve_now(now)
    snapshot = promotion_input.rollup
    stage = promotion_input.current_stage
    to_stage = next_promotion_stage(from_stage)

    if to_stage is None:
        return _result(
            promotion_input,
            PromotionDecision.KEEP,
            stage,
            stage,
            [f'Stage {from_stage} has no promotion target'],
            snapshot,
            current,
        )

    if stage != from_stage:
        return _result(
            promotion_input,
            PromotionDecision.KEEP,
            stage,
            stage,
            [f'Not in {from_stage} stage - skipping {from_stage}→{to_stage} evaluation'],
            snapshot,
            current,
        )

    if not rules.enabled:
        return _result(
            promotion_input,
            PromotionDecision.KEEP,
            from_stage,
            from_stage,
            ['Auto-promotion is disabled'],
            snapshot,
            current,
        )

    health = promotion_input.health_state
    if health in (HealthState.DEGRADED, HealthState.FROZEN):
        return _result(
            promotion_input,
            PromotionDecision.FREEZE,
            from_stage,
            from_stage,
            [f'Health state is {health}: {", ".join(promotion_input.health_reasons)}'],
            snapshot,
            current,
        )

    failures: list[str] = []
    if rules.health_required == HealthRequirement.OK_ONLY and health != HealthState.OK:
        failures.append(f'Health must be OK, currently {health}')

    if snapshot is None:
        return _result(
            promotion_input,
            PromotionDecision.KEEP,
            from_stage,
            from_stage,
            [f'No {rules.window_days}-day metrics available yet'],
            None,
            current,
        )

    failures.extend(_metric_failures(snapshot, promotion_input, rules, current))
    if failures:
        return _result(promotion_input, PromotionDecision.KEEP, from_stage, from_stage, failures, snapshot, current)

    return _result(
        promotion_input,
        PromotionDecision.PROMOTE,
        from_stage,
        to_stage,
        [
            'Passed all promotion criteria',
            f'Trades: {snapshot.trades}',
            f'Sharpe: {_optional_fixed(snapshot.sharpe, 2)}',
            f'PF: {_optional_fixed(snapshot.profit_factor, 2)}',
            f'Max DD: {_optional_fixed(snapshot.max_dd_pct, 1)}%',
        ],
        snapshot,
        current,
    )


def evaluate_trials_to_paper(
    promotion_input: PromotionInput,
    rules: PromotionRules | None = None,
    *,
    now: datetime | None = None,
) -> PromotionResult:
    return evaluate_stage_promotion(promotion_input, rules, from_stage=Stage.TRIALS, now=now)


def evaluate_promotion(
    promotion_input: PromotionInput,
    rules_by_stage: Mapping[str, PromotionRules],
    *,
    now: datetime | None = None,
) -> PromotionResult:
    """Dispatch on the bot's current stage to the rule set configured for it."""

    stage = promotion_input.current_stage
    rules = rules_by_stage.get(stage)
    if rules is None:
        return _result(
            promotion_input,
            PromotionDecision.KEEP,
            stage,
            stage,
            [f'Stage {stage} evaluation not configured'],
            promotion_input.rollup,
            resolve_now(now),
        )
    return evaluate_stage_promotion(promotion_input, rules, from_stage=stage, now=now)


__all__ = [
    'PromotionResult',
    'evaluate_promotion',
    'evaluate_stage_promotion',
    'evaluate_trials_to_paper',
]
