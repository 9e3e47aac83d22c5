"""Continuous progress towards the next promotion.

Scores the same gates the promotion engine checks, weighted into a single
0-100 percentage for dashboards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Union

from ..lifecycle.transitions import next_promotion_stage
from ..lifecycle.types import HealthState, Stage
from ..values import clamp, format_number, resolve_now, round_half_up, whole_days_since
from .rules import HealthRequirement, MetricsRollup, PromotionInput, PromotionRules

GateValue = Union[int, float, str, bool, None]

GATE_WEIGHTS: Mapping[str, float] = MappingProxyType(
    {
        'trades': 0.20,
        'days': 0.10,
        'sharpe': 0.15,
        'pf': 0.15,
        'dd': 0.15,
        'expectancy': 0.10,
        'recent': 0.10,
        'backtest': 0.05,
    }
)

GATE_LABELS: Mapping[str, str] = MappingProxyType(
    {
        'trades': 'Trades',
        'days': 'Active Days',
        'sharpe': 'Sharpe',
        'pf': 'Profit Factor',
        'dd': 'Max Drawdown',
        'expectancy': 'Expectancy',
        'recent': 'Recent Trade',
        'backtest': 'Backtest',
        'health': 'Health',
    }
)

WARN_HEALTH_MULTIPLIER = 0.7
WARN_HEALTH_SCORE = 0.7


@dataclass(frozen=True)
class GateResult:
    label: str
    value: GateValue
    required: GateValue
    passed: bool
    score: float

    def to_payload(self) -> dict[str, object]:
        return {
            'label': self.label,
            'value': self.value,
            'required': self.required,
            'pass': self.passed,
            'score': self.score,
        }


@dataclass(frozen=True)
class PromotionProgress:
    target_stage: Stage | None
    percent: int
    blocked: bool
    block_reason: str | None
    gates: Mapping[str, GateResult]

    def to_payload(self) -> dict[str, object]:
        return {
            'target_stage': str(self.target_stage) if self.target_stage else None,
            'percent': self.percent,
            'blocked': self.blocked,
            'block_reason': self.block_reason,
            'gates': {name: gate.to_payload() for name, gate in self.gates.items()},
        }


def _empty_gates() -> Mapping[str, GateResult]:
    return MappingProxyType(
        {
            name: GateResult(label=label, value=None, required=0, passed=False, score=0.0)
            for name, label in GATE_LABELS.items()
        }
    )


def _ratio_score(value: float, required: float) -> float:
    if required <= 0:
        return 1.0 if value >= required else 0.0
    return clamp(value / required, 0.0, 1.0)


def _drawdown_score(max_dd_pct: float | None, allowed: float) -> float:
    """Score 1 anywhere within the allowance, falling linearly to 0 at twice the allowance."""

    if max_dd_pct is None or max_dd_pct <= allowed:
        return 1.0
    if allowed <= 0:
        return 0.0
    return clamp(1 - (max_dd_pct - allowed) / allowed, 0.0, 1.0)


def _rounded(value: float | None, digits: int) -> float | None:
    return None if value is None else round(value, digits)


def _compute_gates(
    rollup: MetricsRollup,
    promotion_input: PromotionInput,
    rules: PromotionRules,
    now: datetime,
) -> Mapping[str, GateResult]:
    gates: dict[str, GateResult] = {}

    gates['trades'] = GateResult(
        label=GATE_LABELS['trades'],
        value=rollup.trades,
        required=rules.min_trades,
        passed=rollup.trades >= rules.min_trades,
        score=_ratio_score(rollup.trades, rules.min_trades),
    )
    gates['days'] = GateResult(
        label=GATE_LABELS['days'],
        value=rollup.active_days,
        required=rules.min_days,
        passed=rollup.active_days >= rules.min_days,
        score=_ratio_score(rollup.active_days, rules.min_days),
    )
    gates['sharpe'] = GateResult(
        label=GATE_LABELS['sharpe'],
        value=_rounded(rollup.sharpe, 2),
        required=rules.min_sharpe,
        passed=rollup.sharpe is not None and rollup.sharpe >= rules.min_sharpe,
        score=_ratio_score(rollup.sharpe or 0.0, rules.min_sharpe),
    )
    gates['pf'] = GateResult(
        label=GATE_LABELS['pf'],
        value=_rounded(rollup.profit_factor, 2),
        required=rules.min_profit_factor,
        passed=rollup.profit_factor is not None and rollup.profit_factor >= rules.min_profit_factor,
        score=_ratio_score(rollup.profit_factor or 0.0, rules.min_profit_factor),
    )
    gates['dd'] = GateResult(
        label=GATE_LABELS['dd'],
        value=_rounded(rollup.max_dd_pct, 1),
        required=f'≤{format_number(rules.max_drawdown_pct)}%',
        passed=rollup.max_dd_pct is None or rollup.max_dd_pct <= rules.max_drawdown_pct,
        score=_drawdown_score(rollup.max_dd_pct, rules.max_drawdown_pct),
    )
    gates['expectancy'] = GateResult(
        label=GATE_LABELS['expectancy'],
        value=_rounded(rollup.expectancy, 2),
        required=rules.min_expectancy,
        passed=rollup.expectancy is not None and rollup.expectancy >= rules.min_expectancy,
        score=_ratio_score(rollup.expectancy or 0.0, rules.min_expectancy),
    )

    days_since_trade = whole_days_since(rollup.last_trade_at, now)
    recent_passed = days_since_trade is not None and days_since_trade <= rules.recent_activity_days
    gates['recent'] = GateResult(
        label=GATE_LABELS['recent'],
        value=f'{days_since_trade}d ago' if days_since_trade is not None else 'Never',
        required=f'≤{rules.recent_activity_days}d',
        passed=recent_passed,
        score=1.0 if recent_passed else 0.0,
    )

    backtest_value = 'Not required'
    backtest_passed = True
    if rules.requires_backtest_coverage:
        days_since_backtest = whole_days_since(promotion_input.last_backtest_completed_at, now)
        backtest_recent = days_since_backtest is not None and days_since_backtest <= rules.backtest_max_age_days
        backtest_passed = backtest_recent and promotion_input.backtest_completed
        if promotion_input.last_backtest_completed_at is None:
            backtest_value = 'None'
        elif not promotion_input.backtest_completed:
            backtest_value = f'Status: {promotion_input.last_backtest_status or "unknown"}'
        elif not backtest_recent:
            backtest_value = f'{days_since_backtest}d ago'
        else:
            backtest_value = 'OK'
    gates['backtest'] = GateResult(
        label=GATE_LABELS['backtest'],
        value=backtest_value,
        required='Required' if rules.requires_backtest_coverage else 'Optional',
        passed=backtest_passed,
        score=1.0 if backtest_passed else 0.0,
    )

    health = promotion_input.health_state
    warn_allowed = rules.health_required == HealthRequirement.WARN_OK
    if health == HealthState.OK:
        health_score = 1.0
    elif health == HealthState.WARN:
        health_score = WARN_HEALTH_SCORE
    else:
        health_score = 0.0
    gates['health'] = GateResult(
        label=GATE_LABELS['health'],
        value=str(health),
        required='OK or WARN' if warn_allowed else 'OK',
        passed=health == HealthState.OK or (warn_allowed and health == HealthState.WARN),
        score=health_score,
    )

    return MappingProxyType(gates)


def compute_promotion_progress(
    promotion_input: PromotionInput,
    rules: PromotionRules | None = None,
    *,
    now: datetime | None = None,
) -> PromotionProgress:
    """Score how close a bot is to its next stage.

    A bot with no trades shows 0% regardless of how its other gates score.
    """

    rules = rules or PromotionRules()
    current = resolve_now(now)
    target = next_promotion_stage(promotion_input.current_stage)

    if target is None:
        return PromotionProgress(target_stage=None, percent=0, blocked=False, block_reason=None, gates=_empty_gates())

    health = promotion_input.health_state
    if health in (HealthState.DEGRADED, HealthState.FROZEN):
        return PromotionProgress(
            target_stage=target, percent=0, blocked=True, block_reason=f'Health: {health}', gates=_empty_gates()
        )

    rollup = promotion_input.rollup
    if rollup is None:
        return PromotionProgress(
            target_stage=target, percent=0, blocked=True, block_reason='No metrics available', gates=_empty_gates()
        )

    gates = _compute_gates(rollup, promotion_input, rules, current)
    if rollup.trades == 0:
        return PromotionProgress(target_stage=target, percent=0, blocked=False, block_reason=None, gates=gates)

    multiplier = 1.0 if health == HealthState.OK else WARN_HEALTH_MULTIPLIER
    weighted = sum(weight * gates[name].score for name, weight in GATE_WEIGHTS.items())
    return PromotionProgress(
        target_stage=target,
        percent=round_half_up(100 * multiplier * weighted),
        blocked=False,
        block_reason=None,
        gates=gates,
    )


def _shown(value: GateValue) -> str:
    if value is None:
        return 'N/A'
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def missing_gates(progress: PromotionProgress) -> list[str]:
    """One line per failing gate, or the block reason when blocked."""

    if progress.blocked:
        return [progress.block_reason or 'Blocked']

    lines: list[str] = []
    gates = progress.gates
    if progress.target_stage is None:
        return lines
    if not gates['trades'].passed:
        lines.append(f'Trades: {_shown(gates["trades"].value)} / {_shown(gates["trades"].required)}')
    if not gates['days'].passed:
        lines.append(f'Days: {_shown(gates["days"].value)} / {_shown(gates["days"].required)}')
    if not gates['sharpe'].passed:
        lines.append(f'Sharpe: {_shown(gates["sharpe"].value)} / {_shown(gates["sharpe"].required)}')
    if not gates['pf'].passed:
        lines.append(f'PF: {_shown(gates["pf"].value)} / {_shown(gates["pf"].required)}')
    if not gates['dd'].passed:
        lines.append(f'Max DD: {_shown(gates["dd"].value)}% {gates["dd"].required}')
    if not gates['expectancy'].passed:
        lines.append(f'Expectancy: {_shown(gates["expectancy"].value)} / {_shown(gates["expectancy"].required)}')
    if not gates['recent'].passed:
        lines.append(f'Recent: {gates["recent"].value} {gates["recent"].required}')
    if not gates['backtest'].passed:
        lines.append(f'Backtest: {gates["backtest"].value}')
    if not gates['health'].passed:
        lines.append(f'Health: {gates["health"].value}')
    return lines


__all__ = [
    'GATE_WEIGHTS',
    'GateResult',
    'PromotionProgress',
    'compute_promotion_progress',
    'missing_gates',
]
