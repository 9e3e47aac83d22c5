"""Promotion rules, metric rollups and per-bot promotion inputs."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping

from ..lifecycle.types import HealthState, Stage, StringEnum, coerce_enum
from ..values import (
    bool_or_default,
    float_or_default,
    float_or_none,
    int_or_default,
    isoformat_or_none,
    parse_datetime,
)

if TYPE_CHECKING:
    from .graduation import GraduationThresholds


class PromotionDecision(StringEnum):
    PROMOTE = 'PROMOTE'
    # Part of the persisted contract; no evaluator currently produces it.
    DEMOTE = 'DEMOTE'
    KEEP = 'KEEP'
    FREEZE = 'FREEZE'


class HealthRequirement(StringEnum):
    OK_ONLY = 'OK_ONLY'
    WARN_OK = 'WARN_OK'


_STORE_KEY_PREFIX = 'lab_autopromote_'
# Short names whose store key is not simply the prefixed short name.
_STORE_KEY_OVERRIDES = {'recent_activity_days': 'lab_autopromote_requires_recent_activity_days'}


def _store_key(name: str) -> str:
    return _STORE_KEY_OVERRIDES.get(name, f'{_STORE_KEY_PREFIX}{name}')


def _lookup(payload: Mapping[str, Any], name: str) -> Any:
    if name in payload:
        return payload[name]
    return payload.get(_store_key(name))


@dataclass(frozen=True)
class PromotionRules:
    """Thresholds one promotion transition is evaluated against.

    Defaults follow the TRIALS graduation thresholds plus the activity and
    backtest-coverage requirements of the auto-promotion scheduler.
    """

    enabled: bool = True
    min_trades: int = 50
    min_days: int = 3
    window_days: int = 30
    min_profit_factor: float = 1.2
    min_sharpe: float = 0.5
    max_drawdown_pct: float = 20
    min_expectancy: float = 10
    health_required: HealthRequirement = HealthRequirement.WARN_OK
    recent_activity_days: int = 7
    requires_backtest_coverage: bool = True
    backtest_max_age_days: int = 7
    manual_override_allowed: bool = True

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, base: 'PromotionRules | None' = None) -> 'PromotionRules':
        """Read short names or ``lab_autopromote_*`` store keys; absent keys keep ``base``."""

        defaults = base or cls()
        raw_health = _lookup(payload, 'health_required')
        health_required = defaults.health_required
        if raw_health is not None:
            parsed = coerce_enum(HealthRequirement, raw_health)
            if isinstance(parsed, HealthRequirement):
                health_required = parsed
            else:
                raise ValueError(f'health_required must be OK_ONLY or WARN_OK, got {raw_health!r}')

        return cls(
            enabled=bool_or_default(_lookup(payload, 'enabled'), defaults.enabled),
            min_trades=int_or_default(_lookup(payload, 'min_trades'), defaults.min_trades),
            min_days=int_or_default(_lookup(payload, 'min_days'), defaults.min_days),
            window_days=int_or_default(_lookup(payload, 'window_days'), defaults.window_days),
            min_profit_factor=float_or_default(_lookup(payload, 'min_profit_factor'), defaults.min_profit_factor),
            min_sharpe=float_or_default(_lookup(payload, 'min_sharpe'), defaults.min_sharpe),
            max_drawdown_pct=float_or_default(_lookup(payload, 'max_drawdown_pct'), defaults.max_drawdown_pct),
            min_expectancy=float_or_default(_lookup(payload, 'min_expectancy'), defaults.min_expectancy),
            health_required=health_required,
            recent_activity_days=int_or_default(
                _lookup(payload, 'recent_activity_days'), defaults.recent_activity_days
            ),
            requires_backtest_coverage=bool_or_default(
                _lookup(payload, 'requires_backtest_coverage'), defaults.requires_backtest_coverage
            ),
            backtest_max_age_days=int_or_default(
                _lookup(payload, 'backtest_max_age_days'), defaults.backtest_max_age_days
            ),
            manual_override_allowed=bool_or_default(
                _lookup(payload, 'manual_override_allowed'), defaults.manual_override_allowed
            ),
        )

    @classmethod
    def from_thresholds(
        cls, thresholds: 'GraduationThresholds', *, base: 'PromotionRules | None' = None
    ) -> 'PromotionRules':
        """Derive rules for a stage from its graduation thresholds."""

        defaults = base or cls()
        return replace(
            defaults,
            min_trades=thresholds.min_trades,
            min_days=thresholds.min_days if thresholds.min_days is not None else defaults.min_days,
            min_profit_factor=thresholds.min_profit_factor,
            min_sharpe=thresholds.min_sharpe,
            max_drawdown_pct=thresholds.max_drawdown_pct,
            min_expectancy=thresholds.min_expectancy,
        )

    def to_payload(self) -> dict[str, object]:
        return {
            'enabled': self.enabled,
            'min_trades': self.min_trades,
            'min_days': self.min_days,
            'window_days': self.window_days,
            'min_profit_factor': self.min_profit_factor,
            'min_sharpe': self.min_sharpe,
            'max_drawdown_pct': self.max_drawdown_pct,
            'min_expectancy': self.min_expectancy,
            'health_required': str(self.health_required),
            'recent_activity_days': self.recent_activity_days,
            'requires_backtest_coverage': self.requires_backtest_coverage,
            'backtest_max_age_days': self.backtest_max_age_days,
            'manual_override_allowed': self.manual_override_allowed,
        }


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


@dataclass(frozen=True)
class MetricsRollup:
    trades: int
    win_rate: float | None = None
    sharpe: float | None = None
    profit_factor: float | None = None
    expectancy: float | None = None
    max_dd_pct: float | None = None
    active_days: int = 0
    last_trade_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'MetricsRollup':
        return cls(
            trades=max(int_or_default(payload.get('trades'), 0), 0),
            win_rate=float_or_none(_first_present(payload, 'win_rate', 'winRate')),
            sharpe=float_or_none(payload.get('sharpe')),
            profit_factor=float_or_none(_first_present(payload, 'profit_factor', 'profitFactor')),
            expectancy=float_or_none(payload.get('expectancy')),
            max_dd_pct=float_or_none(_first_present(payload, 'max_dd_pct', 'maxDdPct')),
            active_days=max(int_or_default(_first_present(payload, 'active_days', 'activeDays'), 0), 0),
            last_trade_at=parse_datetime(_first_present(payload, 'last_trade_at', 'lastTradeAt')),
        )

    def to_payload(self) -> dict[str, object]:
        return {
            'trades': self.trades,
            'win_rate': self.win_rate,
            'sharpe': self.sharpe,
            'profit_factor': self.profit_factor,
            'expectancy': self.expectancy,
            'max_dd_pct': self.max_dd_pct,
            'active_days': self.active_days,
            'last_trade_at': isoformat_or_none(self.last_trade_at),
        }


def _health_reasons(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(str(item) for item in value)


@dataclass(frozen=True)
class PromotionInput:
    bot_id: str
    current_stage: Stage | str
    health_state: HealthState | str
    health_reasons: tuple[str, ...] = ()
    rollup: MetricsRollup | None = None
    last_backtest_completed_at: datetime | None = None
    last_backtest_status: str | None = None

    @property
    def backtest_completed(self) -> bool:
        return (self.last_backtest_status or '').lower() == 'completed'

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'PromotionInput':
        raw_rollup = _first_present(payload, 'rollup', 'rollup30')
        status = payload.get('last_backtest_status')
        return cls(
            bot_id=str(payload.get('bot_id', '')),
            current_stage=coerce_enum(Stage, payload.get('current_stage')),
            health_state=coerce_enum(HealthState, payload.get('health_state') or HealthState.OK),
            health_reasons=_health_reasons(payload.get('health_reasons')),
            rollup=MetricsRollup.from_payload(raw_rollup) if isinstance(raw_rollup, Mapping) else None,
            last_backtest_completed_at=parse_datetime(payload.get('last_backtest_completed_at')),
            last_backtest_status=str(status) if status is not None else None,
        )


__all__ = [
    'HealthRequirement',
    'MetricsRollup',
    'PromotionDecision',
    'PromotionInput',
    'PromotionRules',
]
