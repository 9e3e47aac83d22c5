"""Input snapshots and synthesized output for canonical bot state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from ..values import (
    bool_or_default,
    float_or_none,
    int_or_default,
    isoformat_or_none,
    parse_datetime,
)
from .types import (
    BlockerCode,
    EvolutionState,
    HealthState,
    JobState,
    Mode,
    PauseOrigin,
    PauseScope,
    PausedBy,
    RunnerState,
    Severity,
    Stage,
    coerce_enum,
)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _optional_enum(enum_cls: Any, value: Any) -> Any:
    if value is None or value == '':
        return None
    return coerce_enum(enum_cls, value)


def _empty_str_map() -> dict[str, str]:
    return {}


@dataclass(frozen=True)
class BotContext:
    bot_id: str
    stage: Stage | str
    mode: Mode | str
    is_trading_enabled: bool
    health_score: float | None = None
    health_state: HealthState | str | None = None
    health_reason: str | None = None
    evolution_mode: str | None = None
    kill_state: str | None = None
    kill_reason_code: str | None = None
    kill_until: datetime | None = None
    frozen_reason_code: str | None = None
    promoted_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'BotContext':
        return cls(
            bot_id=str(payload.get('bot_id', '')),
            stage=coerce_enum(Stage, payload.get('stage')),
            mode=coerce_enum(Mode, payload.get('mode')),
            is_trading_enabled=bool_or_default(payload.get('is_trading_enabled'), False),
            health_score=float_or_none(payload.get('health_score')),
            health_state=_optional_enum(HealthState, payload.get('health_state')),
            health_reason=_optional_str(payload.get('health_reason')),
            evolution_mode=_optional_str(payload.get('evolution_mode')),
            kill_state=_optional_str(payload.get('kill_state')),
            kill_reason_code=_optional_str(payload.get('kill_reason_code')),
            kill_until=parse_datetime(payload.get('kill_until')),
            frozen_reason_code=_optional_str(payload.get('frozen_reason_code')),
            promoted_at=parse_datetime(payload.get('promoted_at')),
        )


@dataclass(frozen=True)
class InstanceContext:
    """The single live runner record for a bot, as last written by the runner."""

    id: str | None = None
    status: str | None = None
    activity_state: str | None = None
    last_heartbeat_at: datetime | None = None
    is_primary_runner: bool = True
    restart_count: int = 0
    restart_count_hour: int = 0
    next_restart_allowed_at: datetime | None = None
    circuit_breaker_open: bool = False
    circuit_breaker_until: datetime | None = None
    consecutive_tick_failures: int = 0
    pause_origin: PauseOrigin | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'InstanceContext':
        status = _optional_str(payload.get('status'))
        return cls(
            id=_optional_str(payload.get('id')),
            status=status.lower() if status else None,
            activity_state=_optional_str(payload.get('activity_state')),
            last_heartbeat_at=parse_datetime(payload.get('last_heartbeat_at')),
            is_primary_runner=bool_or_default(payload.get('is_primary_runner'), True),
            restart_count=int_or_default(payload.get('restart_count'), 0),
            restart_count_hour=int_or_default(payload.get('restart_count_hour'), 0),
            next_restart_allowed_at=parse_datetime(payload.get('next_restart_allowed_at')),
            circuit_breaker_open=bool_or_default(payload.get('circuit_breaker_open'), False),
            circuit_breaker_until=parse_datetime(payload.get('circuit_breaker_until')),
            consecutive_tick_failures=int_or_default(payload.get('consecutive_tick_failures'), 0),
            pause_origin=_optional_enum(PauseOrigin, payload.get('pause_origin')),
        )


@dataclass(frozen=True)
class JobsSummary:
    backtest_queued: int = 0
    backtest_running: int = 0
    evaluate_queued: int = 0
    evaluate_running: int = 0
    evolve_queued: int = 0
    evolve_running: int = 0
    runner_start_queued: int = 0
    runner_restart_queued: int = 0
    priority_compute_queued: int = 0
    total_queued: int = 0
    total_running: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'JobsSummary':
        counts = {name: max(int_or_default(payload.get(name), 0), 0) for name in cls.__dataclass_fields__}
        return cls(**counts)

    def to_payload(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class ImprovementContext:
    status: str | None = None
    why_not_promoted: Mapping[str, str] = field(default_factory=_empty_str_map)
    consecutive_failures: int = 0
    next_action: str | None = None
    pause_scope: PauseScope | None = None
    paused_by: PausedBy | None = None
    next_retry_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'ImprovementContext':
        raw_gates = payload.get('why_not_promoted') or {}
        why_not_promoted = (
            {str(gate): str(value) for gate, value in raw_gates.items()} if isinstance(raw_gates, Mapping) else {}
        )
        return cls(
            status=_optional_str(payload.get('status')),
            why_not_promoted=why_not_promoted,
            consecutive_failures=int_or_default(payload.get('consecutive_failures'), 0),
            next_action=_optional_str(payload.get('next_action')),
            pause_scope=_optional_enum(PauseScope, payload.get('pause_scope')),
            paused_by=_optional_enum(PausedBy, payload.get('paused_by')),
            next_retry_at=parse_datetime(payload.get('next_retry_at')),
        )


@dataclass(frozen=True)
class Blocker:
    code: BlockerCode
    severity: Severity
    message: str
    suggested_action: str
    auto_healable: bool
    evidence: Mapping[str, Any] | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            'code': str(self.code),
            'severity': str(self.severity),
            'message': self.message,
            'suggested_action': self.suggested_action,
            'auto_healable': self.auto_healable,
        }
        if self.evidence is not None:
            payload['evidence'] = {key: _jsonable(value) for key, value in self.evidence.items()}
        return payload


@dataclass(frozen=True)
class StateContext:
    """Raw facts the state was derived from, kept for debugging views."""

    stage: str
    mode: str
    has_runner: bool
    runner_status: str | None
    active_jobs: int
    kill_state: str | None = None
    kill_reason_code: str | None = None
    kill_until: datetime | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            'stage': self.stage,
            'mode': self.mode,
            'has_runner': self.has_runner,
            'runner_status': self.runner_status,
            'active_jobs': self.active_jobs,
            'kill_state': self.kill_state,
            'kill_reason_code': self.kill_reason_code,
            'kill_until': isoformat_or_none(self.kill_until),
        }


@dataclass(frozen=True)
class CanonicalBotState:
    runner_state: RunnerState
    job_state: JobState
    evolution_state: EvolutionState
    health_state: HealthState
    health_score: float
    runner_reason: str | None
    job_reason: str | None
    evolution_reason: str | None
    health_reason: str | None
    blockers: tuple[Blocker, ...]
    why_not_trading: tuple[str, ...]
    why_not_promoted: tuple[str, ...]
    is_auto_healable: bool
    suggested_actions: tuple[str, ...]
    last_heartbeat_at: datetime | None
    next_action_at: datetime | None
    promoted_at: datetime | None
    context: StateContext

    def has_blocker(self, code: BlockerCode | str) -> bool:
        return any(blocker.code == code for blocker in self.blockers)

    def blockers_with_severity(self, severity: Severity) -> tuple[Blocker, ...]:
        return tuple(blocker for blocker in self.blockers if blocker.severity == severity)

    def to_payload(self) -> dict[str, object]:
        return {
            'runner_state': str(self.runner_state),
            'job_state': str(self.job_state),
            'evolution_state': str(self.evolution_state),
            'health_state': str(self.health_state),
            'health_score': self.health_score,
            'runner_reason': self.runner_reason,
            'job_reason': self.job_reason,
            'evolution_reason': self.evolution_reason,
            'health_reason': self.health_reason,
            'blockers': [blocker.to_payload() for blocker in self.blockers],
            'why_not_trading': list(self.why_not_trading),
            'why_not_promoted': list(self.why_not_promoted),
            'is_auto_healable': self.is_auto_healable,
            'suggested_actions': [str(action) for action in self.suggested_actions],
            'last_heartbeat_at': isoformat_or_none(self.last_heartbeat_at),
            'next_action_at': isoformat_or_none(self.next_action_at),
            'promoted_at': isoformat_or_none(self.promoted_at),
            'context': self.context.to_payload(),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


__all__ = [
    'Blocker',
    'BotContext',
    'CanonicalBotState',
    'ImprovementContext',
    'InstanceContext',
    'JobsSummary',
    'StateContext',
]
