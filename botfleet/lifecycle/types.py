"""Closed enumerations for bot lifecycle state.

Values are persisted and compared by external systems, so every member's
string value is part of the wire contract and must not change.
"""

from __future__ import annotations

from enum import Enum
from typing import TypeVar


class StringEnum(str, Enum):
    def __str__(self) -> str:
        return self.value

    def __format__(self, format_spec: str) -> str:
        return format(self.value, format_spec)


class Stage(StringEnum):
    TRIALS = 'TRIALS'
    PAPER = 'PAPER'
    SHADOW = 'SHADOW'
    CANARY = 'CANARY'
    LIVE = 'LIVE'
    KILLED = 'KILLED'


class Mode(StringEnum):
    BACKTEST_ONLY = 'BACKTEST_ONLY'
    SIM_LIVE = 'SIM_LIVE'
    SHADOW = 'SHADOW'
    LIVE = 'LIVE'


class RunnerState(StringEnum):
    SCANNING = 'SCANNING'
    TRADING = 'TRADING'
    RUNNING = 'RUNNING'
    STALLED = 'STALLED'
    STALE = 'STALE'
    STOPPED = 'STOPPED'
    PAUSED = 'PAUSED'
    STARTING = 'STARTING'
    RESTARTING = 'RESTARTING'
    ERROR = 'ERROR'
    BLOCKED = 'BLOCKED'
    REQUIRED = 'REQUIRED'
    CIRCUIT_BREAK = 'CIRCUIT_BREAK'
    UNKNOWN = 'UNKNOWN'
    NO_RUNNER = 'NO_RUNNER'


class JobState(StringEnum):
    IDLE = 'IDLE'
    BACKTEST_RUNNING = 'BACKTEST_RUNNING'
    BACKTEST_QUEUED = 'BACKTEST_QUEUED'
    EVOLVING = 'EVOLVING'
    EVALUATING = 'EVALUATING'
    QUEUED = 'QUEUED'
    NEEDS_BACKTEST = 'NEEDS_BACKTEST'
    UNKNOWN = 'UNKNOWN'


class EvolutionState(StringEnum):
    IDLE = 'IDLE'
    EVOLVING = 'EVOLVING'
    TOURNAMENT_RUNNING = 'TOURNAMENT_RUNNING'
    AWAITING_BACKTEST = 'AWAITING_BACKTEST'
    MUTATION_PENDING = 'MUTATION_PENDING'
    COOLDOWN = 'COOLDOWN'
    UNKNOWN = 'UNKNOWN'


class HealthState(StringEnum):
    OK = 'OK'
    WARN = 'WARN'
    DEGRADED = 'DEGRADED'
    # Only ever supplied by upstream records; never produced by classification.
    FROZEN = 'FROZEN'


class DisplayHealthState(StringEnum):
    OK = 'OK'
    WARN = 'WARN'
    DEGRADED = 'DEGRADED'
    BLOCKED = 'BLOCKED'
    STARTING = 'STARTING'
    HEALING = 'HEALING'


class Severity(StringEnum):
    CRITICAL = 'CRITICAL'
    WARNING = 'WARNING'
    INFO = 'INFO'


class BlockerCode(StringEnum):
    CIRCUIT_BREAKER_OPEN = 'CIRCUIT_BREAKER_OPEN'
    RUNNER_AUTO_PAUSED = 'RUNNER_AUTO_PAUSED'
    RUNNER_ERROR = 'RUNNER_ERROR'
    RUNNER_STALLED = 'RUNNER_STALLED'
    RUNNER_HEARTBEAT_WARNING = 'RUNNER_HEARTBEAT_WARNING'
    NO_PRIMARY_RUNNER = 'NO_PRIMARY_RUNNER'
    MODE_STAGE_MISMATCH = 'MODE_STAGE_MISMATCH'
    TRIALS_RUNNER_ACTIVE = 'TRIALS_RUNNER_ACTIVE'
    TRADING_DISABLED_RUNNER_ACTIVE = 'TRADING_DISABLED_RUNNER_ACTIVE'
    EVOLUTION_PAUSE_INVALID = 'EVOLUTION_PAUSE_INVALID'


class SuggestedAction(StringEnum):
    START_RUNNER = 'START_RUNNER'
    FIX_MODE = 'FIX_MODE'
    STOP_RUNNER = 'STOP_RUNNER'
    CLEAR_PAUSE = 'CLEAR_PAUSE'


class PauseOrigin(StringEnum):
    OPERATOR = 'OPERATOR'
    SYSTEM = 'SYSTEM'


class PauseScope(StringEnum):
    EVOLUTION_ONLY = 'EVOLUTION_ONLY'
    ALL = 'ALL'


class PausedBy(StringEnum):
    AUTO = 'AUTO'
    USER = 'USER'


class AutoHealActionType(StringEnum):
    QUEUE_RUNNER_RESTART = 'QUEUE_RUNNER_RESTART'
    QUEUE_RUNNER_START = 'QUEUE_RUNNER_START'
    FIX_MODE = 'FIX_MODE'
    STOP_RUNNER = 'STOP_RUNNER'
    CLEAR_PAUSE = 'CLEAR_PAUSE'


class JobType(StringEnum):
    RUNNER_START = 'RUNNER_START'
    RUNNER_RESTART = 'RUNNER_RESTART'


E = TypeVar('E', bound=StringEnum)


def coerce_enum(enum_cls: type[E], value: object) -> E | str:
    """Return the enum member for ``value`` or the raw string when unknown.

    Unknown stage and mode strings must survive evaluation unchanged so they
    can be reported as blockers rather than rejected.
    """

    if isinstance(value, enum_cls):
        return value
    text = str(value).strip() if value is not None else ''
    try:
        return enum_cls(text)
    except ValueError:
        return text


__all__ = [
    'AutoHealActionType',
    'BlockerCode',
    'DisplayHealthState',
    'EvolutionState',
    'HealthState',
    'JobState',
    'JobType',
    'Mode',
    'PauseOrigin',
    'PauseScope',
    'PausedBy',
    'RunnerState',
    'Severity',
    'Stage',
    'StringEnum',
    'SuggestedAction',
    'coerce_enum',
]
