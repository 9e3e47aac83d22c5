"""Lifecycle policy tables injected into every state and heal evaluation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from ..documents import load_document
from ..values import float_or_default, int_or_default
from .types import Mode, Stage, coerce_enum

if TYPE_CHECKING:
    from ..config import Settings


def _default_allowed_modes() -> Mapping[str, tuple[str, ...]]:
    return MappingProxyType(
        {
            Stage.TRIALS: (Mode.BACKTEST_ONLY, Mode.SIM_LIVE),
            Stage.PAPER: (Mode.SIM_LIVE,),
            Stage.SHADOW: (Mode.SIM_LIVE, Mode.SHADOW),
            Stage.CANARY: (Mode.LIVE,),
            Stage.LIVE: (Mode.LIVE,),
        }
    )


def _default_runner_required_stages() -> frozenset[str]:
    return frozenset({Stage.PAPER, Stage.SHADOW, Stage.CANARY, Stage.LIVE})


def _default_pre_runner_stages() -> frozenset[str]:
    return frozenset({Stage.TRIALS})


def _default_system_pause_markers() -> tuple[str, ...]:
    return ('CONSECUTIVE_FAILURES', 'RUNNER_ERROR')


@dataclass(frozen=True)
class LifecyclePolicy:
    """Thresholds and stage tables for canonical state synthesis."""

    allowed_modes: Mapping[str, tuple[str, ...]] = field(default_factory=_default_allowed_modes)
    runner_required_stages: frozenset[str] = field(default_factory=_default_runner_required_stages)
    pre_runner_stages: frozenset[str] = field(default_factory=_default_pre_runner_stages)
    fallback_mode: str = Mode.BACKTEST_ONLY

    heartbeat_stale_ms: int = 120_000
    heartbeat_warning_ms: int = 60_000

    health_degraded_threshold: float = 40
    health_warn_threshold: float = 60
    promotion_min_health_score: float = 60
    default_health_score: float = 100

    restart_backoff_base_ms: int = 30_000
    restart_backoff_max_ms: int = 900_000
    restart_backoff_jitter: float = 0.2

    system_pause_reason_markers: tuple[str, ...] = field(default_factory=_default_system_pause_markers)
    system_pause_tick_failures: int = 5

    promotion_grace_period_ms: int = 180_000
    auto_heal_attempts_threshold: int = 3

    def allowed_modes_for(self, stage: str) -> tuple[str, ...]:
        return tuple(self.allowed_modes.get(stage, ()))

    def requires_runner(self, stage: str) -> bool:
        return stage in self.runner_required_stages

    def is_pre_runner(self, stage: str) -> bool:
        return stage in self.pre_runner_stages

    def repair_mode_for(self, stage: str) -> str:
        allowed = self.allowed_modes_for(stage)
        return allowed[0] if allowed else self.fallback_mode

    @classmethod
    def from_settings(cls, settings: 'Settings') -> 'LifecyclePolicy':
        return cls(
            heartbeat_stale_ms=settings.heartbeat_stale_ms,
            heartbeat_warning_ms=settings.heartbeat_warning_ms,
            health_degraded_threshold=settings.health_degraded_threshold,
            health_warn_threshold=settings.health_warn_threshold,
            restart_backoff_base_ms=settings.restart_backoff_base_ms,
            restart_backoff_max_ms=settings.restart_backoff_max_ms,
            restart_backoff_jitter=settings.restart_backoff_jitter,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, base: 'LifecyclePolicy | None' = None) -> 'LifecyclePolicy':
        """Overlay a policy document on ``base`` (or the built-in tables).

        Keys that are absent keep the base value; explicit zeros are kept.
        """

        defaults = base or cls()
        allowed_modes: Mapping[str, tuple[str, ...]] = defaults.allowed_modes
        raw_modes = payload.get('allowed_modes')
        if isinstance(raw_modes, Mapping):
            allowed_modes = MappingProxyType(
                {
                    coerce_enum(Stage, stage): tuple(
                        coerce_enum(Mode, mode) for mode in _string_items(modes, f'allowed_modes.{stage}')
                    )
                    for stage, modes in raw_modes.items()
                }
            )
        elif raw_modes is not None:
            raise ValueError(f'allowed_modes must be a mapping of stage to modes, got {type(raw_modes).__name__}')
        return cls(
            allowed_modes=allowed_modes,
            runner_required_stages=_stage_set(
                payload.get('runner_required_stages'), defaults.runner_required_stages, 'runner_required_stages'
            ),
            pre_runner_stages=_stage_set(
                payload.get('pre_runner_stages'), defaults.pre_runner_stages, 'pre_runner_stages'
            ),
            fallback_mode=coerce_enum(Mode, payload.get('fallback_mode', defaults.fallback_mode)),
            heartbeat_stale_ms=int_or_default(payload.get('heartbeat_stale_ms'), defaults.heartbeat_stale_ms),
            heartbeat_warning_ms=int_or_default(payload.get('heartbeat_warning_ms'), defaults.heartbeat_warning_ms),
            health_degraded_threshold=float_or_default(
                payload.get('health_degraded_threshold'), defaults.health_degraded_threshold
            ),
            health_warn_threshold=float_or_default(
                payload.get('health_warn_threshold'), defaults.health_warn_threshold
            ),
            promotion_min_health_score=float_or_default(
                payload.get('promotion_min_health_score'), defaults.promotion_min_health_score
            ),
            default_health_score=float_or_default(payload.get('default_health_score'), defaults.default_health_score),
            restart_backoff_base_ms=int_or_default(
                payload.get('restart_backoff_base_ms'), defaults.restart_backoff_base_ms
            ),
            restart_backoff_max_ms=int_or_default(
                payload.get('restart_backoff_max_ms'), defaults.restart_backoff_max_ms
            ),
            restart_backoff_jitter=float_or_default(
                payload.get('restart_backoff_jitter'), defaults.restart_backoff_jitter
            ),
            system_pause_reason_markers=_string_tuple(
                payload.get('system_pause_reason_markers'),
                defaults.system_pause_reason_markers,
                'system_pause_reason_markers',
            ),
            system_pause_tick_failures=int_or_default(
                payload.get('system_pause_tick_failures'), defaults.system_pause_tick_failures
            ),
            promotion_grace_period_ms=int_or_default(
                payload.get('promotion_grace_period_ms'), defaults.promotion_grace_period_ms
            ),
            auto_heal_attempts_threshold=int_or_default(
                payload.get('auto_heal_attempts_threshold'), defaults.auto_heal_attempts_threshold
            ),
        )

    @classmethod
    def from_path(cls, path: Path, *, base: 'LifecyclePolicy | None' = None) -> 'LifecyclePolicy':
        return cls.from_payload(load_document(path), base=base)

    def to_payload(self) -> dict[str, object]:
        return {
            'allowed_modes': {str(stage): [str(mode) for mode in modes] for stage, modes in self.allowed_modes.items()},
            'runner_required_stages': sorted(str(stage) for stage in self.runner_required_stages),
            'pre_runner_stages': sorted(str(stage) for stage in self.pre_runner_stages),
            'fallback_mode': str(self.fallback_mode),
            'heartbeat_stale_ms': self.heartbeat_stale_ms,
            'heartbeat_warning_ms': self.heartbeat_warning_ms,
            'health_degraded_threshold': self.health_degraded_threshold,
            'health_warn_threshold': self.health_warn_threshold,
            'promotion_min_health_score': self.promotion_min_health_score,
            'default_health_score': self.default_health_score,
            'restart_backoff_base_ms': self.restart_backoff_base_ms,
            'restart_backoff_max_ms': self.restart_backoff_max_ms,
            'restart_backoff_jitter': self.restart_backoff_jitter,
            'system_pause_reason_markers': list(self.system_pause_reason_markers),
            'system_pause_tick_failures': self.system_pause_tick_failures,
            'promotion_grace_period_ms': self.promotion_grace_period_ms,
            'auto_heal_attempts_threshold': self.auto_heal_attempts_threshold,
        }


def _string_items(value: Any, name: str) -> list[str]:
    """Read a comma-separated string or a list of strings."""

    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value]
    raise ValueError(f'{name} must be a string or a list of strings, got {type(value).__name__}')


def _string_tuple(value: Any, default: tuple[str, ...], name: str) -> tuple[str, ...]:
    if value is None:
        return default
    return tuple(_string_items(value, name))


def _stage_set(value: Any, default: frozenset[str], name: str) -> frozenset[str]:
    if value is None:
        return default
    return frozenset(coerce_enum(Stage, item) for item in _string_items(value, name))


__all__ = ['LifecyclePolicy']
