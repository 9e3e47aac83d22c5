"""Bot lifecycle state synthesis, auto-heal planning and stage transitions."""

from .autoheal import AutoHealAction, JobRequest, StoreUpdate, plan_auto_heal
from .backoff import RestartBackoff, calculate_restart_backoff
from .health import classify_health, display_health_state
from .models import (
    Blocker,
    BotContext,
    CanonicalBotState,
    ImprovementContext,
    InstanceContext,
    JobsSummary,
    StateContext,
)
from .policy import LifecyclePolicy
from .state import assess_pause, evaluate_canonical_state, is_system_pause
from .transitions import StageTransition, next_promotion_stage, validate_stage_transition
from .types import (
    AutoHealActionType,
    BlockerCode,
    EvolutionState,
    HealthState,
    JobState,
    Mode,
    RunnerState,
    Severity,
    Stage,
    SuggestedAction,
)

__all__ = [
    'AutoHealAction',
    'AutoHealActionType',
    'Blocker',
    'BlockerCode',
    'BotContext',
    'CanonicalBotState',
    'EvolutionState',
    'HealthState',
    'ImprovementContext',
    'InstanceContext',
    'JobRequest',
    'JobState',
    'JobsSummary',
    'LifecyclePolicy',
    'Mode',
    'RestartBackoff',
    'RunnerState',
    'Severity',
    'Stage',
    'StageTransition',
    'StateContext',
    'StoreUpdate',
    'SuggestedAction',
    'assess_pause',
    'calculate_restart_backoff',
    'classify_health',
    'display_health_state',
    'evaluate_canonical_state',
    'is_system_pause',
    'next_promotion_stage',
    'plan_auto_heal',
    'validate_stage_transition',
]
