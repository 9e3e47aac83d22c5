"""Stage transition rules for the promotion ladder.

Promotions move one rung at a time along TRIALS -> PAPER -> SHADOW -> CANARY
-> LIVE. Demotions may drop any number of rungs. KILLED is terminal and is
reachable from every stage; emergency demotions may also go straight to
TRIALS. CANARY -> LIVE additionally needs maker-checker approval.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .types import Stage

STAGE_ORDER: tuple[Stage, ...] = (Stage.TRIALS, Stage.PAPER, Stage.SHADOW, Stage.CANARY, Stage.LIVE)

VALID_PROMOTIONS: Mapping[str, tuple[Stage, ...]] = MappingProxyType(
    {
        Stage.TRIALS: (Stage.PAPER,),
        Stage.PAPER: (Stage.SHADOW,),
        Stage.SHADOW: (Stage.CANARY,),
        Stage.CANARY: (Stage.LIVE,),
        Stage.LIVE: (),
        Stage.KILLED: (),
    }
)

VALID_DEMOTIONS: Mapping[str, tuple[Stage, ...]] = MappingProxyType(
    {
        Stage.TRIALS: (),
        Stage.PAPER: (Stage.TRIALS,),
        Stage.SHADOW: (Stage.PAPER, Stage.TRIALS),
        Stage.CANARY: (Stage.SHADOW, Stage.PAPER, Stage.TRIALS),
        Stage.LIVE: (Stage.CANARY, Stage.SHADOW, Stage.PAPER, Stage.TRIALS),
        Stage.KILLED: (),
    }
)

EMERGENCY_DEMOTIONS: frozenset[Stage] = frozenset({Stage.TRIALS, Stage.KILLED})

GATE_REQUIREMENTS: Mapping[tuple[str, str], tuple[str, ...]] = MappingProxyType(
    {
        (Stage.TRIALS, Stage.PAPER): (
            'rolling_metrics_consistency: 3 consecutive backtest sessions meeting thresholds',
            'sharpe_ratio ≥ 1.0',
            'max_drawdown ≤ 15%',
            'profit_factor ≥ 1.3',
            'win_rate ≥ 40%',
        ),
        (Stage.PAPER, Stage.SHADOW): (
            'Minimum 24 hours paper trading',
            'Positive cumulative P&L',
            'No excessive drawdown events',
            'Signal consistency verified',
        ),
        (Stage.SHADOW, Stage.CANARY): (
            'Shadow validation period complete (48 hours)',
            'Shadow vs Paper P&L correlation > 0.8',
            'No execution discrepancies detected',
        ),
        (Stage.CANARY, Stage.LIVE): (
            'Maker-checker governance approval',
            'Risk limits verified',
            'Account funding confirmed',
            'Broker connection validated',
        ),
    }
)


def _empty_requirements() -> tuple[str, ...]:
    return ()


@dataclass(frozen=True)
class StageTransition:
    allowed: bool
    reason: str | None = None
    requires_approval: bool = False
    gate_requirements: tuple[str, ...] = field(default_factory=_empty_requirements)

    def to_payload(self) -> dict[str, object]:
        return {
            'allowed': self.allowed,
            'reason': self.reason,
            'requires_approval': self.requires_approval,
            'gate_requirements': list(self.gate_requirements),
        }


def stage_index(stage: str) -> int:
    """Position on the promotion ladder, or -1 for KILLED and unknown stages."""

    try:
        return STAGE_ORDER.index(stage)  # type: ignore[arg-type]
    except ValueError:
        return -1


def is_promotion(from_stage: str, to_stage: str) -> bool:
    return stage_index(to_stage) > stage_index(from_stage)


def is_demotion(from_stage: str, to_stage: str) -> bool:
    return stage_index(to_stage) < stage_index(from_stage)


def is_terminal_stage(stage: str) -> bool:
    return stage == Stage.KILLED


def requires_governance_approval(from_stage: str, to_stage: str) -> bool:
    return from_stage == Stage.CANARY and to_stage == Stage.LIVE


def promotion_requirements(from_stage: str, to_stage: str) -> tuple[str, ...]:
    return GATE_REQUIREMENTS.get((from_stage, to_stage), ())


def next_promotion_stage(current: str) -> Stage | None:
    promotions = VALID_PROMOTIONS.get(current, ())
    return promotions[0] if promotions else None


def validate_stage_transition(
    from_stage: str,
    to_stage: str,
    *,
    is_emergency: bool = False,
    has_governance_approval: bool = False,
) -> StageTransition:
    if from_stage == to_stage:
        return StageTransition(allowed=True, reason='Same stage (no-op)')

    if is_terminal_stage(from_stage):
        return StageTransition(allowed=False, reason='KILLED is a terminal state - bot cannot be reactivated')

    if to_stage == Stage.KILLED:
        return StageTransition(allowed=True, reason='Emergency kill - bot permanently deactivated')

    if is_emergency and to_stage in EMERGENCY_DEMOTIONS:
        return StageTransition(
            allowed=True,
            reason=f'Emergency demotion to {to_stage} (blown account or critical failure)',
        )

    if is_promotion(from_stage, to_stage):
        valid = VALID_PROMOTIONS.get(from_stage, ())
        if to_stage not in valid:
            if stage_index(to_stage) - stage_index(from_stage) > 1:
                # An unknown source stage sits at -1, so the path starts from TRIALS.
                path = STAGE_ORDER[max(stage_index(from_stage), 0) : stage_index(to_stage) + 1]
                return StageTransition(
                    allowed=False,
                    reason=(
                        f'Cannot skip stages: {from_stage} → {to_stage}. '
                        f'Must promote through: {" → ".join(str(stage) for stage in path)}'
                    ),
                )
            return StageTransition(
                allowed=False,
                reason=(
                    f'Invalid promotion: {from_stage} → {to_stage}. '
                    f'Valid promotions: [{", ".join(str(stage) for stage in valid)}]'
                ),
            )

        requirements = promotion_requirements(from_stage, to_stage)
        if requires_governance_approval(from_stage, to_stage) and not has_governance_approval:
            return StageTransition(
                allowed=False,
                reason='CANARY→LIVE requires maker-checker governance approval',
                requires_approval=True,
                gate_requirements=requirements,
            )
        return StageTransition(allowed=True, gate_requirements=requirements)

    if is_demotion(from_stage, to_stage):
        valid = VALID_DEMOTIONS.get(from_stage, ())
        if to_stage not in valid:
            return StageTransition(
                allowed=False,
                reason=(
                    f'Invalid demotion: {from_stage} → {to_stage}. '
                    f'Valid demotions: [{", ".join(str(stage) for stage in valid)}]'
                ),
            )
        return StageTransition(allowed=True)

    return StageTransition(allowed=False, reason=f'Unknown transition: {from_stage} → {to_stage}')


__all__ = [
    'EMERGENCY_DEMOTIONS',
    'GATE_REQUIREMENTS',
    'STAGE_ORDER',
    'StageTransition',
    'VALID_DEMOTIONS',
    'VALID_PROMOTIONS',
    'is_demotion',
    'is_promotion',
    'is_terminal_stage',
    'next_promotion_stage',
    'promotion_requirements',
    'requires_governance_approval',
    'stage_index',
    'validate_stage_transition',
]
