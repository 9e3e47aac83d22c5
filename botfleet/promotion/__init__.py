"""Promotion gates, progress scoring and graduation readiness."""

from .engine import PromotionResult, evaluate_promotion, evaluate_stage_promotion, evaluate_trials_to_paper
from .graduation import (
    GraduationBucket,
    GraduationChecklist,
    GraduationMetrics,
    GraduationStatus,
    GraduationThresholds,
    check_graduation_checklist,
    compute_graduation_status,
    thresholds_for_stage,
)
from .progress import GateResult, PromotionProgress, compute_promotion_progress, missing_gates
from .rules import HealthRequirement, MetricsRollup, PromotionDecision, PromotionInput, PromotionRules

__all__ = [
    'GateResult',
    'GraduationBucket',
    'GraduationChecklist',
    'GraduationMetrics',
    'GraduationStatus',
    'GraduationThresholds',
    'HealthRequirement',
    'MetricsRollup',
    'PromotionDecision',
    'PromotionInput',
    'PromotionProgress',
    'PromotionResult',
    'PromotionRules',
    'check_graduation_checklist',
    'compute_graduation_status',
    'compute_promotion_progress',
    'evaluate_promotion',
    'evaluate_stage_promotion',
    'evaluate_trials_to_paper',
    'missing_gates',
    'thresholds_for_stage',
]
