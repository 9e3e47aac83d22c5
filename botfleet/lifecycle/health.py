"""Health classification from score and blocker severities."""

from __future__ import annotations

from datetime import datetime

from ..values import elapsed_ms, resolve_now
from .policy import LifecyclePolicy
from .types import DisplayHealthState, HealthState


def classify_health(
    score: float,
    has_critical_blockers: bool,
    has_warning_blockers: bool,
    *,
    policy: LifecyclePolicy | None = None,
) -> HealthState:
    """Map a 0-100 score plus blocker severities onto OK/WARN/DEGRADED."""

    policy = policy or LifecyclePolicy()
    if has_critical_blockers or score < policy.health_degraded_threshold:
        return HealthState.DEGRADED
    if has_warning_blockers or score < policy.health_warn_threshold:
        return HealthState.WARN
    return HealthState.OK


def display_health_state(
    health_state: HealthState | str,
    health_score: float,
    has_critical_blockers: bool,
    *,
    promoted_at: datetime | None = None,
    is_healing: bool = False,
    auto_heal_attempts: int = 0,
    policy: LifecyclePolicy | None = None,
    now: datetime | None = None,
) -> DisplayHealthState:
    """Translate a stored health state into the state shown to operators.

    A freshly promoted bot gets a grace period in which critical problems
    read as STARTING; a degraded bot reads as HEALING until the auto-heal
    attempt budget is spent; a high score held down only by critical blockers
    reads as BLOCKED.
    """

    policy = policy or LifecyclePolicy()
    current = resolve_now(now)

    if promoted_at is not None and elapsed_ms(promoted_at, current) < policy.promotion_grace_period_ms:
        if health_state == HealthState.DEGRADED or has_critical_blockers:
            return DisplayHealthState.STARTING

    if is_healing:
        return DisplayHealthState.HEALING

    if health_state == HealthState.DEGRADED and auto_heal_attempts < policy.auto_heal_attempts_threshold:
        return DisplayHealthState.HEALING

    if (
        health_state == HealthState.DEGRADED
        and health_score >= policy.health_warn_threshold
        and has_critical_blockers
    ):
        return DisplayHealthState.BLOCKED

    if health_state == HealthState.OK:
        return DisplayHealthState.OK
    if health_state == HealthState.WARN:
        return DisplayHealthState.WARN
    return DisplayHealthState.DEGRADED


__all__ = ['classify_health', 'display_health_state']
