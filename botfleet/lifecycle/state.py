"""Canonical bot state synthesis.

``evaluate_canonical_state`` reconciles the bot record, its runner instance,
job queue counters and the improvement record into one consistent state with
typed blockers. Each sub-state is an ordered first-match-wins cascade; the
invariant checks run last and only append.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..values import elapsed_ms, resolve_now, round_half_up
from .health import classify_health
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
from .rules import Rule, first_match
from .types import (
    BlockerCode,
    EvolutionState,
    HealthState,
    JobState,
    PauseOrigin,
    PausedBy,
    RunnerState,
    Severity,
    SuggestedAction,
)

logger = logging.getLogger(__name__)

_PAUSED_IMPROVEMENT_STATUSES = frozenset({'PAUSED', 'FROZEN'})


@dataclass(frozen=True)
class PauseAssessment:
    valid: bool
    reason: str


def assess_pause(improvement: ImprovementContext | None, *, now: datetime | None = None) -> PauseAssessment:
    """Decide whether a paused or frozen improvement record is legitimate.

    A pause is legitimate when a user requested it or a retry cooldown is
    still running; anything else should be cleared by auto-heal.
    """

    if improvement is None:
        return PauseAssessment(valid=False, reason='No improvement state')
    if (improvement.status or '') not in _PAUSED_IMPROVEMENT_STATUSES:
        return PauseAssessment(valid=True, reason='Not paused')
    if improvement.paused_by == PausedBy.USER:
        return PauseAssessment(valid=True, reason='Paused by user')

    current = resolve_now(now)
    if improvement.next_retry_at is not None and elapsed_ms(current, improvement.next_retry_at) > 0:
        remaining_s = round_half_up(elapsed_ms(current, improvement.next_retry_at) / 1000)
        return PauseAssessment(valid=True, reason=f'Cooldown ({remaining_s}s remaining)')
    return PauseAssessment(valid=False, reason='Invalid pause state - should auto-fix')


def is_system_pause(bot: BotContext, instance: InstanceContext, *, policy: LifecyclePolicy) -> bool:
    """Return True when a paused runner was paused by the system, not an operator.

    An explicit ``pause_origin`` decides when the runner record carries one.
    Older records fall back to scanning the free-text health reason and the
    tick failure counter, which can misclassify operator pauses on bots that
    happen to have failed recently.
    """

    if instance.pause_origin is not None:
        return instance.pause_origin == PauseOrigin.SYSTEM
    health_reason = bot.health_reason or ''
    if any(marker in health_reason for marker in policy.system_pause_reason_markers):
        return True
    return instance.consecutive_tick_failures >= policy.system_pause_tick_failures


@dataclass(frozen=True)
class _RunnerFacts:
    bot: BotContext
    instance: InstanceContext | None
    heartbeat_age_ms: float | None
    policy: LifecyclePolicy


@dataclass(frozen=True)
class _RunnerOutcome:
    state: RunnerState
    reason: str | None
    blockers: tuple[Blocker, ...] = ()
    why_not_trading: tuple[str, ...] = ()


def _has_status(status: str) -> Any:
    def applies(facts: _RunnerFacts) -> bool:
        return facts.instance is not None and facts.instance.status == status

    return applies


def _seconds(age_ms: float) -> int:
    return round_half_up(age_ms / 1000)


def _activity_state(instance: InstanceContext) -> RunnerState:
    return RunnerState.TRADING if instance.activity_state == 'TRADING' else RunnerState.SCANNING


def _pre_runner(facts: _RunnerFacts) -> _RunnerOutcome:
    return _RunnerOutcome(RunnerState.NO_RUNNER, f'{facts.bot.stage} bots do not use runners')


def _circuit_breaker(facts: _RunnerFacts) -> _RunnerOutcome:
    instance = facts.instance
    assert instance is not None
    until = instance.circuit_breaker_until.isoformat() if instance.circuit_breaker_until else None
    return _RunnerOutcome(
        RunnerState.CIRCUIT_BREAK,
        f'Circuit breaker open until {until}',
        blockers=(
            Blocker(
                code=BlockerCode.CIRCUIT_BREAKER_OPEN,
                severity=Severity.CRITICAL,
                message='Too many restarts - circuit breaker engaged',
                suggested_action='Wait for cooldown or manually reset',
                auto_healable=False,
                evidence={'until': until, 'restarts': instance.restart_count_hour},
            ),
        ),
        why_not_trading=('Circuit breaker open',),
    )


def _paused(facts: _RunnerFacts) -> _RunnerOutcome:
    instance = facts.instance
    assert instance is not None
    if not is_system_pause(facts.bot, instance, policy=facts.policy):
        return _RunnerOutcome(RunnerState.PAUSED, 'User paused', why_not_trading=('Runner paused',))
    return _RunnerOutcome(
        RunnerState.CIRCUIT_BREAK,
        'Auto-paused due to repeated failures',
        blockers=(
            Blocker(
                code=BlockerCode.RUNNER_AUTO_PAUSED,
                severity=Severity.CRITICAL,
                message='Bot auto-paused after repeated failures',
                suggested_action='Check logs and restart manually',
                auto_healable=False,
                evidence={'reason': facts.bot.health_reason or ''},
            ),
        ),
        why_not_trading=('Auto-paused (failures)',),
    )


def _error(facts: _RunnerFacts) -> _RunnerOutcome:
    return _RunnerOutcome(
        RunnerState.ERROR,
        'Runner in error state',
        blockers=(
            Blocker(
                code=BlockerCode.RUNNER_ERROR,
                severity=Severity.CRITICAL,
                message='Runner in error state',
                suggested_action='Check logs and restart runner',
                auto_healable=True,
            ),
        ),
        why_not_trading=('Runner error',),
    )


def _starting(facts: _RunnerFacts) -> _RunnerOutcome:
    return _RunnerOutcome(RunnerState.STARTING, 'Starting up')


def _running(facts: _RunnerFacts) -> _RunnerOutcome:
    instance = facts.instance
    assert instance is not None
    age = facts.heartbeat_age_ms
    policy = facts.policy

    if age is None or age > policy.heartbeat_stale_ms:
        reason = 'No heartbeat' if age is None else f'Heartbeat stale ({_seconds(age)}s)'
        shown_age = '?' if age is None else str(_seconds(age))
        return _RunnerOutcome(
            RunnerState.STALLED,
            reason,
            blockers=(
                Blocker(
                    code=BlockerCode.RUNNER_STALLED,
                    severity=Severity.CRITICAL,
                    message=f'Runner heartbeat stale ({shown_age}s old)',
                    suggested_action='Auto-restart queued',
                    auto_healable=True,
                    evidence={'heartbeat_age_ms': age},
                ),
            ),
            why_not_trading=('Runner stalled',),
        )

    if age > policy.heartbeat_warning_ms:
        return _RunnerOutcome(
            _activity_state(instance),
            f'Heartbeat aging ({_seconds(age)}s)',
            blockers=(
                Blocker(
                    code=BlockerCode.RUNNER_HEARTBEAT_WARNING,
                    severity=Severity.WARNING,
                    message=f'Runner heartbeat aging ({_seconds(age)}s old)',
                    suggested_action='Monitor for stall',
                    auto_healable=False,
                ),
            ),
        )

    return _RunnerOutcome(_activity_state(instance), 'Active')


def _stopped(facts: _RunnerFacts) -> _RunnerOutcome:
    return _RunnerOutcome(RunnerState.STOPPED, 'Stopped')


def _no_runner(facts: _RunnerFacts) -> _RunnerOutcome:
    return _RunnerOutcome(RunnerState.NO_RUNNER, None)


RUNNER_RULES: tuple[Rule[_RunnerFacts, _RunnerOutcome], ...] = (
    Rule(
        'pre_runner_stage',
        lambda facts: facts.instance is not None and facts.policy.is_pre_runner(facts.bot.stage),
        _pre_runner,
    ),
    Rule(
        'circuit_breaker_open',
        lambda facts: facts.instance is not None and facts.instance.circuit_breaker_open,
        _circuit_breaker,
    ),
    Rule('paused', _has_status('paused'), _paused),
    Rule('error', _has_status('error'), _error),
    Rule('starting', _has_status('starting'), _starting),
    Rule('running', _has_status('running'), _running),
    Rule('stopped', _has_status('stopped'), _stopped),
)


def _job_rule(name: str, counter: str, state: JobState, reason: Any) -> Rule[JobsSummary, tuple[JobState, str]]:
    return Rule(
        name,
        lambda jobs: getattr(jobs, counter) > 0,
        lambda jobs: (state, reason(getattr(jobs, counter))),
    )


JOB_RULES: tuple[Rule[JobsSummary, tuple[JobState, str]], ...] = (
    _job_rule('backtest_running', 'backtest_running', JobState.BACKTEST_RUNNING, lambda n: f'{n} backtest(s) running'),
    _job_rule('evolve_running', 'evolve_running', JobState.EVOLVING, lambda n: 'Evolution in progress'),
    _job_rule('evaluate_running', 'evaluate_running', JobState.EVALUATING, lambda n: 'Evaluation in progress'),
    _job_rule('backtest_queued', 'backtest_queued', JobState.BACKTEST_QUEUED, lambda n: f'{n} backtest(s) queued'),
    _job_rule('any_queued', 'total_queued', JobState.QUEUED, lambda n: f'{n} job(s) queued'),
)


@dataclass(frozen=True)
class _EvolutionFacts:
    jobs: JobsSummary
    improvement_status: str | None


def _evolution_rule(
    name: str, applies: Any, state: EvolutionState, reason: str
) -> Rule[_EvolutionFacts, tuple[EvolutionState, str]]:
    return Rule(name, applies, lambda facts: (state, reason))


# Queue counters outrank the improvement record.
EVOLUTION_RULES: tuple[Rule[_EvolutionFacts, tuple[EvolutionState, str]], ...] = (
    _evolution_rule(
        'evolve_running', lambda f: f.jobs.evolve_running > 0, EvolutionState.EVOLVING, 'Mutation in progress'
    ),
    _evolution_rule(
        'evolve_queued', lambda f: f.jobs.evolve_queued > 0, EvolutionState.MUTATION_PENDING, 'Evolution queued'
    ),
    _evolution_rule(
        'record_evolving',
        lambda f: f.improvement_status == 'EVOLVING',
        EvolutionState.TOURNAMENT_RUNNING,
        'Tournament comparing generations',
    ),
    _evolution_rule(
        'record_awaiting_backtest',
        lambda f: f.improvement_status == 'AWAITING_BACKTEST',
        EvolutionState.AWAITING_BACKTEST,
        'Waiting for backtest results',
    ),
    _evolution_rule(
        'record_cooldown',
        lambda f: f.improvement_status == 'COOLDOWN',
        EvolutionState.COOLDOWN,
        'In cooldown after evolution',
    ),
)


@dataclass
class _StateBuilder:
    """Accumulates blockers and reasons for one evaluation call."""

    blockers: list[Blocker] = field(default_factory=list)
    why_not_trading: list[str] = field(default_factory=list)
    why_not_promoted: list[str] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)

    def add_blocker(
        self,
        blocker: Blocker,
        *,
        action: SuggestedAction | None = None,
        why_not_trading: str | None = None,
    ) -> None:
        self.blockers.append(blocker)
        if action is not None:
            self.suggested_actions.append(action)
        if why_not_trading is not None:
            self.why_not_trading.append(why_not_trading)

    def has_severity(self, severity: Severity) -> bool:
        return any(blocker.severity == severity for blocker in self.blockers)

    def first_code(self, severity: Severity) -> str | None:
        for blocker in self.blockers:
            if blocker.severity == severity:
                return str(blocker.code)
        return None

    def build(self, **fields: Any) -> CanonicalBotState:
        return CanonicalBotState(
            blockers=tuple(self.blockers),
            why_not_trading=tuple(self.why_not_trading),
            why_not_promoted=tuple(self.why_not_promoted),
            suggested_actions=tuple(self.suggested_actions),
            is_auto_healable=any(blocker.auto_healable for blocker in self.blockers),
            **fields,
        )


def _derive_runner(
    bot: BotContext,
    instance: InstanceContext | None,
    jobs: JobsSummary,
    *,
    policy: LifecyclePolicy,
    now: datetime,
) -> _RunnerOutcome:
    heartbeat_age_ms = None
    if instance is not None and instance.last_heartbeat_at is not None:
        heartbeat_age_ms = elapsed_ms(instance.last_heartbeat_at, now)

    facts = _RunnerFacts(bot=bot, instance=instance, heartbeat_age_ms=heartbeat_age_ms, policy=policy)
    _, outcome = first_match(RUNNER_RULES, facts, _no_runner)

    if jobs.runner_start_queued > 0 and outcome.state == RunnerState.NO_RUNNER:
        return _RunnerOutcome(RunnerState.STARTING, 'Start job queued', outcome.blockers, outcome.why_not_trading)
    if jobs.runner_restart_queued > 0 and outcome.state == RunnerState.STALLED:
        return _RunnerOutcome(RunnerState.RESTARTING, 'Restart job queued', outcome.blockers, outcome.why_not_trading)
    return outcome


def _check_invariants(
    builder: _StateBuilder,
    bot: BotContext,
    instance: InstanceContext | None,
    improvement: ImprovementContext | None,
    runner_state: RunnerState,
    *,
    policy: LifecyclePolicy,
    now: datetime,
) -> None:
    if policy.requires_runner(bot.stage) and runner_state == RunnerState.NO_RUNNER and bot.is_trading_enabled:
        builder.add_blocker(
            Blocker(
                code=BlockerCode.NO_PRIMARY_RUNNER,
                severity=Severity.CRITICAL,
                message=f'{bot.stage} bot requires a primary runner',
                suggested_action='Start runner',
                auto_healable=True,
            ),
            action=SuggestedAction.START_RUNNER,
            why_not_trading='No runner',
        )

    if bot.mode not in policy.allowed_modes_for(bot.stage):
        builder.add_blocker(
            Blocker(
                code=BlockerCode.MODE_STAGE_MISMATCH,
                severity=Severity.CRITICAL,
                message=f'Mode {bot.mode} is not valid for stage {bot.stage}',
                suggested_action=f'Set mode to {policy.repair_mode_for(bot.stage)}',
                auto_healable=True,
            ),
            action=SuggestedAction.FIX_MODE,
            why_not_trading='Invalid mode',
        )

    if policy.is_pre_runner(bot.stage) and instance is not None and instance.status == 'running':
        builder.add_blocker(
            Blocker(
                code=BlockerCode.TRIALS_RUNNER_ACTIVE,
                severity=Severity.WARNING,
                message=f'{bot.stage} bot has active runner (should be stopped)',
                suggested_action='Stop runner',
                auto_healable=True,
            ),
            action=SuggestedAction.STOP_RUNNER,
        )

    if not bot.is_trading_enabled and runner_state == RunnerState.SCANNING:
        builder.add_blocker(
            Blocker(
                code=BlockerCode.TRADING_DISABLED_RUNNER_ACTIVE,
                severity=Severity.WARNING,
                message='Trading is disabled but runner is active',
                suggested_action='Pause or stop the runner',
                auto_healable=True,
            )
        )

    if improvement is not None:
        pause = assess_pause(improvement, now=now)
        if not pause.valid:
            builder.add_blocker(
                Blocker(
                    code=BlockerCode.EVOLUTION_PAUSE_INVALID,
                    severity=Severity.INFO,
                    message=f'Evolution {improvement.status} without user pause or active cooldown',
                    suggested_action='Clear pause',
                    auto_healable=True,
                    evidence={
                        'reason': pause.reason,
                        'paused_by': str(improvement.paused_by) if improvement.paused_by else None,
                    },
                ),
                action=SuggestedAction.CLEAR_PAUSE,
            )


def evaluate_canonical_state(
    bot: BotContext,
    instance: InstanceContext | None,
    jobs: JobsSummary,
    improvement: ImprovementContext | None = None,
    *,
    policy: LifecyclePolicy | None = None,
    now: datetime | None = None,
) -> CanonicalBotState:
    """Synthesize the canonical state for one bot.

    Pure for a fixed ``now``: identical inputs always produce an identical
    result. Health is classified from the runner blockers before the
    invariant checks append theirs.
    """

    policy = policy or LifecyclePolicy()
    current = resolve_now(now)
    builder = _StateBuilder()

    runner = _derive_runner(bot, instance, jobs, policy=policy, now=current)
    builder.blockers.extend(runner.blockers)
    builder.why_not_trading.extend(runner.why_not_trading)

    job_state, job_reason = first_match(JOB_RULES, jobs, lambda _: (JobState.IDLE, None))[1]

    evolution_facts = _EvolutionFacts(jobs=jobs, improvement_status=improvement.status if improvement else None)
    evolution_state, evolution_reason = first_match(
        EVOLUTION_RULES, evolution_facts, lambda _: (EvolutionState.IDLE, None)
    )[1]

    health_score = bot.health_score if bot.health_score is not None else policy.default_health_score
    health_state = classify_health(
        health_score,
        builder.has_severity(Severity.CRITICAL),
        builder.has_severity(Severity.WARNING),
        policy=policy,
    )
    health_reason: str | None = None
    if health_state == HealthState.DEGRADED:
        health_reason = builder.first_code(Severity.CRITICAL) or 'Health score critical'
    elif health_state == HealthState.WARN:
        health_reason = builder.first_code(Severity.WARNING) or 'Health score warning'

    # Stored DEGRADED only sticks while the score itself is still critical.
    if bot.health_state == HealthState.DEGRADED and health_score < policy.health_degraded_threshold:
        health_state = HealthState.DEGRADED
        health_reason = bot.health_reason or health_reason

    _check_invariants(builder, bot, instance, improvement, runner.state, policy=policy, now=current)

    if improvement is not None:
        for gate, value in improvement.why_not_promoted.items():
            builder.why_not_promoted.append(f'{gate}: {value}')
    if health_score < policy.promotion_min_health_score:
        builder.why_not_promoted.append('Health score too low')
    if builder.has_severity(Severity.CRITICAL):
        builder.why_not_promoted.append('Critical blockers present')

    state = builder.build(
        runner_state=runner.state,
        job_state=job_state,
        evolution_state=evolution_state,
        health_state=health_state,
        health_score=health_score,
        runner_reason=runner.reason,
        job_reason=job_reason,
        evolution_reason=evolution_reason,
        health_reason=health_reason,
        last_heartbeat_at=instance.last_heartbeat_at if instance else None,
        next_action_at=instance.next_restart_allowed_at if instance else None,
        promoted_at=bot.promoted_at,
        context=StateContext(
            stage=str(bot.stage),
            mode=str(bot.mode),
            has_runner=instance is not None,
            runner_status=instance.status if instance else None,
            active_jobs=jobs.total_running + jobs.total_queued,
            kill_state=bot.kill_state,
            kill_reason_code=bot.kill_reason_code,
            kill_until=bot.kill_until,
        ),
    )
    logger.debug(
        'canonical state bot_id=%s runner=%s job=%s evolution=%s health=%s blockers=%d',
        bot.bot_id,
        state.runner_state,
        state.job_state,
        state.evolution_state,
        state.health_state,
        len(state.blockers),
    )
    return state


__all__ = [
    'EVOLUTION_RULES',
    'JOB_RULES',
    'RUNNER_RULES',
    'PauseAssessment',
    'assess_pause',
    'evaluate_canonical_state',
    'is_system_pause',
]
