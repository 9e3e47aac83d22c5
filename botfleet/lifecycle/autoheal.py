"""Auto-heal recommendations derived from a synthesized bot state.

Nothing here executes an action. Callers enqueue the returned job requests and
apply the store updates themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from ..values import elapsed_ms, resolve_now
from .models import Blocker, BotContext, CanonicalBotState, InstanceContext
from .policy import LifecyclePolicy
from .types import AutoHealActionType, BlockerCode, JobType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobRequest:
    job_type: JobType
    payload: Mapping[str, Any]

    def to_payload(self) -> dict[str, object]:
        return {'job_type': str(self.job_type), 'payload': dict(self.payload)}


@dataclass(frozen=True)
class StoreUpdate:
    table: str
    id: str
    updates: Mapping[str, Any]

    def to_payload(self) -> dict[str, object]:
        return {'table': self.table, 'id': self.id, 'updates': dict(self.updates)}


@dataclass(frozen=True)
class AutoHealAction:
    action: AutoHealActionType
    job: JobRequest | None = None
    store_update: StoreUpdate | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {'action': str(self.action)}
        if self.job is not None:
            payload['job'] = self.job.to_payload()
        if self.store_update is not None:
            payload['store_update'] = self.store_update.to_payload()
        return payload


@dataclass(frozen=True)
class _HealContext:
    bot: BotContext
    instance: InstanceContext | None
    policy: LifecyclePolicy
    now: datetime


def _runner_job(action: AutoHealActionType, job_type: JobType, reason: str) -> Callable[[_HealContext], AutoHealAction]:
    def plan(ctx: _HealContext) -> AutoHealAction:
        return AutoHealAction(
            action=action,
            job=JobRequest(job_type=job_type, payload={'bot_id': ctx.bot.bot_id, 'reason': reason}),
        )

    return plan


def _restart_stalled(ctx: _HealContext) -> AutoHealAction | None:
    allowed_at = ctx.instance.next_restart_allowed_at if ctx.instance else None
    if allowed_at is not None and elapsed_ms(ctx.now, allowed_at) > 0:
        logger.debug('restart deferred bot_id=%s next_restart_allowed_at=%s', ctx.bot.bot_id, allowed_at.isoformat())
        return None
    return _runner_job(AutoHealActionType.QUEUE_RUNNER_RESTART, JobType.RUNNER_RESTART, 'STALE_HEARTBEAT')(ctx)


def _fix_mode(ctx: _HealContext) -> AutoHealAction:
    return AutoHealAction(
        action=AutoHealActionType.FIX_MODE,
        store_update=StoreUpdate(
            table='bots',
            id=ctx.bot.bot_id,
            updates={'mode': str(ctx.policy.repair_mode_for(ctx.bot.stage))},
        ),
    )


def _stop_runner(ctx: _HealContext) -> AutoHealAction:
    instance_id = ctx.instance.id if ctx.instance and ctx.instance.id else ''
    return AutoHealAction(
        action=AutoHealActionType.STOP_RUNNER,
        store_update=StoreUpdate(
            table='bot_instances',
            id=instance_id,
            updates={'status': 'stopped', 'activity_state': 'STOPPED'},
        ),
    )


def _clear_pause(ctx: _HealContext) -> AutoHealAction:
    return AutoHealAction(
        action=AutoHealActionType.CLEAR_PAUSE,
        store_update=StoreUpdate(
            table='bot_improvement_state',
            id=ctx.bot.bot_id,
            updates={'status': 'IDLE', 'pause_scope': None, 'paused_by': None},
        ),
    )


_PLANNERS: Mapping[str, Callable[[_HealContext], AutoHealAction | None]] = {
    BlockerCode.RUNNER_STALLED: _restart_stalled,
    BlockerCode.NO_PRIMARY_RUNNER: _runner_job(
        AutoHealActionType.QUEUE_RUNNER_START, JobType.RUNNER_START, 'NO_RUNNER'
    ),
    BlockerCode.MODE_STAGE_MISMATCH: _fix_mode,
    BlockerCode.TRIALS_RUNNER_ACTIVE: _stop_runner,
    BlockerCode.RUNNER_ERROR: _runner_job(
        AutoHealActionType.QUEUE_RUNNER_RESTART, JobType.RUNNER_RESTART, 'ERROR_STATE'
    ),
    BlockerCode.EVOLUTION_PAUSE_INVALID: _clear_pause,
}


def _healable(blocker: Blocker) -> bool:
    return blocker.auto_healable and blocker.code in _PLANNERS


def plan_auto_heal(
    bot: BotContext,
    instance: InstanceContext | None,
    state: CanonicalBotState,
    *,
    policy: LifecyclePolicy | None = None,
    now: datetime | None = None,
) -> list[AutoHealAction]:
    """Return at most one recommended action per auto-healable blocker, in blocker order."""

    ctx = _HealContext(bot=bot, instance=instance, policy=policy or LifecyclePolicy(), now=resolve_now(now))
    actions: list[AutoHealAction] = []
    for blocker in state.blockers:
        if not _healable(blocker):
            continue
        action = _PLANNERS[blocker.code](ctx)
        if action is not None:
            actions.append(action)
    if actions:
        logger.info(
            'auto-heal planned bot_id=%s actions=%s',
            bot.bot_id,
            ','.join(str(action.action) for action in actions),
        )
    return actions


__all__ = ['AutoHealAction', 'JobRequest', 'StoreUpdate', 'plan_auto_heal']
