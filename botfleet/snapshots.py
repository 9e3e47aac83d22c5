"""Validated on-disk snapshots, promotion rules and threshold tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .documents import DocumentError, load_document
from .lifecycle.models import BotContext, ImprovementContext, InstanceContext, JobsSummary
from .lifecycle.policy import LifecyclePolicy
from .lifecycle.types import Stage
from .promotion.graduation import GraduationMetrics, GraduationThresholds, load_stage_thresholds, thresholds_for_stage
from .promotion.rules import MetricsRollup, PromotionInput, PromotionRules

logger = logging.getLogger(__name__)


class SnapshotError(DocumentError):
    """Raised when a snapshot, rules or threshold document fails validation."""


class BotRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bot_id: str = Field(min_length=1)
    stage: str
    mode: str
    is_trading_enabled: bool = False
    health_score: float | None = None
    health_state: str | None = None
    health_reason: str | None = None
    evolution_mode: str | None = None
    kill_state: str | None = None
    kill_reason_code: str | None = None
    kill_until: datetime | None = None
    frozen_reason_code: str | None = None
    promoted_at: datetime | None = None


class InstanceRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    status: str | None = None
    activity_state: str | None = None
    last_heartbeat_at: datetime | None = None
    is_primary_runner: bool = True
    restart_count: int = Field(default=0, ge=0)
    restart_count_hour: int = Field(default=0, ge=0)
    next_restart_allowed_at: datetime | None = None
    circuit_breaker_open: bool = False
    circuit_breaker_until: datetime | None = None
    consecutive_tick_failures: int = Field(default=0, ge=0)
    pause_origin: Literal["OPERATOR", "SYSTEM"] | None = None


class JobsRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backtest_queued: int = Field(default=0, ge=0)
    backtest_running: int = Field(default=0, ge=0)
    evaluate_queued: int = Field(default=0, ge=0)
    evaluate_running: int = Field(default=0, ge=0)
    evolve_queued: int = Field(default=0, ge=0)
    evolve_running: int = Field(default=0, ge=0)
    runner_start_queued: int = Field(default=0, ge=0)
    runner_restart_queued: int = Field(default=0, ge=0)
    priority_compute_queued: int = Field(default=0, ge=0)
    total_queued: int = Field(default=0, ge=0)
    total_running: int = Field(default=0, ge=0)


class ImprovementRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    why_not_promoted: dict[str, str] = Field(default_factory=dict)
    consecutive_failures: int = Field(default=0, ge=0)
    next_action: str | None = None
    pause_scope: Literal["EVOLUTION_ONLY", "ALL"] | None = None
    paused_by: Literal["AUTO", "USER"] | None = None
    next_retry_at: datetime | None = None

    @field_validator("why_not_promoted", mode="before")
    @classmethod
    def _coerce_gate_values(cls, value: Any) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("why_not_promoted must be a mapping of gate to value")
        return {str(gate): str(reason) for gate, reason in value.items()}


class BotStateSnapshot(BaseModel):
    """One bot's records as read from the store at a single point in time."""

    model_config = ConfigDict(extra="forbid")

    bot: BotRecord
    instance: InstanceRecord | None = None
    jobs: JobsRecord = Field(default_factory=JobsRecord)
    improvement: ImprovementRecord | None = None
    captured_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("captured_at", "now"),
    )


class RollupRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trades: int = Field(default=0, ge=0)
    win_rate: float | None = Field(default=None, validation_alias=AliasChoices("win_rate", "winRate"))
    sharpe: float | None = None
    profit_factor: float | None = Field(
        default=None, validation_alias=AliasChoices("profit_factor", "profitFactor")
    )
    expectancy: float | None = None
    max_dd_pct: float | None = Field(default=None, validation_alias=AliasChoices("max_dd_pct", "maxDdPct"))
    active_days: int = Field(default=0, ge=0, validation_alias=AliasChoices("active_days", "activeDays"))
    last_trade_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_trade_at", "lastTradeAt")
    )


class PromotionSnapshot(BaseModel):
    """Inputs for promotion, progress and graduation evaluation of one bot."""

    model_config = ConfigDict(extra="forbid")

    bot_id: str = Field(min_length=1)
    current_stage: str
    health_state: str = "OK"
    health_reasons: list[str] = Field(default_factory=list)
    rollup: RollupRecord | None = Field(default=None, validation_alias=AliasChoices("rollup", "rollup30"))
    last_backtest_completed_at: datetime | None = None
    last_backtest_status: str | None = None
    graduation: dict[str, Any] | None = None
    captured_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("captured_at", "now"),
    )


@dataclass(frozen=True)
class BotStateInputs:
    bot: BotContext
    instance: InstanceContext | None
    jobs: JobsSummary
    improvement: ImprovementContext | None
    captured_at: datetime | None


@dataclass(frozen=True)
class PromotionInputs:
    promotion: PromotionInput
    graduation: GraduationMetrics
    captured_at: datetime | None


def _validated(model: type[BaseModel], path: Path) -> Any:
    try:
        payload = load_document(path)
    except DocumentError as exc:
        raise SnapshotError(path, exc.detail) from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise SnapshotError(path, f"invalid {model.__name__}: {exc}") from exc


def load_bot_state_snapshot(path: Path) -> BotStateInputs:
    snapshot: BotStateSnapshot = _validated(BotStateSnapshot, path)
    logger.debug("Loaded bot state snapshot path=%s bot_id=%s", path, snapshot.bot.bot_id)
    return BotStateInputs(
        bot=BotContext.from_payload(snapshot.bot.model_dump()),
        instance=InstanceContext.from_payload(snapshot.instance.model_dump()) if snapshot.instance else None,
        jobs=JobsSummary.from_payload(snapshot.jobs.model_dump()),
        improvement=(
            ImprovementContext.from_payload(snapshot.improvement.model_dump()) if snapshot.improvement else None
        ),
        captured_at=snapshot.captured_at,
    )


def _graduation_from_rollup(rollup: MetricsRollup | None) -> GraduationMetrics:
    if rollup is None:
        return GraduationMetrics(total_trades=0)
    return GraduationMetrics(
        total_trades=rollup.trades,
        win_rate=rollup.win_rate,
        profit_factor=rollup.profit_factor,
        max_drawdown_pct=rollup.max_dd_pct,
        expectancy=rollup.expectancy,
        sharpe=rollup.sharpe,
    )


def load_promotion_snapshot(path: Path) -> PromotionInputs:
    """Load a promotion snapshot; graduation metrics default to the rollup figures."""

    snapshot: PromotionSnapshot = _validated(PromotionSnapshot, path)
    payload = snapshot.model_dump(exclude={"graduation", "captured_at"})
    promotion = PromotionInput.from_payload(payload)
    if snapshot.graduation is not None:
        graduation = GraduationMetrics.from_payload(snapshot.graduation)
    else:
        graduation = _graduation_from_rollup(promotion.rollup)
    return PromotionInputs(promotion=promotion, graduation=graduation, captured_at=snapshot.captured_at)


def load_lifecycle_policy(path: Path, *, base: LifecyclePolicy | None = None) -> LifecyclePolicy:
    try:
        return LifecyclePolicy.from_path(path, base=base)
    except DocumentError as exc:
        raise SnapshotError(path, exc.detail) from exc
    except (TypeError, ValueError) as exc:
        raise SnapshotError(path, f"invalid lifecycle policy: {exc}") from exc


def load_thresholds_table(path: Path) -> Mapping[str, GraduationThresholds]:
    try:
        return load_stage_thresholds(path)
    except DocumentError as exc:
        raise SnapshotError(path, exc.detail) from exc


def default_rules_by_stage(
    thresholds: Mapping[str, GraduationThresholds] | None = None,
) -> Mapping[str, PromotionRules]:
    """Auto-promotion is configured for TRIALS only, derived from its graduation thresholds."""

    return MappingProxyType(
        {Stage.TRIALS: PromotionRules.from_thresholds(thresholds_for_stage(Stage.TRIALS, thresholds))}
    )


def load_promotion_rules(
    path: Path,
    *,
    thresholds: Mapping[str, GraduationThresholds] | None = None,
) -> Mapping[str, PromotionRules]:
    """Load promotion rules keyed by the stage they promote out of.

    A flat document configures TRIALS. A document with a ``stages`` mapping
    configures each listed stage; stages not listed are left unconfigured.
    """

    try:
        payload = load_document(path)
    except DocumentError as exc:
        raise SnapshotError(path, exc.detail) from exc

    base = default_rules_by_stage(thresholds)[Stage.TRIALS]
    try:
        stages = payload.get("stages")
        if stages is None:
            return MappingProxyType({Stage.TRIALS: PromotionRules.from_payload(payload, base=base)})
        if not isinstance(stages, Mapping):
            raise ValueError("stages must be a mapping of stage to rules")
        rules: dict[str, PromotionRules] = {}
        for stage, overrides in stages.items():
            if not isinstance(overrides, Mapping):
                raise ValueError(f"rules for {stage} must be a mapping")
            rules[str(stage)] = PromotionRules.from_payload(overrides, base=base)
        return MappingProxyType(rules)
    except ValueError as exc:
        raise SnapshotError(path, f"invalid promotion rules: {exc}") from exc


__all__ = [
    "BotStateInputs",
    "BotStateSnapshot",
    "PromotionInputs",
    "PromotionSnapshot",
    "SnapshotError",
    "default_rules_by_stage",
    "load_bot_state_snapshot",
    "load_lifecycle_policy",
    "load_promotion_rules",
    "load_promotion_snapshot",
    "load_thresholds_table",
]
