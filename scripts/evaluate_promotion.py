#!/usr/bin/env python3
"""Evaluate a bot's promotion decision, progress and graduation readiness."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from botfleet.config import get_settings
from botfleet.logger import configure_logging, get_logger
from botfleet.promotion import (
    GraduationThresholds,
    PromotionRules,
    check_graduation_checklist,
    compute_graduation_status,
    compute_promotion_progress,
    evaluate_promotion,
    missing_gates,
    thresholds_for_stage,
)
from botfleet.snapshots import (
    SnapshotError,
    default_rules_by_stage,
    load_promotion_rules,
    load_promotion_snapshot,
    load_thresholds_table,
)
from botfleet.values import parse_datetime, utcnow


def _parse_now(value: str) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f'invalid ISO-8601 timestamp: {value!r}')
    return parsed


def _optional_path(value: str | None) -> Path | None:
    return Path(value) if value else None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Evaluate promotion gates, progress and graduation for one bot.')
    parser.add_argument('--input', type=Path, required=True, help='JSON/YAML promotion snapshot.')
    parser.add_argument(
        '--rules',
        type=Path,
        help='JSON/YAML promotion rules; defaults to BOTFLEET_PROMOTION_RULES_PATH.',
    )
    parser.add_argument(
        '--stage-thresholds',
        type=Path,
        help='JSON/YAML graduation threshold table; defaults to BOTFLEET_STAGE_THRESHOLDS_PATH.',
    )
    parser.add_argument('--now', type=_parse_now, help='Evaluation time; defaults to the snapshot time or now.')
    return parser


def _rules_for_stage(
    stage: str,
    rules_by_stage: Mapping[str, PromotionRules],
    thresholds: Mapping[str, GraduationThresholds] | None,
) -> PromotionRules:
    rules = rules_by_stage.get(stage)
    if rules is not None:
        return rules
    return PromotionRules.from_thresholds(thresholds_for_stage(stage, thresholds))


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    rules_path = args.rules or _optional_path(settings.promotion_rules_path)
    thresholds_path = args.stage_thresholds or _optional_path(settings.stage_thresholds_path)
    try:
        inputs = load_promotion_snapshot(args.input)
        thresholds = load_thresholds_table(thresholds_path) if thresholds_path is not None else None
        if rules_path is not None:
            rules_by_stage = load_promotion_rules(rules_path, thresholds=thresholds)
        else:
            rules_by_stage = default_rules_by_stage(thresholds)
    except SnapshotError as exc:
        print(f'error: {exc}', file=sys.stderr)
        return 2

    now = args.now or inputs.captured_at or utcnow()
    promotion_input = inputs.promotion
    stage = str(promotion_input.current_stage)

    result = evaluate_promotion(promotion_input, rules_by_stage, now=now)
    progress = compute_promotion_progress(
        promotion_input, _rules_for_stage(stage, rules_by_stage, thresholds), now=now
    )
    stage_thresholds = thresholds_for_stage(stage, thresholds)
    status = compute_graduation_status(inputs.graduation, stage_thresholds)
    checklist = check_graduation_checklist(inputs.graduation, stage_thresholds)
    log.info(
        'promotion evaluated',
        bot_id=promotion_input.bot_id,
        stage=stage,
        decision=str(result.decision),
        progress_percent=progress.percent,
        graduation_bucket=str(status.bucket),
    )

    payload: dict[str, Any] = {
        'promotion': result.to_payload(),
        'progress': progress.to_payload(),
        'missing_gates': missing_gates(progress),
        'graduation': {
            'status': status.to_payload(),
            'checklist': checklist.to_payload(),
        },
    }
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
