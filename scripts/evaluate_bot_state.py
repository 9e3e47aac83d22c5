#!/usr/bin/env python3
"""Synthesize a bot's canonical state from a store snapshot and plan auto-heal actions."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from botfleet.config import get_settings
from botfleet.lifecycle import LifecyclePolicy, evaluate_canonical_state, plan_auto_heal
from botfleet.logger import configure_logging, get_logger
from botfleet.snapshots import SnapshotError, load_bot_state_snapshot, load_lifecycle_policy
from botfleet.values import parse_datetime, utcnow


def _parse_now(value: str) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f'invalid ISO-8601 timestamp: {value!r}')
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Evaluate canonical bot state and auto-heal actions.')
    parser.add_argument('--snapshot', type=Path, required=True, help='JSON/YAML bot snapshot.')
    parser.add_argument('--policy', type=Path, help='Optional JSON/YAML lifecycle policy overlay.')
    parser.add_argument('--now', type=_parse_now, help='Evaluation time; defaults to the snapshot time or now.')
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    try:
        snapshot = load_bot_state_snapshot(args.snapshot)
        policy = LifecyclePolicy.from_settings(settings)
        if args.policy is not None:
            policy = load_lifecycle_policy(args.policy, base=policy)
    except SnapshotError as exc:
        print(f'error: {exc}', file=sys.stderr)
        return 2

    now = args.now or snapshot.captured_at or utcnow()
    state = evaluate_canonical_state(
        snapshot.bot,
        snapshot.instance,
        snapshot.jobs,
        snapshot.improvement,
        policy=policy,
        now=now,
    )
    actions = plan_auto_heal(snapshot.bot, snapshot.instance, state, policy=policy, now=now)
    log.info(
        'bot state evaluated',
        bot_id=snapshot.bot.bot_id,
        runner_state=str(state.runner_state),
        health_state=str(state.health_state),
        blockers=len(state.blockers),
        auto_heal_actions=len(actions),
    )

    payload: dict[str, Any] = {
        'state': state.to_payload(),
        'auto_heal_actions': [action.to_payload() for action in actions],
    }
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
