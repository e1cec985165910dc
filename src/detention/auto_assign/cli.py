# -*- coding: utf-8 -*-
"""Command line interface for detention auto-assignment."""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from typing import Optional, Sequence

from detention.core.logging_config import setup_logging

from . import auto_assign, get_components
from .config import load_from_env
from .errors import DetentionError
from .rules import DetentionRule


def _emit(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def _error(exc: DetentionError) -> int:
    detail = exc.detail
    print(
        json.dumps({"error": {"code": detail.code, "message": detail.message, "details": detail.details}}),
        file=sys.stderr,
    )
    return 1


def _run_auto_assign(args: argparse.Namespace) -> int:
    try:
        result = auto_assign(args.session_id)
    except DetentionError as exc:
        return _error(exc)
    _emit(result.as_dict())
    return 0 if result.complete else 3


def _run_queue(args: argparse.Namespace) -> int:
    try:
        queue = get_components().store.get_queue()
    except DetentionError as exc:
        return _error(exc)
    entries = [asdict(entry) for entry in queue]
    if args.limit is not None:
        entries = entries[: args.limit]
    _emit({"depth": len(queue), "entries": entries})
    return 0


def _run_rules(args: argparse.Namespace) -> int:
    rules = get_components().rules
    try:
        if args.set_min_points is not None:
            saved = rules.save_rule(DetentionRule(id=args.rule_id, min_points=args.set_min_points))
            _emit({"saved": asdict(saved)})
        _emit(
            {
                "rules": [asdict(rule) for rule in rules.list_rules()],
                "threshold": rules.current_rule().min_points_since_last_detention,
            }
        )
    except DetentionError as exc:
        return _error(exc)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detention auto-assignment CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    assign_cmd = sub.add_parser("auto-assign", help="Fill a scheduled session from the queue and the roster")
    assign_cmd.add_argument("session_id", type=int, help="Detention session id")
    assign_cmd.set_defaults(func=_run_auto_assign)

    queue_cmd = sub.add_parser("queue", help="Show the overflow queue in drain order")
    queue_cmd.add_argument("--limit", type=int, help="Print at most this many entries")
    queue_cmd.set_defaults(func=_run_queue)

    rules_cmd = sub.add_parser("rules", help="List detention rules and the threshold in force")
    rules_cmd.add_argument("--set-min-points", type=int, help="Create or update a points rule")
    rules_cmd.add_argument("--rule-id", type=int, help="Rule to update with --set-min-points")
    rules_cmd.set_defaults(func=_run_rules)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    # Root handlers must exist before the bootstrap builds its loggers.
    config = load_from_env()
    setup_logging(config.log_level, config.log_file)
    result = args.func(args)
    return int(result)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
