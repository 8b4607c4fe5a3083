#!/usr/bin/env python3
"""Command-line entry point: order the tasks in a JSON file."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from minipm.enhanced_logging import configure_logging
from minipm.exceptions_unified import SchedulingError
from minipm.scheduling import schedule_tasks

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SCHEDULING_FAILED = 1
EXIT_BAD_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="minipm-schedule",
        description="Compute a dependency- and priority-aware task order",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "tasks_file",
        type=str,
        help='JSON file holding a task list, or an object with a "tasks" list',
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format: one title per line, or the JSON result",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        help="Logging level",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    path = Path(args.tasks_file)
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        print(f"Error: cannot read {path}: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    tasks = data.get("tasks") if isinstance(data, dict) else data
    if not isinstance(tasks, list) or not all(isinstance(t, dict) for t in tasks):
        print(f"Error: {path} does not contain a list of task objects", file=sys.stderr)
        return EXIT_BAD_INPUT

    try:
        result = schedule_tasks(tasks)
    except SchedulingError as e:
        print(f"Error [{e.code.value}]: {e.message}", file=sys.stderr)
        return EXIT_SCHEDULING_FAILED

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for title in result:
            print(title)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
