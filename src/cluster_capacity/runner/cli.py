"""
Command line entrypoint.

cluster-capacity apply -f session.yaml

Exit codes
0  a trial size was found and the report was written
1  no trial size found within the round bound
2  configuration, cluster sync, template or workload error
3  aborted by the operator, the caller or the timeout
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from cluster_capacity.core.errors import CapacityError
from cluster_capacity.planner.planner import Round, SessionStatus
from cluster_capacity.planner.report import format_round
from cluster_capacity.runner.config import load_session_config
from cluster_capacity.runner.runner import SessionRunner

LOGGER = logging.getLogger(__name__)

EXIT_CODES = {
    SessionStatus.succeeded: 0,
    SessionStatus.exhausted: 1,
    SessionStatus.aborted: 3,
}
EXIT_ERROR = 2


def confirm(prompt: str) -> bool:
    answer = input(f"{prompt} (y/n) ").strip().lower()
    return answer in {"y", "yes"}


def _print_round(rnd: Round) -> None:
    print(format_round(rnd))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cluster-capacity",
        description="Find how many candidate machines a cluster needs to place every workload.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    apply = sub.add_parser("apply", help="Run a capacity planning session.")
    apply.add_argument(
        "-f",
        "--file",
        type=Path,
        required=True,
        help="Path to the session YAML file.",
    )
    apply.add_argument(
        "--use-ordering-policy",
        action="store_true",
        help="Submit constrained and heavy units first.",
    )
    apply.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Ask before continuing after each placed workload.",
    )
    apply.add_argument(
        "--max-rounds",
        type=int,
        default=None,
        help="Override the upper bound on trial sizes.",
    )
    apply.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop between rounds after this many seconds.",
    )
    apply.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Where to write the JSON report of a successful session.",
    )
    apply.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_session_config(args.file)
        overrides: dict[str, object] = {}
        if args.use_ordering_policy:
            overrides["use_ordering_policy"] = True
        if args.interactive:
            overrides["interactive"] = True
        if args.max_rounds is not None:
            overrides["max_rounds"] = args.max_rounds
        if args.timeout is not None:
            overrides["timeout_seconds"] = args.timeout
        if args.report is not None:
            overrides["report_path"] = args.report
        config = replace(config, **overrides)

        runner = SessionRunner(config, confirm=confirm, on_round=_print_round)
        result = runner.run()
    except CapacityError as exc:
        LOGGER.debug("session failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    if result.succeeded:
        print(f"placed every workload with {result.trial_size} new machine(s)")
        print(f"report: {config.report_path}")
    else:
        print(f"{result.status.value}: {result.reason}")
    return EXIT_CODES[result.status]


if __name__ == "__main__":
    sys.exit(main())
