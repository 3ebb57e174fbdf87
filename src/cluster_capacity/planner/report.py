"""
Session report.

Builds a JSON safe summary of a finished session and persists it.

The report is written only for a successful session. It records the winning
trial size, one summary line per round and, for the winning round, how every
workload was spread across machines and how full each machine ended up.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from cluster_capacity.core.serialization import snapshot_to_json, to_json_safe_dict
from cluster_capacity.planner.planner import Round, SessionResult

DEFAULT_REPORT_PATH = Path("capacity-report.json")


def round_summary(rnd: Round) -> dict[str, Any]:
    return {
        "trial_size": rnd.trial_size,
        "machines": rnd.machine_count,
        "status": rnd.status.value,
        "failed_workload": rnd.failed_workload,
        "generation": rnd.generation,
    }


def format_round(rnd: Round) -> str:
    """One line human readable round summary."""
    line = f"k={rnd.trial_size} machines={rnd.machine_count} {rnd.status.value}"
    if rnd.failed_workload is not None:
        failed = next(o for o in rnd.outcomes if o.workload == rnd.failed_workload)
        line += (
            f" at {rnd.failed_workload}"
            f" ({len(failed.unplaced)} of {failed.units} units unplaced)"
        )
    return line


def build_report(result: SessionResult, template_name: str = "") -> dict[str, Any]:
    report: dict[str, Any] = {
        "status": result.status.value,
        "trial_size": result.trial_size,
        "machine_template": template_name,
        "reason": result.reason,
        "rounds": [round_summary(r) for r in result.rounds],
    }

    winner = result.winning_round
    if winner is not None:
        workloads: List[dict[str, Any]] = []
        for outcome in winner.outcomes:
            workloads.append(to_json_safe_dict(outcome))
        report["workloads"] = workloads
        if winner.snapshot is not None:
            report["cluster"] = snapshot_to_json(winner.snapshot)

    return report


@dataclass(frozen=True)
class ReportWriter:
    """
    JSON report writer.

    Each call replaces the file with one pretty printed JSON object.
    """

    path: Path = DEFAULT_REPORT_PATH

    def write(self, report: dict[str, Any]) -> Path:
        payload = dict(report)
        payload["ts_unix"] = int(time.time())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        return self.path
