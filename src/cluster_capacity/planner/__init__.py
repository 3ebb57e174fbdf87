"""
Planner package.

This makes the planner folder an explicit package so both Python and mypy
resolve modules consistently.
"""

from cluster_capacity.planner.planner import (
    CapacityPlanner,
    PlannerConfig,
    Round,
    SessionResult,
    SessionStatus,
)

__all__ = ["CapacityPlanner", "PlannerConfig", "Round", "SessionResult", "SessionStatus"]
