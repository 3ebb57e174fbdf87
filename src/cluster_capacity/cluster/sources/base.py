"""
Cluster source interfaces.

Goal
Provide pluggable base cluster ingestion so the planner is source agnostic.
A source is either a static description on disk or a live cluster.

The base cluster is normalized into a ClusterDescription.
We keep the interface narrow so it is easy to fake in tests.
"""

from __future__ import annotations

from typing import Protocol

from cluster_capacity.core.types import ClusterDescription


class ClusterSource(Protocol):
    """
    Cluster source interface.

    load returns the normalized base cluster. The planner calls it once per
    round, so a source must return equivalent descriptions on every call.
    """

    def load(self) -> ClusterDescription:
        """Load the base cluster description."""
