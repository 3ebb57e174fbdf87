"""
Session runner.

Purpose
Run one capacity planning session end to end:
- validate the session configuration
- pick the base cluster source
- load the candidate machine template and the applications
- run the planner
- write the report when a trial size was found

This is the composition layer of the system.
The planner stays free of files, flags and clients.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from cluster_capacity.cluster.sources.base import ClusterSource
from cluster_capacity.cluster.sources.live import LiveClusterSource
from cluster_capacity.cluster.sources.static import StaticClusterSource
from cluster_capacity.cluster.sources.template import load_machine_template
from cluster_capacity.oracle.base import OracleFactory
from cluster_capacity.oracle.first_fit import FirstFitOracleFactory
from cluster_capacity.ordering.policy import ordering_for
from cluster_capacity.planner.planner import CapacityPlanner, PlannerConfig, Round, SessionResult
from cluster_capacity.planner.report import ReportWriter, build_report
from cluster_capacity.runner.config import SessionConfig
from cluster_capacity.workload.loader import ChartRenderer, ManifestLoader

LOGGER = logging.getLogger(__name__)


def cluster_source_for(config: SessionConfig) -> ClusterSource:
    if config.kube_config is not None:
        return LiveClusterSource(kubeconfig=config.kube_config)
    if config.custom_cluster is not None:
        return StaticClusterSource(path=config.custom_cluster)
    raise ValueError("session config has no cluster source")


class SessionRunner:
    """
    Wire configuration, sources, loader, planner and report together.

    oracle_factory defaults to the in memory first fit oracle.
    """

    def __init__(
        self,
        config: SessionConfig,
        oracle_factory: Optional[OracleFactory] = None,
        renderer: Optional[ChartRenderer] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        on_round: Optional[Callable[[Round], None]] = None,
        source: Optional[ClusterSource] = None,
    ) -> None:
        self._config = config
        self._oracle_factory = oracle_factory or FirstFitOracleFactory()
        self._loader = ManifestLoader(renderer=renderer)
        self._confirm = confirm
        self._on_round = on_round
        self._source = source

    def run(self, should_stop: Optional[Callable[[], bool]] = None) -> SessionResult:
        """
        Execute one session.

        Configuration, sync and workload errors propagate. A report is only
        written for a successful session.
        """
        config = self._config
        config.validate()

        source = self._source or cluster_source_for(config)
        template = load_machine_template(config.new_node)
        workloads = self._loader.load_all(config.apps)

        planner = CapacityPlanner(
            oracle_factory=self._oracle_factory,
            ordering=ordering_for(config.use_ordering_policy),
            config=PlannerConfig(
                max_rounds=config.max_rounds,
                interactive=config.interactive,
                timeout_seconds=config.timeout_seconds,
            ),
            confirm=self._confirm,
            on_round=self._on_round,
        )
        result = planner.plan(source, workloads, template, should_stop=should_stop)

        if result.succeeded:
            path = ReportWriter(config.report_path).write(build_report(result, template.name))
            LOGGER.info("report written to %s", path)

        return result
