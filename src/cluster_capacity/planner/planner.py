"""
Capacity planner.

Purpose
Find the smallest number k of candidate machines that lets every workload be
placed on top of the base cluster.

Search
A linear search over k = 0, 1, 2, ... up to max_rounds - 1. Each round
1) builds a fresh snapshot from the base source and adds k trial machines
2) asks the factory for a fresh oracle
3) expands every workload, merging cluster level node bound units into the
   first workload's batch
4) places the workloads in the caller's order, stopping at the first failure

The first fully successful round ends the session. Running out of rounds is
reported as exhausted, never as success.

Why rebuild every round
Placement cannot be undone reliably, so a round never starts from the state
another round left behind. Rounds share nothing except the read only
workloads, the source and the template.

States
idle -> round_setup -> round_running -> round_concluded ->
next_round | session_succeeded | session_exhausted | session_aborted
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from cluster_capacity.cluster.snapshot import ClusterSnapshot, validate_template
from cluster_capacity.cluster.sources.base import ClusterSource
from cluster_capacity.core.errors import (
    CapacityError,
    ConfigurationError,
    OracleError,
    OracleInitError,
    PlacementFailure,
)
from cluster_capacity.core.types import MachineTemplate, PlacementUnit, UnitClass, Workload
from cluster_capacity.oracle.base import OracleFactory, PlacementOracle, PlacementOutcome
from cluster_capacity.ordering.policy import IdentityOrdering, OrderingPolicy
from cluster_capacity.workload.expander import WorkloadExpander

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 100


class PlannerState(StrEnum):
    idle = "idle"
    round_setup = "round_setup"
    round_running = "round_running"
    round_concluded = "round_concluded"
    next_round = "next_round"
    session_succeeded = "session_succeeded"
    session_exhausted = "session_exhausted"
    session_aborted = "session_aborted"


class SessionStatus(StrEnum):
    """
    Terminal session status.

    succeeded
    A round placed every workload. trial_size holds k.

    exhausted
    No round succeeded within max_rounds.

    aborted
    The caller stopped the search between rounds, the timeout expired, or the
    operator declined to continue in interactive mode.
    """

    succeeded = "succeeded"
    exhausted = "exhausted"
    aborted = "aborted"


class RoundStatus(StrEnum):
    succeeded = "succeeded"
    failed = "failed"
    declined = "declined"


@dataclass(frozen=True)
class PlannerConfig:
    """
    Planner configuration.

    max_rounds
    Upper bound on the number of trial sizes tried. Trial sizes run from 0 to
    max_rounds - 1. Zero means no round runs at all.

    interactive
    Ask for confirmation after every successful workload of a round.

    timeout_seconds
    Abort between rounds once this much time has elapsed. None disables it.
    """

    max_rounds: int = DEFAULT_MAX_ROUNDS
    interactive: bool = False
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class WorkloadOutcome:
    """
    Placement outcome of one workload inside one round.

    unplaced maps unit uid to the oracle's reason.
    machines counts bound units per machine name.
    """

    workload: str
    units: int
    placed: int
    node_bound: int
    unplaced: Dict[str, str] = field(default_factory=dict)
    machines: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.unplaced


@dataclass(frozen=True)
class Round:
    """
    One trial size attempt.

    generation identifies the snapshot the round used.
    snapshot is only kept for a successful round, for reporting.
    """

    trial_size: int
    generation: int
    machine_count: int
    status: RoundStatus
    outcomes: List[WorkloadOutcome]
    failed_workload: Optional[str] = None
    snapshot: Optional[ClusterSnapshot] = field(default=None, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == RoundStatus.succeeded


@dataclass(frozen=True)
class SessionResult:
    status: SessionStatus
    trial_size: Optional[int]
    rounds: List[Round]
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == SessionStatus.succeeded

    @property
    def winning_round(self) -> Optional[Round]:
        if not self.succeeded:
            return None
        return self.rounds[-1]


def round_batches(
    expander: WorkloadExpander,
    snapshot: ClusterSnapshot,
    workloads: Sequence[Workload],
) -> List[Tuple[Workload, List[PlacementUnit]]]:
    """
    Expand every workload of a round.

    Cluster level node bound units are expanded once, against the round's
    machines, and appended to the first workload's batch after its own units.
    With no workloads there is nothing to attach them to and they are not
    expanded.
    """
    if not workloads:
        return []

    machines = snapshot.machines()
    node_bound = expander.expand_node_bound(
        workloads[0].name, snapshot.node_bound_controllers, machines
    )

    batches: List[Tuple[Workload, List[PlacementUnit]]] = []
    for index, workload in enumerate(workloads):
        units = expander.expand(workload, machines)
        if index == 0:
            units = units + node_bound
        batches.append((workload, units))
    return batches


class CapacityPlanner:
    """
    Round based capacity search.

    oracle_factory
    Builds a fresh placement oracle per round.

    ordering
    Submission ordering used for the whole session. Defaults to identity.

    confirm
    Called with a prompt after each successful workload in interactive mode.
    Returning False ends the session as aborted.

    on_round
    Called with every concluded Round, for progress reporting.
    """

    def __init__(
        self,
        oracle_factory: OracleFactory,
        ordering: Optional[OrderingPolicy] = None,
        config: Optional[PlannerConfig] = None,
        expander: Optional[WorkloadExpander] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        on_round: Optional[Callable[[Round], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._oracle_factory = oracle_factory
        self._ordering = ordering or IdentityOrdering()
        self._config = config or PlannerConfig()
        self._expander = expander or WorkloadExpander()
        self._confirm = confirm
        self._on_round = on_round
        self._clock = clock
        self._state = PlannerState.idle

    @property
    def state(self) -> PlannerState:
        return self._state

    def plan(
        self,
        source: ClusterSource,
        workloads: Sequence[Workload],
        template: MachineTemplate,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> SessionResult:
        """
        Run the search.

        Configuration, template and workload problems raise before any round
        runs. Sync and oracle errors raise from the round they occur in.
        """
        self._check_config()
        validate_template(template)
        for workload in workloads:
            self._expander.validate(workload)

        workloads = list(workloads)
        deadline = None
        if self._config.timeout_seconds is not None:
            deadline = self._clock() + self._config.timeout_seconds

        rounds: List[Round] = []
        for trial_size in range(self._config.max_rounds):
            if should_stop is not None and should_stop():
                return self._conclude(SessionStatus.aborted, None, rounds, "stopped by caller")
            if deadline is not None and self._clock() >= deadline:
                return self._conclude(SessionStatus.aborted, None, rounds, "timeout")

            rnd = self._run_round(trial_size, source, workloads, template)
            rounds.append(rnd)
            if self._on_round is not None:
                self._on_round(rnd)

            if rnd.status == RoundStatus.succeeded:
                return self._conclude(SessionStatus.succeeded, trial_size, rounds)
            if rnd.status == RoundStatus.declined:
                return self._conclude(SessionStatus.aborted, None, rounds, "declined by operator")

            self._transition(PlannerState.next_round)

        reason = f"no feasible trial size found within {self._config.max_rounds} rounds"
        return self._conclude(SessionStatus.exhausted, None, rounds, reason)

    def _check_config(self) -> None:
        if self._config.max_rounds < 0:
            raise ConfigurationError("max_rounds must not be negative")
        if self._config.interactive and self._confirm is None:
            raise ConfigurationError("interactive mode needs a confirm callback")
        if self._config.timeout_seconds is not None and self._config.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")

    def _run_round(
        self,
        trial_size: int,
        source: ClusterSource,
        workloads: List[Workload],
        template: MachineTemplate,
    ) -> Round:
        self._transition(PlannerState.round_setup)
        snapshot = ClusterSnapshot.sync_from_base(source)
        snapshot.add_trial_machines(template, trial_size)
        oracle = self._create_oracle(snapshot)

        self._transition(PlannerState.round_running)
        LOGGER.info("round k=%d: %d machines", trial_size, len(snapshot))

        outcomes: List[WorkloadOutcome] = []
        status = RoundStatus.succeeded
        failed_workload: Optional[str] = None
        try:
            batches = round_batches(self._expander, snapshot, workloads)
            for index, (workload, units) in enumerate(batches):
                ordered = self._ordering.order(units)
                outcome = self._place_workload(oracle, snapshot, workload.name, ordered)
                outcomes.append(outcome)
                LOGGER.info(
                    "round k=%d: %s placed %d units", trial_size, workload.name, outcome.placed
                )
                # Declining after the last workload changes nothing, the round is complete.
                if index < len(batches) - 1 and not self._ask(workload.name, trial_size):
                    status = RoundStatus.declined
                    break
        except PlacementFailure as failure:
            if isinstance(failure.outcome, WorkloadOutcome):
                outcomes.append(failure.outcome)
            status = RoundStatus.failed
            failed_workload = failure.workload
            LOGGER.info("round k=%d: %s", trial_size, failure)
        finally:
            _close(oracle)

        self._transition(PlannerState.round_concluded)
        return Round(
            trial_size=trial_size,
            generation=snapshot.generation,
            machine_count=len(snapshot),
            status=status,
            outcomes=outcomes,
            failed_workload=failed_workload,
            snapshot=snapshot if status == RoundStatus.succeeded else None,
        )

    def _create_oracle(self, snapshot: ClusterSnapshot) -> PlacementOracle:
        try:
            return self._oracle_factory.create(snapshot)
        except OracleInitError:
            raise
        except Exception as exc:
            raise OracleInitError(f"failed to initialize placement oracle: {exc}") from exc

    def _place_workload(
        self,
        oracle: PlacementOracle,
        snapshot: ClusterSnapshot,
        workload: str,
        units: List[PlacementUnit],
    ) -> WorkloadOutcome:
        if not units:
            return WorkloadOutcome(workload=workload, units=0, placed=0, node_bound=0)

        try:
            results = oracle.try_place(snapshot, units)
        except CapacityError:
            raise
        except Exception as exc:
            raise OracleError(f"placement oracle failed on {workload}: {exc}") from exc

        _check_outcomes(workload, units, results)

        unplaced: Dict[str, str] = {}
        machines: Dict[str, int] = {}
        for result in results:
            if result.machine is None:
                unplaced[result.uid] = result.reason or "unschedulable"
            else:
                machines[result.machine] = machines.get(result.machine, 0) + 1

        outcome = WorkloadOutcome(
            workload=workload,
            units=len(units),
            placed=len(units) - len(unplaced),
            node_bound=sum(1 for u in units if u.unit_class == UnitClass.node_bound),
            unplaced=unplaced,
            machines=machines,
        )
        if unplaced:
            raise PlacementFailure(workload, list(unplaced), outcome=outcome)
        return outcome

    def _ask(self, workload: str, trial_size: int) -> bool:
        if not self._config.interactive or self._confirm is None:
            return True
        return self._confirm(f"{workload} placed with {trial_size} new machine(s), continue?")

    def _conclude(
        self,
        status: SessionStatus,
        trial_size: Optional[int],
        rounds: List[Round],
        reason: str = "",
    ) -> SessionResult:
        final_state = {
            SessionStatus.succeeded: PlannerState.session_succeeded,
            SessionStatus.exhausted: PlannerState.session_exhausted,
            SessionStatus.aborted: PlannerState.session_aborted,
        }[status]
        self._transition(final_state)
        if status == SessionStatus.succeeded:
            LOGGER.info("session succeeded with %d new machine(s)", trial_size)
        else:
            LOGGER.info("session %s: %s", status.value, reason)
        return SessionResult(status=status, trial_size=trial_size, rounds=rounds, reason=reason)

    def _transition(self, state: PlannerState) -> None:
        LOGGER.debug("planner %s -> %s", self._state.value, state.value)
        self._state = state


def _check_outcomes(
    workload: str,
    units: List[PlacementUnit],
    results: List[PlacementOutcome],
) -> None:
    """The oracle must report one outcome per unit, in submission order."""
    if len(results) != len(units):
        raise OracleError(
            f"placement oracle returned {len(results)} outcomes for {len(units)} units of {workload}"
        )
    for unit, result in zip(units, results):
        if unit.uid != result.uid:
            raise OracleError(f"placement oracle reported {result.uid} in place of {unit.uid}")


def _close(oracle: PlacementOracle) -> None:
    close = getattr(oracle, "close", None)
    if callable(close):
        close()
