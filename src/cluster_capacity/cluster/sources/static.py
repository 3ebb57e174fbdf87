"""
Static cluster source.

Reads a local YAML or JSON file, or a directory of them, describing the base
cluster. This is useful for dev, tests and what if sizing without access to a
live cluster.

Recognized kinds
Node        becomes a base machine
Pod         becomes a committed unit when spec.nodeName is set and the pod
            has not finished
DaemonSet   becomes a cluster level node bound controller

Pods in phase Succeeded or Failed are dropped, matching the live source.
Pods owned by a DaemonSet are dropped because the planner re-expands
daemon controllers once per machine in every round. Pods without a node are
skipped with a warning. Other kinds are skipped too.

Schema example
apiVersion: v1
kind: Node
metadata:
  name: node-1
  labels: {kubernetes.io/hostname: node-1}
spec:
  taints: [{key: dedicated, value: infra, effect: NoSchedule}]
status:
  allocatable: {cpu: "4", memory: 16Gi, pods: "110"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from cluster_capacity.cluster.sources.base import ClusterSource
from cluster_capacity.core.documents import load_documents, metadata
from cluster_capacity.core.errors import SyncError
from cluster_capacity.core.quantity import resource_vector
from cluster_capacity.core.types import (
    ClusterDescription,
    Machine,
    PlacementUnit,
    ResourceDescriptor,
    Taint,
    UnitClass,
)
from cluster_capacity.workload.podspec import pod_constraints, pod_requests, pod_template_spec

LOGGER = logging.getLogger(__name__)

# Pods in these phases no longer hold resources on their node.
FINISHED_PHASES = {"Succeeded", "Failed"}


def _parse_taints(spec: Dict[str, Any]) -> tuple[Taint, ...]:
    taints = []
    for raw in spec.get("taints") or []:
        if not isinstance(raw, dict) or not raw.get("key"):
            raise ValueError("taint must be a mapping with a key")
        taints.append(
            Taint(
                key=str(raw["key"]),
                value=str(raw.get("value", "") or ""),
                effect=str(raw.get("effect", "NoSchedule")),
            )
        )
    return tuple(taints)


def node_capacity(doc: Dict[str, Any]) -> Dict[str, int]:
    """Allocatable if present, capacity otherwise."""
    status = doc.get("status") or {}
    raw = status.get("allocatable") or status.get("capacity") or {}
    if not isinstance(raw, dict):
        raise ValueError("node allocatable must be a mapping")
    return resource_vector(raw)


def machine_from_node(doc: Dict[str, Any]) -> Machine:
    """Convert a Node document into a base Machine."""
    meta = metadata(doc)
    name = meta.get("name")
    if not name:
        raise ValueError("node has no metadata.name")
    labels = meta.get("labels") or {}
    return Machine(
        name=str(name),
        capacity=node_capacity(doc),
        labels={str(k): str(v) for k, v in labels.items()},
        taints=_parse_taints(doc.get("spec") or {}),
    )


def descriptor_from_doc(doc: Dict[str, Any]) -> ResourceDescriptor:
    meta = metadata(doc)
    return ResourceDescriptor(
        kind=str(doc.get("kind", "")),
        name=str(meta.get("name", "")),
        namespace=str(meta.get("namespace", "") or "default"),
        body=doc,
    )


def controller_from_doc(doc: Dict[str, Any]) -> ResourceDescriptor:
    """
    Convert a DaemonSet document into a node bound controller.

    The pod template is parsed here so that a broken controller fails the sync
    instead of the first round.
    """
    descriptor = descriptor_from_doc(doc)
    if not descriptor.name:
        raise ValueError("daemon set has no metadata.name")
    spec = pod_template_spec(descriptor.kind, doc)
    pod_requests(spec)
    pod_constraints(spec)
    return descriptor


def _owned_by_daemon(meta: Dict[str, Any]) -> bool:
    for ref in meta.get("ownerReferences") or []:
        if isinstance(ref, dict) and ref.get("kind") == "DaemonSet":
            return True
    return False


def unit_from_pod(doc: Dict[str, Any]) -> PlacementUnit | None:
    """
    Convert a bound Pod document into a committed unit.

    Returns None for pods that are not bound to a node, that have finished or
    that belong to a daemon controller.
    """
    meta = metadata(doc)
    spec = doc.get("spec") or {}
    descriptor = descriptor_from_doc(doc)

    if _owned_by_daemon(meta):
        LOGGER.debug("dropping daemon pod %s, it is re-expanded per round", descriptor.ref)
        return None

    phase = (doc.get("status") or {}).get("phase")
    if phase in FINISHED_PHASES:
        LOGGER.debug("skipping %s pod %s", phase, descriptor.ref)
        return None

    node_name = spec.get("nodeName")
    if not node_name:
        LOGGER.warning("skipping pod %s without spec.nodeName", descriptor.ref)
        return None

    return PlacementUnit(
        uid=f"base/{descriptor.namespace}/{descriptor.name}",
        workload="base",
        source=descriptor.ref,
        requests=pod_requests(spec),
        constraints=pod_constraints(spec),
        unit_class=UnitClass.ordinary,
        assignment=str(node_name),
    )


def description_from_documents(docs: List[Dict[str, Any]]) -> ClusterDescription:
    """Normalize Node, Pod and DaemonSet documents into a ClusterDescription."""
    machines: List[Machine] = []
    units: List[PlacementUnit] = []
    controllers: List[ResourceDescriptor] = []

    for doc in docs:
        kind = doc.get("kind")
        if kind == "Node":
            machines.append(machine_from_node(doc))
        elif kind == "Pod":
            unit = unit_from_pod(doc)
            if unit is not None:
                units.append(unit)
        elif kind == "DaemonSet":
            controllers.append(controller_from_doc(doc))
        else:
            LOGGER.warning("skipping unsupported kind %s in base cluster", kind)

    return ClusterDescription(machines=machines, units=units, node_bound_controllers=controllers)


@dataclass(frozen=True)
class StaticClusterSource(ClusterSource):
    """
    Load the base cluster from local manifest files.

    path points to a file or directory matching the module docstring.
    """

    path: Path

    def load(self) -> ClusterDescription:
        try:
            docs = load_documents(self.path)
            return description_from_documents(docs)
        except SyncError:
            raise
        except Exception as exc:
            raise SyncError(f"invalid cluster description {self.path}: {exc}") from exc
