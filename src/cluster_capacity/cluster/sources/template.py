"""
Candidate machine template loader.

The candidate machine is described by a single Node document, the same shape
a base machine has in a static cluster description.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from cluster_capacity.cluster.sources.static import machine_from_node
from cluster_capacity.core.documents import load_documents
from cluster_capacity.core.errors import ConfigurationError
from cluster_capacity.core.types import MachineTemplate


def load_machine_template(path: Path) -> MachineTemplate:
    """
    Read a Node file into a MachineTemplate.

    The file must hold exactly one Node document.
    """
    try:
        docs = load_documents(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot read machine template {path}: {exc}") from exc

    nodes = [d for d in docs if d.get("kind") == "Node"]
    if len(docs) != 1 or len(nodes) != 1:
        raise ConfigurationError(f"machine template {path} is not a single Node document")

    try:
        machine = machine_from_node(nodes[0])
    except ValueError as exc:
        raise ConfigurationError(f"invalid machine template {path}: {exc}") from exc

    return MachineTemplate(
        name=machine.name,
        capacity=machine.capacity,
        labels=machine.labels,
        taints=machine.taints,
    )
