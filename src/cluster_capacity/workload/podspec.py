"""
Pod spec interpretation.

Converts the pod spec part of a manifest into a request vector and placement
constraints. Every function raises ValueError on malformed input so the
expander and the cluster sources can wrap it in their own error type.

Effective request
Per resource, the larger of the sum over containers and the largest init
container, plus spec.overhead, plus one "pods" slot. A container without
requests but with limits requests its limits, like the API server defaults it.
"""

from __future__ import annotations

from typing import Any, Dict, List

from cluster_capacity.core.quantity import add_vectors, max_vectors, resource_vector
from cluster_capacity.core.types import (
    NodeSelectorRequirement,
    PlacementConstraints,
    ResourceVector,
    Toleration,
)

POD_SLOT = "pods"


def pod_template_spec(kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
    """Return the pod spec a manifest stamps out: its own for a Pod, spec.template.spec otherwise."""
    if kind == "Pod":
        spec = body.get("spec")
    else:
        template = (body.get("spec") or {}).get("template")
        if not isinstance(template, dict):
            raise ValueError("missing spec.template")
        spec = template.get("spec")
    if not isinstance(spec, dict):
        raise ValueError("missing pod spec")
    return spec


def _container_requests(container: Any, idx: int) -> ResourceVector:
    if not isinstance(container, dict):
        raise ValueError(f"container {idx} must be a mapping")
    resources = container.get("resources") or {}
    if not isinstance(resources, dict):
        raise ValueError(f"container {idx} resources must be a mapping")
    requests = resources.get("requests")
    if requests is None:
        requests = resources.get("limits")
    if requests is not None and not isinstance(requests, dict):
        raise ValueError(f"container {idx} requests must be a mapping")
    return resource_vector(requests)


def pod_requests(spec: Dict[str, Any]) -> ResourceVector:
    containers = spec.get("containers")
    if not isinstance(containers, list) or not containers:
        raise ValueError("pod spec has no containers")

    total: ResourceVector = {}
    for idx, container in enumerate(containers):
        total = add_vectors(total, _container_requests(container, idx))

    init_containers = spec.get("initContainers") or []
    if not isinstance(init_containers, list):
        raise ValueError("initContainers must be a list")
    for idx, container in enumerate(init_containers):
        total = max_vectors(total, _container_requests(container, idx))

    overhead = spec.get("overhead")
    if overhead:
        if not isinstance(overhead, dict):
            raise ValueError("overhead must be a mapping")
        total = add_vectors(total, resource_vector(overhead))

    total[POD_SLOT] = total.get(POD_SLOT, 0) + 1
    return total


def _requirements(raw_terms: Any) -> tuple[tuple[NodeSelectorRequirement, ...], ...]:
    if not isinstance(raw_terms, list):
        raise ValueError("nodeSelectorTerms must be a list")
    terms: List[tuple[NodeSelectorRequirement, ...]] = []
    for term in raw_terms:
        if not isinstance(term, dict):
            raise ValueError("node selector term must be a mapping")
        reqs: List[NodeSelectorRequirement] = []
        for expr in term.get("matchExpressions") or []:
            operator = str(expr.get("operator", ""))
            if operator not in {"In", "NotIn", "Exists", "DoesNotExist"}:
                raise ValueError(f"unsupported node selector operator {operator!r}")
            reqs.append(
                NodeSelectorRequirement(
                    key=str(expr.get("key", "")),
                    operator=operator,
                    values=tuple(str(v) for v in expr.get("values") or []),
                )
            )
        terms.append(tuple(reqs))
    return tuple(terms)


def pod_constraints(spec: Dict[str, Any]) -> PlacementConstraints:
    node_selector = spec.get("nodeSelector") or {}
    if not isinstance(node_selector, dict):
        raise ValueError("nodeSelector must be a mapping")

    affinity = ((spec.get("affinity") or {}).get("nodeAffinity") or {}).get(
        "requiredDuringSchedulingIgnoredDuringExecution"
    ) or {}
    required = _requirements(affinity.get("nodeSelectorTerms") or []) if affinity else ()

    tolerations = []
    for raw in spec.get("tolerations") or []:
        if not isinstance(raw, dict):
            raise ValueError("toleration must be a mapping")
        tolerations.append(
            Toleration(
                key=str(raw.get("key", "") or ""),
                operator=str(raw.get("operator", "Equal") or "Equal"),
                value=str(raw.get("value", "") or ""),
                effect=str(raw.get("effect", "") or ""),
            )
        )

    node_name = spec.get("nodeName")
    return PlacementConstraints(
        node_name=str(node_name) if node_name else None,
        node_selector={str(k): str(v) for k, v in node_selector.items()},
        required_affinity=required,
        tolerations=tuple(tolerations),
    )
