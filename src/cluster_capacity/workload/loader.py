"""
Manifest loader.

Reads an application's manifests into a Workload.

An application is either raw manifests (a file or a directory) or a templated
package. Templated packages are rendered by a ChartRenderer hook, which
returns the rendered multi document YAML. No renderer ships with this
package, so chart apps without one are a configuration error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from cluster_capacity.core.documents import load_documents, metadata, parse_documents
from cluster_capacity.core.errors import ConfigurationError, MalformedWorkloadError
from cluster_capacity.core.types import ResourceDescriptor, Workload, WorkloadOrigin

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppSpec:
    """
    One application entry from the session file.

    name labels the workload in reports.
    path is a manifest file, a manifest directory or a package directory.
    chart marks path as a templated package.
    """

    name: str
    path: Path
    chart: bool = False


class ChartRenderer(Protocol):
    """Render a templated package into manifest text."""

    def render(self, name: str, path: Path) -> str:
        """Return rendered multi document YAML."""


def _descriptor(doc: Dict[str, Any], origin: str) -> ResourceDescriptor:
    kind = doc.get("kind")
    if not isinstance(kind, str) or not kind:
        raise MalformedWorkloadError(f"{origin}: document has no kind")
    try:
        meta = metadata(doc)
    except ValueError as exc:
        raise MalformedWorkloadError(f"{origin}: {exc}") from exc
    name = meta.get("name")
    if not name:
        raise MalformedWorkloadError(f"{origin}: {kind} has no metadata.name")
    return ResourceDescriptor(
        kind=kind,
        name=str(name),
        namespace=str(meta.get("namespace") or "default"),
        body=doc,
    )


class ManifestLoader:
    """Load AppSpecs into Workloads."""

    def __init__(self, renderer: Optional[ChartRenderer] = None) -> None:
        self._renderer = renderer

    def load(self, app: AppSpec) -> Workload:
        if app.chart:
            docs = self._render(app)
            origin = WorkloadOrigin.templated
        else:
            try:
                docs = load_documents(app.path)
            except (OSError, ValueError, yaml.YAMLError) as exc:
                raise MalformedWorkloadError(f"{app.name}: cannot read {app.path}: {exc}") from exc
            origin = WorkloadOrigin.raw

        descriptors = tuple(_descriptor(doc, app.name) for doc in docs)
        LOGGER.info("loaded app %s: %d descriptors", app.name, len(descriptors))
        return Workload(name=app.name, descriptors=descriptors, origin=origin)

    def load_all(self, apps: List[AppSpec]) -> List[Workload]:
        return [self.load(app) for app in apps]

    def _render(self, app: AppSpec) -> List[Dict[str, Any]]:
        if self._renderer is None:
            raise ConfigurationError(f"{app.name}: chart apps need a chart renderer")
        text = self._renderer.render(app.name, app.path)
        try:
            return parse_documents(text, f"{app.name} (rendered)")
        except (ValueError, yaml.YAMLError) as exc:
            raise MalformedWorkloadError(f"{app.name}: invalid rendered chart: {exc}") from exc
