"""
Live cluster source.

Reads nodes, bound pods and daemon sets from a running cluster through the
official kubernetes client, then normalizes them exactly like the static
source does. Only read calls are made.

Design
The API calls sit behind a small KubernetesApi protocol so tests can hand in
plain dictionaries instead of a reachable cluster.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from kubernetes import client, config

from cluster_capacity.cluster.sources.base import ClusterSource
from cluster_capacity.cluster.sources.static import description_from_documents
from cluster_capacity.core.errors import SyncError
from cluster_capacity.core.types import ClusterDescription

LOGGER = logging.getLogger(__name__)

# Terminated pods no longer hold resources on their node.
ACTIVE_POD_SELECTOR = "status.phase!=Succeeded,status.phase!=Failed"


class KubernetesApi(Protocol):
    """Read only cluster API returning manifest shaped dictionaries."""

    def list_nodes(self) -> List[Dict[str, Any]]:
        """Return Node documents."""

    def list_pods(self) -> List[Dict[str, Any]]:
        """Return active Pod documents from every namespace."""

    def list_daemon_sets(self) -> List[Dict[str, Any]]:
        """Return DaemonSet documents from every namespace."""


class KubeClientApi(KubernetesApi):
    """KubernetesApi backed by the kubernetes client package."""

    def __init__(self, api_client: client.ApiClient) -> None:
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._apps = client.AppsV1Api(api_client)

    @classmethod
    def from_kubeconfig(cls, path: Path, context: Optional[str] = None) -> "KubeClientApi":
        api_client = config.new_client_from_config(config_file=str(path), context=context)
        return cls(api_client)

    def list_nodes(self) -> List[Dict[str, Any]]:
        return self._documents(self._core.list_node().items, "Node")

    def list_pods(self) -> List[Dict[str, Any]]:
        pods = self._core.list_pod_for_all_namespaces(field_selector=ACTIVE_POD_SELECTOR)
        return self._documents(pods.items, "Pod")

    def list_daemon_sets(self) -> List[Dict[str, Any]]:
        return self._documents(self._apps.list_daemon_set_for_all_namespaces().items, "DaemonSet")

    def _documents(self, items: List[Any], kind: str) -> List[Dict[str, Any]]:
        # List responses omit kind on their items.
        docs = []
        for item in items:
            doc = self._api_client.sanitize_for_serialization(item)
            doc.setdefault("kind", kind)
            docs.append(doc)
        return docs


@dataclass(frozen=True)
class LiveClusterSource(ClusterSource):
    """
    Load the base cluster from a live cluster.

    kubeconfig points to the kubeconfig file.
    context optionally selects a kubeconfig context.
    api replaces the kubernetes client, mainly for tests.
    """

    kubeconfig: Path
    context: Optional[str] = None
    api: Optional[KubernetesApi] = None

    def load(self) -> ClusterDescription:
        try:
            api = self.api or KubeClientApi.from_kubeconfig(self.kubeconfig, self.context)
            docs = api.list_nodes() + api.list_pods() + api.list_daemon_sets()
        except Exception as exc:
            raise SyncError(f"failed to read live cluster via {self.kubeconfig}: {exc}") from exc

        LOGGER.info("read %d documents from live cluster", len(docs))
        try:
            return description_from_documents(docs)
        except Exception as exc:
            raise SyncError(f"invalid live cluster state: {exc}") from exc
