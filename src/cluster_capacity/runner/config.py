"""
Session configuration.

A session file names the base cluster, the applications in placement order and
the candidate machine. Keys follow the camelCase style of Kubernetes manifests.

Schema example
cluster:
  customConfig: ./cluster        # static description, file or directory
  kubeConfig: ~/.kube/config     # or a live cluster, never both
appList:
  - name: web
    path: ./apps/web
  - name: db
    path: ./charts/db
    chart: true
newNode: ./node.yaml

Relative paths are resolved against the directory holding the session file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

from cluster_capacity.core.errors import ConfigurationError
from cluster_capacity.planner.planner import DEFAULT_MAX_ROUNDS
from cluster_capacity.planner.report import DEFAULT_REPORT_PATH
from cluster_capacity.workload.loader import AppSpec


@dataclass(frozen=True)
class SessionConfig:
    """
    Session configuration.

    kube_config
    Path of a kubeconfig for a live base cluster.

    custom_cluster
    Path of a static base cluster description.

    apps
    Applications in placement order.

    new_node
    Path of the candidate machine Node file.

    use_ordering_policy
    Submit constrained units first instead of in expansion order.

    interactive
    Ask for confirmation after each successful workload.

    max_rounds
    Upper bound on trial sizes, 0 to max_rounds - 1.

    timeout_seconds
    Stop between rounds after this long. None disables it.

    report_path
    Where the report of a successful session is written.
    """

    new_node: Path
    apps: List[AppSpec] = field(default_factory=list)
    kube_config: Optional[Path] = None
    custom_cluster: Optional[Path] = None
    use_ordering_policy: bool = False
    interactive: bool = False
    max_rounds: int = DEFAULT_MAX_ROUNDS
    timeout_seconds: Optional[float] = None
    report_path: Path = DEFAULT_REPORT_PATH

    def validate(self) -> None:
        """
        Reject conflicting or missing inputs before any work starts.

        Exactly one cluster source must be set and every path must exist.
        """
        if (self.kube_config is None) == (self.custom_cluster is None):
            raise ConfigurationError("exactly one of kubeConfig and customConfig must be set")

        for label, path in (
            ("kubeConfig", self.kube_config),
            ("customConfig", self.custom_cluster),
            ("newNode", self.new_node),
        ):
            if path is not None and not path.exists():
                raise ConfigurationError(f"invalid path of {label}: {path}")

        seen: set[str] = set()
        for app in self.apps:
            if not app.name:
                raise ConfigurationError("every app needs a name")
            if app.name in seen:
                raise ConfigurationError(f"duplicate app name {app.name}")
            seen.add(app.name)
            if not app.path.exists():
                raise ConfigurationError(f"invalid path of {app.name} app: {app.path}")

        if self.max_rounds < 0:
            raise ConfigurationError("maxRounds must not be negative")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigurationError("timeout must be positive")


def _resolve(base_dir: Path, raw: Any) -> Optional[Path]:
    if raw in (None, ""):
        return None
    path = Path(str(raw)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path


def _app_from_dict(base_dir: Path, idx: int, obj: Any) -> AppSpec:
    if not isinstance(obj, dict):
        raise ConfigurationError(f"appList item {idx} must be a mapping")
    path = _resolve(base_dir, obj.get("path"))
    if path is None:
        raise ConfigurationError(f"appList item {idx} missing path")
    return AppSpec(name=str(obj.get("name", "")), path=path, chart=bool(obj.get("chart", False)))


def load_session_config(path: Path) -> SessionConfig:
    """
    Read a session file into a SessionConfig.

    Optional keys useOrderingPolicy, interactive, maxRounds and timeoutSeconds
    set the matching fields. Command line flags may override them afterwards.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must hold a mapping")

    # Accept both a bare spec and a full custom resource with a spec block.
    spec = data.get("spec", data)
    if not isinstance(spec, dict):
        raise ConfigurationError("spec must be a mapping")
    base_dir = path.parent

    cluster = spec.get("cluster") or {}
    if not isinstance(cluster, dict):
        raise ConfigurationError("cluster must be a mapping")

    raw_apps = spec.get("appList") or []
    if not isinstance(raw_apps, list):
        raise ConfigurationError("appList must be a list")

    new_node = _resolve(base_dir, spec.get("newNode"))
    if new_node is None:
        raise ConfigurationError("newNode is required")

    timeout = spec.get("timeoutSeconds")
    try:
        return SessionConfig(
            new_node=new_node,
            apps=[_app_from_dict(base_dir, i, a) for i, a in enumerate(raw_apps)],
            kube_config=_resolve(base_dir, cluster.get("kubeConfig")),
            custom_cluster=_resolve(base_dir, cluster.get("customConfig")),
            use_ordering_policy=bool(spec.get("useOrderingPolicy", False)),
            interactive=bool(spec.get("interactive", False)),
            max_rounds=int(spec.get("maxRounds", DEFAULT_MAX_ROUNDS)),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid value in config file {path}: {exc}") from exc
