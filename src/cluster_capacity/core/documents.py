"""
Manifest document reading.

Shared by the manifest loader, the static cluster source and the machine
template loader. Everything here raises plain OSError, ValueError or
yaml.YAMLError. Callers translate those into their own error type.

Accepted inputs
A single .yaml, .yml or .json file, or a directory walked recursively in
sorted order. Multi document YAML is split, empty documents are dropped and
"kind: List" documents are flattened into their items.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, List

import yaml

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


def manifest_files(path: Path) -> List[Path]:
    """Return manifest files under path, sorted for deterministic output."""
    if path.is_file():
        return [path]
    if not path.is_dir():
        raise FileNotFoundError(f"no such file or directory: {path}")
    return sorted(p for p in path.rglob("*") if p.is_file() and p.suffix in MANIFEST_SUFFIXES)


def parse_documents(text: str, origin: str = "<string>") -> List[dict[str, Any]]:
    """Parse YAML or JSON text into a flat list of mapping documents."""
    docs: List[dict[str, Any]] = []
    for raw in yaml.safe_load_all(text):
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ValueError(f"{origin}: document is not a mapping")
        docs.extend(_flatten(raw, origin))
    return docs


def load_documents(path: Path) -> List[dict[str, Any]]:
    docs: List[dict[str, Any]] = []
    for file_path in manifest_files(path):
        docs.extend(parse_documents(file_path.read_text(encoding="utf-8"), str(file_path)))
    return docs


def _flatten(doc: dict[str, Any], origin: str) -> Iterator[dict[str, Any]]:
    if doc.get("kind") != "List":
        yield doc
        return
    for item in doc.get("items") or []:
        if not isinstance(item, dict):
            raise ValueError(f"{origin}: list item is not a mapping")
        yield from _flatten(item, origin)


def metadata(doc: dict[str, Any]) -> dict[str, Any]:
    meta = doc.get("metadata") or {}
    if not isinstance(meta, dict):
        raise ValueError("metadata must be a mapping")
    return meta
