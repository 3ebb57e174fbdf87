"""
Kubernetes resource quantities.

Quantities arrive as strings such as "500m", "1.5", "2Gi" or "1e3".
We parse them with Decimal to avoid float drift and then round up to integers:
cpu becomes millicores, everything else stays in its base unit.

Rounding up matches the scheduler, which never lets a fractional request
fit into less than it asked for.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from cluster_capacity.core.types import ResourceVector

BINARY_SUFFIXES = {
    "Ki": Decimal(1024),
    "Mi": Decimal(1024) ** 2,
    "Gi": Decimal(1024) ** 3,
    "Ti": Decimal(1024) ** 4,
    "Pi": Decimal(1024) ** 5,
    "Ei": Decimal(1024) ** 6,
}

DECIMAL_SUFFIXES = {
    "n": Decimal("0.000000001"),
    "u": Decimal("0.000001"),
    "m": Decimal("0.001"),
    "": Decimal(1),
    "k": Decimal(1000),
    "M": Decimal(1000) ** 2,
    "G": Decimal(1000) ** 3,
    "T": Decimal(1000) ** 4,
    "P": Decimal(1000) ** 5,
    "E": Decimal(1000) ** 6,
}

_QUANTITY_RE = re.compile(r"^([+-]?[0-9.]+(?:[eE][+-]?[0-9]+)?)([A-Za-z]*)$")


def parse_quantity(raw: Any) -> Decimal:
    """
    Parse a quantity into a Decimal in base units.

    Raises ValueError for anything that is not a valid non negative quantity.
    """
    if isinstance(raw, bool):
        raise ValueError(f"invalid quantity {raw!r}")
    if isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    else:
        text = str(raw).strip()
        match = _QUANTITY_RE.match(text)
        if match is None:
            raise ValueError(f"invalid quantity {raw!r}")
        number, suffix = match.groups()
        if suffix in BINARY_SUFFIXES:
            multiplier = BINARY_SUFFIXES[suffix]
        elif suffix in DECIMAL_SUFFIXES:
            multiplier = DECIMAL_SUFFIXES[suffix]
        else:
            raise ValueError(f"invalid quantity suffix in {raw!r}")
        try:
            value = Decimal(number) * multiplier
        except InvalidOperation as exc:
            raise ValueError(f"invalid quantity {raw!r}") from exc

    if value < 0:
        raise ValueError(f"negative quantity {raw!r}")
    return value


def to_amount(resource: str, raw: Any) -> int:
    """Convert one quantity to the integer unit used for that resource."""
    value = parse_quantity(raw)
    if resource == "cpu":
        value = value * 1000
    return int(math.ceil(value))


def resource_vector(raw: Mapping[str, Any] | None) -> ResourceVector:
    """
    Convert a requests or capacity mapping into a ResourceVector.

    Example
    {"cpu": "250m", "memory": "1Gi"} becomes {"cpu": 250, "memory": 1073741824}
    """
    if not raw:
        return {}
    return {str(name): to_amount(str(name), value) for name, value in raw.items()}


def add_vectors(left: ResourceVector, right: Mapping[str, int]) -> ResourceVector:
    out = dict(left)
    for name, amount in right.items():
        out[name] = out.get(name, 0) + amount
    return out


def max_vectors(left: ResourceVector, right: Mapping[str, int]) -> ResourceVector:
    out = dict(left)
    for name, amount in right.items():
        out[name] = max(out.get(name, 0), amount)
    return out
