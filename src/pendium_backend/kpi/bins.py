from __future__ import annotations

import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import KpiInputError

OVERFLOW_LABEL = "Other"


def parse_bins(raw: Optional[str]) -> Optional[Tuple[float, ...]]:
    """
    Parse a comma separated boundary list such as ``"0,1,5,10"``.

    Returns ``None`` when nothing was supplied so callers can fall back to the
    configured defaults.
    """

    if raw is None or not raw.strip():
        return None
    try:
        boundaries = tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise KpiInputError(f"bins must be a comma separated list of numbers: {raw!r}") from exc
    validate_bins(boundaries)
    return boundaries


def validate_bins(boundaries: Sequence[float]) -> None:
    if len(boundaries) < 2:
        raise KpiInputError("bins needs at least two boundaries")
    if any(not math.isfinite(value) for value in boundaries):
        raise KpiInputError("bins must be finite numbers")
    if any(later <= earlier for earlier, later in zip(boundaries, boundaries[1:])):
        raise KpiInputError("bins must be strictly increasing")


def _format_boundary(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def bin_values(values: Mapping[str, Optional[float]], boundaries: Sequence[float]) -> Dict[str, object]:
    """
    Histogram per-user values into half-open ``[b_i, b_i+1)`` buckets.

    Values below the first boundary or at/above the last one land in the
    ``Other`` bucket; users whose value is ``None`` are left out entirely.
    """

    validate_bins(boundaries)
    members: List[List[str]] = [[] for _ in range(len(boundaries) - 1)]
    overflow: List[str] = []

    for user, value in values.items():
        if value is None:
            continue
        index = _bucket_index(value, boundaries)
        if index is None:
            overflow.append(user)
        else:
            members[index].append(user)

    buckets = [
        {
            "label": f"{_format_boundary(lower)}-{_format_boundary(upper)}",
            "lower": lower,
            "upper": upper,
            "count": len(users),
            "users": sorted(users),
        }
        for lower, upper, users in zip(boundaries, boundaries[1:], members)
    ]
    buckets.append(
        {
            "label": OVERFLOW_LABEL,
            "lower": None,
            "upper": None,
            "count": len(overflow),
            "users": sorted(overflow),
        }
    )
    return {
        "boundaries": list(boundaries),
        "buckets": buckets,
        "totalUsers": sum(bucket["count"] for bucket in buckets),
    }


def _bucket_index(value: float, boundaries: Sequence[float]) -> Optional[int]:
    if value < boundaries[0] or value >= boundaries[-1]:
        return None
    for index in range(len(boundaries) - 1):
        if boundaries[index] <= value < boundaries[index + 1]:
            return index
    return None
