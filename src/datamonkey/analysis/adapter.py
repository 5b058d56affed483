"""Normalise heterogeneous analysis requests into one capability view."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, runtime_checkable

import structlog

from datamonkey.errors import AdaptationError

log = structlog.get_logger(__name__)

#: Option names understood by :class:`AnalysisRequest`, in command order.
CAPABILITY_FIELDS: tuple[str, ...] = (
    "tree",
    "genetic_code",
    "branches",
    "ci",
    "srv",
    "resample",
    "multiple_hits",
    "site_multihit",
    "rates",
    "syn_rates",
    "grid_size",
    "starting_points",
    "error_sink",
)

_TEXT_FIELDS = ("tree", "genetic_code", "multiple_hits", "site_multihit")
_FLAG_FIELDS = ("ci", "srv", "error_sink")
_COUNT_FIELDS = ("rates", "syn_rates", "grid_size", "starting_points")


@dataclass(frozen=True)
class AnalysisRequest:
    """Read-only view over any concrete analysis request.

    Each optional option is paired with a ``<name>_set`` flag recording whether
    the caller supplied it. Numeric options only count as supplied when they
    are greater than zero, so an explicit ``0`` reads as "not supplied".
    """

    alignment: str = ""
    tree: str = ""
    tree_set: bool = False
    genetic_code: str = ""
    genetic_code_set: bool = False
    branches: tuple[str, ...] = ()
    branches_set: bool = False
    ci: str = ""
    ci_set: bool = False
    srv: str = ""
    srv_set: bool = False
    resample: float = 0.0
    resample_set: bool = False
    multiple_hits: str = ""
    multiple_hits_set: bool = False
    site_multihit: str = ""
    site_multihit_set: bool = False
    rates: int = 0
    rates_set: bool = False
    syn_rates: int = 0
    syn_rates_set: bool = False
    grid_size: int = 0
    grid_size_set: bool = False
    starting_points: int = 0
    starting_points_set: bool = False
    error_sink: str = ""
    error_sink_set: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AnalysisRequest":
        """Extract every recognised option from *payload* on a best-effort basis.

        Absent or wrongly typed options keep their default value and are
        reported as unset. Only the alignment is strict: when present it must
        be a string.
        """

        if not payload:
            raise AdaptationError("Analysis request is empty.")

        alignment = payload.get("alignment", "")
        if alignment is None:
            alignment = ""
        if not isinstance(alignment, str):
            raise AdaptationError(
                "Analysis request alignment must be a string.",
                context={"type": type(alignment).__name__},
            )
        tree = payload.get("tree")
        if not alignment and not (isinstance(tree, str) and tree):
            raise AdaptationError(
                "Analysis request must reference an alignment or a tree.",
                hint="Provide an 'alignment' dataset id (or a 'tree' for tree-only methods).",
            )

        values: dict[str, Any] = {"alignment": alignment}
        for name in _TEXT_FIELDS:
            values[name], values[f"{name}_set"] = _read_text(payload.get(name))
        for name in _FLAG_FIELDS:
            values[name], values[f"{name}_set"] = _read_flag(payload.get(name))
        for name in _COUNT_FIELDS:
            values[name], values[f"{name}_set"] = _read_count(payload.get(name))
        values["resample"], values["resample_set"] = _read_rate(
            payload.get("resample")
        )
        values["branches"], values["branches_set"] = _read_branches(
            payload.get("branches")
        )
        return cls(**values)


@runtime_checkable
class SupportsAnalysisRequest(Protocol):
    """Request variants that know how to project themselves into the view."""

    def to_analysis_request(self) -> AnalysisRequest:
        """Return the normalised capability view for this request."""


def adapt_request(value: Any) -> AnalysisRequest:
    """Return the :class:`AnalysisRequest` view of *value*.

    Adaptation is idempotent: an existing view is returned unchanged. Request
    models provide their own projection, plain mappings are read key by key
    and any other object is read attribute by attribute.
    """

    if value is None:
        raise AdaptationError("Analysis request is missing.")
    if isinstance(value, AnalysisRequest):
        return value
    if isinstance(value, SupportsAnalysisRequest):
        return value.to_analysis_request()
    if isinstance(value, Mapping):
        return AnalysisRequest.from_mapping(value)

    payload = {
        name: getattr(value, name)
        for name in ("alignment", *CAPABILITY_FIELDS)
        if hasattr(value, name)
    }
    if not payload:
        log.warning("analysis.adapter.unsupported", type=type(value).__name__)
        raise AdaptationError(
            f"Unsupported analysis request type '{type(value).__name__}'.",
            context={"type": type(value).__name__},
        )
    return AnalysisRequest.from_mapping(payload)


def _read_text(value: Any) -> tuple[str, bool]:
    if isinstance(value, str):
        return value, value != ""
    return "", False


def _read_flag(value: Any) -> tuple[str, bool]:
    # Booleans are always explicit; tri-state strings only when non-empty.
    if isinstance(value, bool):
        return ("Yes" if value else "No"), True
    if isinstance(value, str):
        return value, value != ""
    return "", False


def _read_count(value: Any) -> tuple[int, bool]:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0, False
    return value, value > 0


def _read_rate(value: Any) -> tuple[float, bool]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0, False
    return float(value), value > 0


def _read_branches(value: Any) -> tuple[tuple[str, ...], bool]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        return (), False
    if not all(isinstance(item, str) for item in value):
        return (), False
    branches = tuple(value)
    return branches, len(branches) > 0


__all__ = [
    "AnalysisRequest",
    "CAPABILITY_FIELDS",
    "SupportsAnalysisRequest",
    "adapt_request",
]
