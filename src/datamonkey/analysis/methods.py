"""HyPhy method registry and command construction."""

from __future__ import annotations

import json
import unicodedata
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Mapping, Protocol, runtime_checkable

import structlog

from datamonkey.analysis.adapter import AnalysisRequest, adapt_request
from datamonkey.errors import ResultError, ValidationError

if TYPE_CHECKING:
    from datamonkey.analysis.datasets import Dataset

log = structlog.get_logger(__name__)


class MethodType(str, Enum):
    """HyPhy analyses that can be submitted."""

    FEL = "fel"
    BUSTED = "busted"
    ABSREL = "absrel"
    SLAC = "slac"
    MULTIHIT = "multihit"
    GARD = "gard"
    MEME = "meme"
    FUBAR = "fubar"
    CONTRAST_FEL = "contrast-fel"
    RELAX = "relax"
    BGM = "bgm"
    NRM = "nrm"
    FADE = "fade"
    SLATKIN = "slatkin"

    def __str__(self) -> str:
        return self.value


METHOD_DESCRIPTIONS: Final[Mapping[MethodType, str]] = {
    MethodType.FEL: "Fixed Effects Likelihood: pervasive site-level selection.",
    MethodType.BUSTED: "Branch-site Unrestricted Statistical Test for Episodic Diversification.",
    MethodType.ABSREL: "Adaptive Branch-Site Random Effects Likelihood.",
    MethodType.SLAC: "Single-Likelihood Ancestor Counting.",
    MethodType.MULTIHIT: "Test for multiple simultaneous nucleotide substitutions.",
    MethodType.GARD: "Genetic Algorithm for Recombination Detection.",
    MethodType.MEME: "Mixed Effects Model of Evolution: episodic site-level selection.",
    MethodType.FUBAR: "Fast Unconstrained Bayesian AppRoximation.",
    MethodType.CONTRAST_FEL: "Compare site-level selection between sets of branches.",
    MethodType.RELAX: "Detect relaxation or intensification of selection.",
    MethodType.BGM: "Bayesian Graphical Model of co-evolving sites.",
    MethodType.NRM: "Fit a non-reversible nucleotide model.",
    MethodType.FADE: "FUBAR Approach to Directional Evolution.",
    MethodType.SLATKIN: "Slatkin-Maddison test for phylogeny-trait association.",
}

#: Methods that operate on a tree alone and take no alignment.
TREE_ONLY_METHODS: Final[frozenset[MethodType]] = frozenset({MethodType.SLATKIN})

#: Dataset types HyPhy can read as an alignment.
ALIGNMENT_TYPES: Final[frozenset[str]] = frozenset({"fasta", "nexus", "fas"})


@runtime_checkable
class ComputeMethod(Protocol):
    """External analysis program bound to one request."""

    method_type: MethodType

    def command(self) -> str:
        """Return the fully resolved command line."""

    def validate_input(self, dataset: "Dataset") -> None:
        """Raise :class:`ValidationError` when *dataset* is unusable."""

    def parse_result(self, raw: str) -> Any:
        """Decode the program output."""

    def output_path(self, job_id: str) -> Path:
        """Return the results file for *job_id*."""

    def log_path(self, job_id: str) -> Path:
        """Return the log file for *job_id*."""


class HyPhyMethod:
    """Bind a normalised request to the HyPhy command line for one method.

    Built without a request, the method only resolves result and log paths,
    which is enough to look a job up by its id.
    """

    def __init__(
        self,
        request: Any,
        method_type: MethodType | str,
        *,
        hyphy_path: str = "hyphy",
        results_dir: Path | str = ".",
        data_dir: Path | str = ".",
    ) -> None:
        self.request: AnalysisRequest | None = (
            adapt_request(request) if request is not None else None
        )
        self.method_type = MethodType(method_type)
        self.hyphy_path = hyphy_path
        self.results_dir = Path(results_dir)
        self.data_dir = Path(data_dir)

    def __repr__(self) -> str:
        return f"HyPhyMethod(method_type={self.method_type.value!r})"

    @property
    def is_tree_only(self) -> bool:
        return self.method_type in TREE_ONLY_METHODS

    def command(self) -> str:
        request = self.request
        if request is None:
            raise ValidationError(
                f"No request is bound to the {self.method_type.value} method.",
                context={"method": self.method_type.value},
            )
        parts = [self.hyphy_path, self.method_type.value]

        if self.is_tree_only:
            if request.tree_set:
                parts += ["--tree", str(self.data_dir / request.tree)]
            return " ".join(parts)

        parts += ["--alignment", str(self.data_dir / request.alignment)]
        if request.tree_set:
            parts += ["--tree", str(self.data_dir / request.tree)]
        if request.genetic_code_set:
            parts += ["--code", request.genetic_code]
        if request.branches_set and request.branches:
            parts += ["--branches", ",".join(request.branches)]
        if request.ci_set:
            parts += ["--ci", request.ci]
        if request.srv_set:
            parts += ["--srv", request.srv]
        if request.resample_set:
            parts += ["--resample", _format_number(request.resample)]
        if request.multiple_hits_set:
            parts += ["--multiple-hits", request.multiple_hits]
        if request.site_multihit_set:
            parts += ["--site-multihit", request.site_multihit]
        if request.rates_set:
            parts += ["--rates", str(request.rates)]
        if request.syn_rates_set:
            parts += ["--syn-rates", str(request.syn_rates)]
        if request.grid_size_set:
            parts += ["--grid-size", str(request.grid_size)]
        if request.starting_points_set:
            parts += ["--starting-points", str(request.starting_points)]
        if request.error_sink_set:
            parts += ["--error-sink", request.error_sink]
        return " ".join(parts)

    def validate_input(self, dataset: "Dataset") -> None:
        if self.is_tree_only:
            return
        dataset_type = dataset.type.lower()
        if dataset_type not in ALIGNMENT_TYPES:
            raise ValidationError(
                f"Invalid dataset type for {self.method_type.value} analysis: "
                f"{dataset.type}. Expected 'fasta' or 'nexus'.",
                context={"method": self.method_type.value, "dataset": dataset.id},
            )

    def parse_result(self, raw: str) -> Any:
        cleaned = clean_json_string(raw)
        if not cleaned and raw:
            log.warning(
                "analysis.method.clean_emptied",
                method=self.method_type.value,
                length=len(raw),
            )
            cleaned = raw
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise ResultError(
                f"Unable to decode {self.method_type.value} results: {exc}",
                context={"method": self.method_type.value},
            ) from exc

    def output_path(self, job_id: str) -> Path:
        return self.results_dir / f"{self.method_type.value}_{job_id}_results.json"

    def log_path(self, job_id: str) -> Path:
        return self.results_dir / f"{self.method_type.value}_{job_id}.log"


def clean_json_string(raw: str) -> str:
    """Strip noise HyPhy sometimes writes around its JSON output.

    Non-printable characters and a leading byte order mark are dropped, and
    the text is trimmed to the span between the first opening and the last
    closing bracket.
    """

    cleaned = "".join(
        char for char in raw if char.isspace() or _is_printable(char)
    )
    cleaned = cleaned.removeprefix("\ufeff").strip()
    if not cleaned.startswith(("{", "[")):
        starts = [index for index in (cleaned.find("{"), cleaned.find("[")) if index >= 0]
        if starts:
            cleaned = cleaned[min(starts) :]
    if not cleaned.endswith(("}", "]")):
        end = max(cleaned.rfind("}"), cleaned.rfind("]"))
        if end >= 0:
            cleaned = cleaned[: end + 1]
    return cleaned


def resolve_method_type(value: MethodType | str) -> MethodType:
    """Return the :class:`MethodType` named by *value*."""

    try:
        return MethodType(value)
    except ValueError as exc:
        available = ", ".join(method.value for method in MethodType)
        raise ValidationError(
            f"Unknown method type '{value}'.",
            hint=f"Choose one of: {available}.",
            context={"method": str(value)},
        ) from exc


def _is_printable(char: str) -> bool:
    return unicodedata.category(char)[0] != "C"


def _format_number(value: float) -> str:
    return f"{value:g}"


__all__ = [
    "ALIGNMENT_TYPES",
    "ComputeMethod",
    "HyPhyMethod",
    "METHOD_DESCRIPTIONS",
    "MethodType",
    "TREE_ONLY_METHODS",
    "clean_json_string",
    "resolve_method_type",
]
