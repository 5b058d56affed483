"""Pydantic models describing the per-method analysis request payloads."""

from __future__ import annotations

from typing import ClassVar, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from datamonkey.analysis.adapter import AnalysisRequest
from datamonkey.analysis.methods import MethodType


class MethodRequest(BaseModel):
    """Base class for concrete method request payloads.

    ``capabilities`` lists the options a variant carries into the normalised
    :class:`AnalysisRequest`; anything else on the model is descriptive only.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    capabilities: ClassVar[tuple[str, ...]] = ()

    def to_analysis_request(self) -> AnalysisRequest:
        payload = {
            name: getattr(self, name)
            for name in ("alignment", *self.capabilities)
            if name in type(self).model_fields
        }
        return AnalysisRequest.from_mapping(payload)

    @field_validator(
        "resample",
        "rates",
        "syn_rates",
        "grid_size",
        "starting_points",
        check_fields=False,
    )
    @classmethod
    def _non_negative(cls, value: float | int) -> float | int:
        if value < 0:
            raise ValueError("must be non-negative")
        return value


class _AlignmentRequest(MethodRequest):
    alignment: str = Field(..., min_length=1, description="Alignment dataset id.")
    tree: str = Field("", description="Optional tree dataset id.")
    genetic_code: str = Field("", description="Genetic code name, e.g. Universal.")


class _BranchRequest(_AlignmentRequest):
    branches: list[str] = Field(
        default_factory=list,
        description="Branches to include in the analysis. Empty means all.",
    )


class FelRequest(_BranchRequest):
    """Fixed effects likelihood site selection analysis."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "ci",
        "srv",
        "resample",
        "multiple_hits",
        "site_multihit",
    )

    ci: bool = Field(False, description="Compute profile confidence intervals.")
    srv: bool = Field(False, description="Include synonymous rate variation.")
    resample: float = Field(0, description="Parametric bootstrap replicates.")
    multiple_hits: str = Field(
        "", description="Multiple hit model: None, Double, Double+Triple."
    )
    site_multihit: str = Field("", description="Estimate site-level multi-hit rates.")


class BustedRequest(_BranchRequest):
    """Branch-site unrestricted statistical test for episodic diversification."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "srv",
        "rates",
        "syn_rates",
        "grid_size",
        "starting_points",
        "multiple_hits",
        "error_sink",
    )

    srv: bool = Field(False, description="Include synonymous rate variation.")
    rates: int = Field(0, description="Number of omega rate classes.")
    syn_rates: int = Field(0, description="Number of synonymous rate classes.")
    grid_size: int = Field(0, description="Initial grid size for optimisation.")
    starting_points: int = Field(0, description="Number of initial random guesses.")
    multiple_hits: str = Field("", description="Multiple hit model.")
    error_sink: bool = Field(False, description="Include an error sink rate class.")


class AbsrelRequest(_BranchRequest):
    """Adaptive branch-site random effects likelihood."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "srv",
        "multiple_hits",
    )

    srv: bool = Field(False, description="Include synonymous rate variation.")
    multiple_hits: str = Field("", description="Multiple hit model.")
    blb: float = Field(
        0,
        ge=0,
        le=1,
        description="Bag of little bootstraps rate. Accepted but not passed to HyPhy.",
    )


class SlacRequest(_BranchRequest):
    """Single likelihood ancestor counting."""

    capabilities: ClassVar[tuple[str, ...]] = ("tree", "genetic_code", "branches")

    samples: int = Field(
        100,
        ge=0,
        description="Ancestral reconstruction samples. Accepted but not passed to HyPhy.",
    )


class MultihitRequest(_BranchRequest):
    """Test for multiple nucleotide substitutions."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "rates",
    )

    rates: int = Field(0, description="Number of omega rate classes.")
    triple_islands: str = Field(
        "",
        description="Treat serine islands separately. Accepted but not passed to HyPhy.",
    )


class GardRequest(_AlignmentRequest):
    """Genetic algorithm for recombination detection."""

    capabilities: ClassVar[tuple[str, ...]] = ("genetic_code", "rates")

    rates: int = Field(0, description="Number of site rate classes.")
    data_type: str = Field(
        "codon", description="Alignment data type. Accepted but not passed to HyPhy."
    )


class MemeRequest(_BranchRequest):
    """Mixed effects model of evolution."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "rates",
        "resample",
        "multiple_hits",
        "site_multihit",
    )

    rates: int = Field(0, description="Number of omega rate classes.")
    resample: float = Field(0, description="Parametric bootstrap replicates.")
    multiple_hits: str = Field("", description="Multiple hit model.")
    site_multihit: str = Field("", description="Estimate site-level multi-hit rates.")


class FubarRequest(_BranchRequest):
    """Fast unconstrained Bayesian approximation."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "grid_size",
    )

    grid_size: int = Field(0, description="Number of grid points per dimension.")
    concentration: float = Field(
        0.5,
        gt=0,
        description="Dirichlet prior concentration. Accepted but not passed to HyPhy.",
    )


class ContrastFelRequest(_BranchRequest):
    """Contrast-FEL comparison of selective pressure between branch sets."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "srv",
    )

    srv: bool = Field(False, description="Include synonymous rate variation.")


class RelaxRequest(_BranchRequest):
    """Test for relaxation or intensification of selection."""

    capabilities: ClassVar[tuple[str, ...]] = (
        "tree",
        "genetic_code",
        "branches",
        "rates",
        "srv",
    )

    rates: int = Field(0, description="Number of omega rate classes.")
    srv: bool = Field(False, description="Include synonymous rate variation.")
    mode: str = Field(
        "Classic mode", description="RELAX run mode. Accepted but not passed to HyPhy."
    )


class BgmRequest(_BranchRequest):
    """Bayesian graphical model of co-evolving sites."""

    capabilities: ClassVar[tuple[str, ...]] = ("tree", "genetic_code", "branches")


class NrmRequest(_AlignmentRequest):
    """Non-reversible model fit."""

    capabilities: ClassVar[tuple[str, ...]] = ("tree", "genetic_code")


class FadeRequest(_BranchRequest):
    """FUBAR approach to directional evolution."""

    capabilities: ClassVar[tuple[str, ...]] = ("tree", "branches", "grid_size")

    grid_size: int = Field(0, description="Number of grid points per dimension.")


class SlatkinRequest(MethodRequest):
    """Slatkin-Maddison migration test. Operates on a tree only."""

    capabilities: ClassVar[tuple[str, ...]] = ("tree",)

    tree: str = Field(..., min_length=1, description="Tree dataset id.")


REQUEST_MODELS: Mapping[MethodType, type[MethodRequest]] = {
    MethodType.FEL: FelRequest,
    MethodType.BUSTED: BustedRequest,
    MethodType.ABSREL: AbsrelRequest,
    MethodType.SLAC: SlacRequest,
    MethodType.MULTIHIT: MultihitRequest,
    MethodType.GARD: GardRequest,
    MethodType.MEME: MemeRequest,
    MethodType.FUBAR: FubarRequest,
    MethodType.CONTRAST_FEL: ContrastFelRequest,
    MethodType.RELAX: RelaxRequest,
    MethodType.BGM: BgmRequest,
    MethodType.NRM: NrmRequest,
    MethodType.FADE: FadeRequest,
    MethodType.SLATKIN: SlatkinRequest,
}


def request_model_for(method_type: MethodType | str) -> type[MethodRequest]:
    """Return the request model registered for *method_type*."""

    return REQUEST_MODELS[MethodType(method_type)]


__all__ = [
    "AbsrelRequest",
    "BgmRequest",
    "BustedRequest",
    "ContrastFelRequest",
    "FadeRequest",
    "FelRequest",
    "FubarRequest",
    "GardRequest",
    "MemeRequest",
    "MethodRequest",
    "MultihitRequest",
    "NrmRequest",
    "REQUEST_MODELS",
    "RelaxRequest",
    "SlacRequest",
    "SlatkinRequest",
    "request_model_for",
]
