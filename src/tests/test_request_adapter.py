"""Tests for normalising analysis requests into the capability view."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from datamonkey.analysis.adapter import AnalysisRequest, adapt_request
from datamonkey.analysis.requests import FelRequest, SlatkinRequest
from datamonkey.errors import AdaptationError


def test_mapping_with_missing_option_reports_unset() -> None:
    request = adapt_request({"alignment": "x.fas"})

    assert request.alignment == "x.fas"
    assert request.tree == ""
    assert request.tree_set is False
    assert request.resample == 0.0
    assert request.resample_set is False
    assert request.branches == ()
    assert request.branches_set is False


def test_explicit_zero_numeric_reads_as_unset() -> None:
    request = adapt_request({"alignment": "x.fas", "resample": 0, "rates": 0})

    assert request.resample_set is False
    assert request.rates_set is False


def test_positive_numerics_are_set() -> None:
    request = adapt_request({"alignment": "x.fas", "resample": 2.5, "grid_size": 20})

    assert request.resample == 2.5
    assert request.resample_set is True
    assert request.grid_size == 20
    assert request.grid_size_set is True


def test_booleans_are_always_set() -> None:
    request = adapt_request({"alignment": "x.fas", "ci": False, "srv": True})

    assert (request.ci, request.ci_set) == ("No", True)
    assert (request.srv, request.srv_set) == ("Yes", True)


def test_tri_state_strings_set_only_when_non_empty() -> None:
    request = adapt_request(
        {"alignment": "x.fas", "multiple_hits": "", "site_multihit": "Estimate"}
    )

    assert request.multiple_hits_set is False
    assert (request.site_multihit, request.site_multihit_set) == ("Estimate", True)


def test_wrongly_typed_options_are_ignored() -> None:
    request = adapt_request(
        {"alignment": "x.fas", "rates": "3", "branches": "Internal", "ci": 1}
    )

    assert request.rates_set is False
    assert request.branches_set is False
    assert request.ci_set is False


def test_adaptation_is_idempotent() -> None:
    request = AnalysisRequest(alignment="x.fas")

    assert adapt_request(request) is request


def test_request_models_project_themselves() -> None:
    model = FelRequest(alignment="x.fas", branches=["Foreground"], resample=10)

    request = adapt_request(model)

    assert request.branches == ("Foreground",)
    assert request.branches_set is True
    assert request.resample_set is True
    assert request.rates_set is False


def test_tree_only_request_has_no_alignment() -> None:
    request = adapt_request(SlatkinRequest(tree="tree.nwk"))

    assert request.alignment == ""
    assert (request.tree, request.tree_set) == ("tree.nwk", True)


def test_attribute_objects_are_read_best_effort() -> None:
    request = adapt_request(SimpleNamespace(alignment="x.fas", genetic_code="Universal"))

    assert request.genetic_code == "Universal"
    assert request.genetic_code_set is True


@pytest.mark.parametrize(
    "value",
    [
        None,
        {},
        {"alignment": 42},
        {"genetic_code": "Universal"},
        SimpleNamespace(unrelated=True),
    ],
    ids=["none", "empty", "non-string-alignment", "no-dataset", "unsupported"],
)
def test_unusable_requests_raise_adaptation_error(value: object) -> None:
    with pytest.raises(AdaptationError) as excinfo:
        adapt_request(value)

    assert excinfo.value.status_code == 400
    assert str(excinfo.value)
