"""Tests for HyPhy command construction and result parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from datamonkey.analysis.datasets import BaseDataset
from datamonkey.analysis.methods import (
    METHOD_DESCRIPTIONS,
    HyPhyMethod,
    MethodType,
    clean_json_string,
    resolve_method_type,
)
from datamonkey.errors import ResultError, ValidationError


def _method(request: dict, method: str = "fel") -> HyPhyMethod:
    return HyPhyMethod(
        request, method, hyphy_path="hyphy", results_dir="/results", data_dir="/data"
    )


def test_command_lists_set_options_in_fixed_order() -> None:
    method = _method(
        {
            "alignment": "x.fas",
            "tree": "tree.nwk",
            "genetic_code": "Universal",
            "branches": ["Foreground", "Internal"],
            "ci": True,
            "resample": 100,
            "multiple_hits": "Double",
        }
    )

    assert method.command() == (
        "hyphy fel --alignment /data/x.fas --tree /data/tree.nwk --code Universal "
        "--branches Foreground,Internal --ci Yes --resample 100 --multiple-hits Double"
    )


def test_unset_options_are_omitted() -> None:
    assert _method({"alignment": "x.fas"}, "busted").command() == (
        "hyphy busted --alignment /data/x.fas"
    )


def test_tree_only_methods_pass_only_the_tree() -> None:
    method = _method({"tree": "tree.nwk", "ci": True}, "slatkin")

    assert method.command() == "hyphy slatkin --tree /data/tree.nwk"


def test_command_requires_a_bound_request() -> None:
    method = HyPhyMethod(None, MethodType.FEL)

    with pytest.raises(ValidationError):
        method.command()


def test_paths_are_derived_from_method_and_job_id() -> None:
    method = _method({"alignment": "x.fas"}, "meme")

    assert method.output_path("abc") == Path("/results/meme_abc_results.json")
    assert method.log_path("abc") == Path("/results/meme_abc.log")


@pytest.mark.parametrize("dataset_type", ["fasta", "nexus", "fas", "FASTA"])
def test_validate_input_accepts_alignment_types(dataset_type: str) -> None:
    dataset = BaseDataset(name="x", type=dataset_type, content=b">a\nATG\n")

    _method({"alignment": "x.fas"}).validate_input(dataset)


def test_validate_input_rejects_other_types() -> None:
    dataset = BaseDataset(name="tree", type="newick", content=b"(a,b);")

    with pytest.raises(ValidationError, match="Invalid dataset type"):
        _method({"alignment": "x.fas"}).validate_input(dataset)


def test_parse_result_cleans_noise_around_json() -> None:
    raw = '\ufeffHyPhy says hi\n{"MLE": {"content": [1, 2]}}\x00trailing'

    assert _method({"alignment": "x.fas"}).parse_result(raw) == {
        "MLE": {"content": [1, 2]}
    }


def test_parse_result_raises_result_error_for_garbage() -> None:
    with pytest.raises(ResultError):
        _method({"alignment": "x.fas"}).parse_result("{not json}")


def test_clean_json_string_trims_to_outer_brackets() -> None:
    assert clean_json_string("log line\n[1, 2]\nmore") == "[1, 2]"


def test_every_method_is_described() -> None:
    assert set(METHOD_DESCRIPTIONS) == set(MethodType)


def test_resolve_method_type_rejects_unknown_names() -> None:
    assert resolve_method_type("relax") is MethodType.RELAX
    with pytest.raises(ValidationError) as excinfo:
        resolve_method_type("phylo")
    assert excinfo.value.hint and "fel" in excinfo.value.hint
