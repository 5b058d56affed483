"""Tests for the directory backed dataset store."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from datamonkey.analysis.datasets import BaseDataset, DirectoryDatasetStore
from datamonkey.errors import DatasetError, NotFoundError


def test_get_reads_dataset_and_infers_type(datasets: DirectoryDatasetStore) -> None:
    dataset = datasets.get("x.fas")

    assert dataset.type == "fas"
    assert dataset.name == "x.fas"
    assert dataset.id == hashlib.sha256(dataset.content).hexdigest()
    dataset.validate()


def test_missing_dataset_raises_not_found(datasets: DirectoryDatasetStore) -> None:
    with pytest.raises(NotFoundError):
        datasets.get("absent.fas")


@pytest.mark.parametrize("reference", ["", "../x.fas", "nested/x.fas"])
def test_references_cannot_escape_the_directory(
    datasets: DirectoryDatasetStore, reference: str
) -> None:
    with pytest.raises(DatasetError):
        datasets.get(reference)


def test_add_stores_content_addressed_copy(tmp_path: Path) -> None:
    source = tmp_path / "upload.fasta"
    source.write_text(">a\nATG\n")
    store = DirectoryDatasetStore(tmp_path / "store")

    added = store.add(source, name="My alignment")
    fetched = store.get(added.id)

    assert fetched.id == added.id
    assert fetched.name == "My alignment"
    assert fetched.type == "fasta"


def test_empty_dataset_is_invalid() -> None:
    with pytest.raises(DatasetError, match="empty"):
        BaseDataset(name="x", type="fasta", content=b"").validate()
