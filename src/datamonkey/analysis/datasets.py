"""Dataset contracts consumed by the orchestration core."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from datamonkey.errors import DatasetError, NotFoundError

log = structlog.get_logger(__name__)

METADATA_SUFFIX = ".meta.json"

_EXTENSION_TYPES = {
    ".fasta": "fasta",
    ".fas": "fas",
    ".fa": "fasta",
    ".nex": "nexus",
    ".nexus": "nexus",
    ".nwk": "newick",
    ".newick": "newick",
    ".tre": "newick",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class Dataset(Protocol):
    """Content-addressed input consumed by an analysis."""

    @property
    def id(self) -> str: ...

    @property
    def type(self) -> str: ...

    def validate(self) -> None: ...


@runtime_checkable
class DatasetStore(Protocol):
    """Resolve dataset references to :class:`Dataset` instances."""

    @property
    def dataset_dir(self) -> Path: ...

    def get(self, reference: str) -> Dataset: ...


@dataclass(slots=True)
class BaseDataset:
    """In-memory dataset whose identifier is the SHA-256 of its content."""

    name: str
    type: str
    content: bytes = field(repr=False)
    description: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def id(self) -> str:
        return self.content_hash

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content).hexdigest()

    def validate(self) -> None:
        if not self.name:
            raise DatasetError("Dataset name is required.")
        if not self.type:
            raise DatasetError("Dataset type is required.", context={"dataset": self.name})
        if not self.content:
            raise DatasetError(
                "Dataset content cannot be empty.", context={"dataset": self.name}
            )

    def metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }


def detect_dataset_type(path: Path, content: bytes) -> str:
    """Guess a dataset type from the file extension or the leading bytes."""

    by_extension = _EXTENSION_TYPES.get(path.suffix.lower())
    if by_extension:
        return by_extension
    head = content.lstrip()[:16].upper()
    if head.startswith(b">"):
        return "fasta"
    if head.startswith(b"#NEXUS"):
        return "nexus"
    if head.startswith(b"("):
        return "newick"
    return ""


class DirectoryDatasetStore:
    """Datasets stored as files named by their content hash.

    Each dataset file may have a ``<id>.meta.json`` sidecar holding its name,
    type and description. Without one the type is inferred from the content.
    """

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    @property
    def dataset_dir(self) -> Path:
        return self._directory

    def get(self, reference: str) -> BaseDataset:
        if not reference or Path(reference).name != reference:
            raise DatasetError(
                f"Invalid dataset reference '{reference}'.",
                context={"reference": reference},
            )
        path = self._directory / reference
        if not path.is_file():
            raise NotFoundError(
                f"Dataset '{reference}' was not found.",
                context={"reference": reference, "directory": str(self._directory)},
            )
        content = path.read_bytes()
        metadata = self._read_metadata(reference)
        return BaseDataset(
            name=str(metadata.get("name") or reference),
            type=str(metadata.get("type") or detect_dataset_type(path, content)),
            content=content,
            description=str(metadata.get("description", "")),
        )

    def add(
        self,
        source: Path,
        *,
        name: str | None = None,
        dataset_type: str | None = None,
    ) -> BaseDataset:
        """Copy *source* into the store and return the resulting dataset."""

        content = source.read_bytes()
        dataset = BaseDataset(
            name=name or source.name,
            type=dataset_type or detect_dataset_type(source, content),
            content=content,
        )
        dataset.validate()
        self._directory.mkdir(parents=True, exist_ok=True)
        (self._directory / dataset.id).write_bytes(content)
        (self._directory / f"{dataset.id}{METADATA_SUFFIX}").write_text(
            json.dumps(dataset.metadata(), indent=2, sort_keys=True),
            encoding="utf-8",
        )
        log.info(
            "analysis.datasets.added",
            dataset=dataset.id,
            name=dataset.name,
            type=dataset.type,
        )
        return dataset

    def _read_metadata(self, reference: str) -> dict[str, Any]:
        path = self._directory / f"{reference}{METADATA_SUFFIX}"
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            log.warning("analysis.datasets.metadata_corrupt", path=str(path))
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload


__all__ = [
    "BaseDataset",
    "Dataset",
    "DatasetStore",
    "DirectoryDatasetStore",
    "detect_dataset_type",
]
