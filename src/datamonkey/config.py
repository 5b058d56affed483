"""Configuration profiles and validated runtime settings."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Final, Iterable, Literal, Mapping

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field

from datamonkey.errors import ConfigurationError

log = structlog.get_logger(__name__)

CONFIG_FILENAME: Final[str] = "datamonkey.toml"

PROFILE_ENV: Final[str] = "DATAMONKEY_PROFILE"
PROJECT_ROOT_ENV: Final[str] = "DATAMONKEY_PROJECT_ROOT"

#: Environment variables overriding individual settings, by dotted key.
ENV_OVERRIDES: Final[Mapping[str, str]] = {
    "DATAMONKEY_HYPHY_PATH": "hyphy_path",
    "DATAMONKEY_RESULTS_DIR": "results_dir",
    "DATAMONKEY_DATA_DIR": "data_dir",
    "DATAMONKEY_TRACKER": "tracker",
    "DATAMONKEY_TRACKER_PATH": "tracker_path",
    "DATAMONKEY_SCHEDULER": "scheduler",
    "DATAMONKEY_SLURM_PARTITION": "slurm.partition",
    "DATAMONKEY_SLURM_REST_URL": "slurm_rest.base_url",
    "DATAMONKEY_SLURM_REST_TOKEN": "slurm_rest.auth_token",
}


class SlurmSettings(BaseModel):
    """Slurm backend configuration and per-job resource defaults."""

    model_config = ConfigDict(extra="forbid")

    partition: str = Field("", description="Partition jobs are submitted to.")
    node_count: int | None = Field(None, gt=0, description="Default --nodes.")
    cores_per_node: int | None = Field(
        None, gt=0, description="Default --ntasks-per-node."
    )
    memory_per_node: str | None = Field(None, description="Default --mem, e.g. 2G.")
    max_time: str | None = Field(None, description="Default --time, e.g. 02:00:00.")
    command_prefix: list[str] = Field(
        default_factory=list,
        description="Tokens prepended to every Slurm command, e.g. ['ssh', 'head'].",
    )


class SlurmRestSettings(BaseModel):
    """slurmrestd endpoint and authentication."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field("", description="slurmrestd URL, e.g. http://c2:9200.")
    api_path: str = Field("/slurmdb/v0.0.37", description="Status API path.")
    submit_api_path: str = Field(
        "/slurm/v0.0.37", description="Submission and cancellation API path."
    )
    queue_name: str = Field("", description="Partition jobs are submitted to.")
    auth_token: str = Field("", description="Fixed X-SLURM-USER-TOKEN value.")
    token_refresh_interval: float = Field(
        12 * 60 * 60, gt=0, description="Seconds before a signed token is renewed."
    )
    jwt_key_path: str = Field("", description="HS256 key used to sign tokens.")
    jwt_username: str = Field("", description="User named in requests and tokens.")
    jwt_expiration_secs: int = Field(
        86400, gt=0, description="Lifetime of a signed token in seconds."
    )
    timeout: float = Field(30.0, gt=0, description="HTTP timeout in seconds.")


class Settings(BaseModel):
    """Validated settings for the orchestration service."""

    model_config = ConfigDict(extra="forbid")

    hyphy_path: str = Field("hyphy", description="HyPhy executable.")
    results_dir: Path = Field(
        Path("results"), description="Directory for result and log files."
    )
    data_dir: Path = Field(Path("data"), description="Dataset directory.")
    tracker: Literal["memory", "json", "sqlite"] = "sqlite"
    tracker_path: Path | None = Field(
        None, description="Database or JSON file backing the job tracker."
    )
    scheduler: Literal["slurm", "slurm-rest", "mock"] = "slurm"
    slurm: SlurmSettings = Field(default_factory=SlurmSettings)
    slurm_rest: SlurmRestSettings = Field(default_factory=SlurmRestSettings)
    monitor_interval: float = Field(
        30.0, gt=0, description="Seconds between background status sweeps."
    )


@dataclass(frozen=True)
class ProfileContext:
    """Container describing a resolved configuration profile."""

    name: str
    data: Mapping[str, Any]
    sources: tuple[Path, ...]


def load_profile(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
) -> ProfileContext:
    """Load and merge configuration files before selecting *profile*.

    Files are read from the user configuration directory, the project root
    and the workspace, in that order, and deep-merged so later files win.
    Each may define a ``profiles`` table of named settings tables.

    The profile name comes from *profile*, then ``DATAMONKEY_PROFILE``, then
    the ``default_profile`` key of the merged document, and finally
    ``"default"``.
    """

    merged_config: Dict[str, Any] = {}
    sources: list[Path] = []

    for path in _iter_config_paths(workspace=workspace, project_root=project_root):
        try:
            document = _load_toml(path)
        except OSError as exc:
            raise ConfigurationError(
                f"Unable to read configuration file '{path}': {exc}",
                context={"path": str(path)},
            ) from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(
                f"Configuration file '{path}' is not valid TOML: {exc}",
                context={"path": str(path)},
            ) from exc
        merged_config = _deep_merge(merged_config, document)
        sources.append(path)

    profiles = merged_config.get("profiles", {})
    if not isinstance(profiles, Mapping):
        raise ConfigurationError("The 'profiles' table must contain mappings of settings")

    selected_profile = _determine_profile_name(merged_config, profile)

    profile_data: Mapping[str, Any]
    if selected_profile in profiles:
        raw_data = profiles[selected_profile]
        if not isinstance(raw_data, Mapping):
            raise ConfigurationError(
                f"Profile '{selected_profile}' must be a mapping of configuration values"
            )
        profile_data = dict(raw_data)
    elif selected_profile == "default" or not profiles:
        profile_data = {}
    else:
        available = ", ".join(sorted(str(name) for name in profiles)) or "<none>"
        raise ConfigurationError(
            f"Profile '{selected_profile}' was not found. Available profiles: {available}."
        )

    return ProfileContext(
        name=selected_profile,
        data=profile_data,
        sources=tuple(sources),
    )


def load_settings(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Resolve a profile and validate it into :class:`Settings`.

    Environment variables listed in :data:`ENV_OVERRIDES` take precedence over
    the profile, and *overrides* (dotted keys allowed) over both.
    """

    context = load_profile(
        profile=profile, workspace=workspace, project_root=project_root
    )
    data: Dict[str, Any] = _deep_merge({}, context.data)
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            _assign(data, key, value)
    for key, value in (overrides or {}).items():
        if value is not None:
            _assign(data, key, value)

    try:
        settings = Settings.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(
            f"Invalid settings for profile '{context.name}': {exc}",
            context={"profile": context.name},
        ) from exc

    log.debug(
        "config.settings.loaded",
        profile=context.name,
        sources=[str(path) for path in context.sources],
        tracker=settings.tracker,
        scheduler=settings.scheduler,
    )
    return settings


def _assign(data: Dict[str, Any], dotted_key: str, value: Any) -> None:
    *parents, leaf = dotted_key.split(".")
    target = data
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = dict(child) if isinstance(child, Mapping) else {}
            target[part] = child
        target = child
    target[leaf] = value


def _iter_config_paths(
    *, workspace: Path | None, project_root: Path | None
) -> Iterable[Path]:
    """Yield configuration files in precedence order."""

    yielded: set[Path] = set()

    for path in _user_config_paths():
        if path.exists() and path not in yielded:
            yielded.add(path)
            yield path

    project_candidate = _normalise_project_root(project_root)
    if project_candidate is not None:
        for path in _project_config_paths(project_candidate):
            if path.exists() and path not in yielded:
                yielded.add(path)
                yield path

    if workspace is not None:
        workspace_path = workspace / CONFIG_FILENAME
        if workspace_path.exists() and workspace_path not in yielded:
            yielded.add(workspace_path)
            yield workspace_path


def _user_config_paths() -> tuple[Path, ...]:
    """Return user-level configuration search paths."""

    home = Path(os.path.expanduser("~"))
    xdg_config = os.environ.get("XDG_CONFIG_HOME")

    candidates = []
    if xdg_config:
        candidates.append(Path(xdg_config) / "datamonkey" / CONFIG_FILENAME)

    candidates.append(home / ".config" / "datamonkey" / CONFIG_FILENAME)
    candidates.append(home / ".datamonkey" / CONFIG_FILENAME)

    return tuple(candidates)


def _project_config_paths(project_root: Path) -> tuple[Path, ...]:
    return (
        project_root / CONFIG_FILENAME,
        project_root / ".datamonkey" / CONFIG_FILENAME,
    )


def _normalise_project_root(project_root: Path | None) -> Path | None:
    if project_root is None:
        env_root = os.environ.get(PROJECT_ROOT_ENV)
        if env_root:
            project_root = Path(env_root)
        else:
            project_root = Path.cwd()
    return project_root


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _deep_merge(base: Dict[str, Any], new: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in new.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _deep_merge(dict(merged[key]), value)
        elif isinstance(value, Mapping):
            merged[key] = _deep_merge({}, value)
        else:
            merged[key] = value
    return merged


def _determine_profile_name(config: Mapping[str, Any], override: str | None) -> str:
    if override:
        return override

    env_profile = os.environ.get(PROFILE_ENV)
    if env_profile:
        return env_profile

    default_profile = config.get("default_profile")
    if isinstance(default_profile, str) and default_profile:
        return default_profile

    return "default"


__all__ = [
    "CONFIG_FILENAME",
    "ENV_OVERRIDES",
    "ProfileContext",
    "Settings",
    "SlurmRestSettings",
    "SlurmSettings",
    "load_profile",
    "load_settings",
]
