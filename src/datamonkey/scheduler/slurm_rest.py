"""Slurm backend driven through the ``slurmrestd`` HTTP API."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Mapping

import httpx
import structlog
from jose import jwt

from datamonkey.errors import (
    CancellationError,
    ConfigurationError,
    DatamonkeyError,
    InvalidJobError,
    PollError,
    SubmissionError,
)
from datamonkey.jobs.job import JobLike
from datamonkey.jobs.status import JobStatus
from datamonkey.scheduler.base import HealthReport
from datamonkey.tracking.base import JobTracker

log = structlog.get_logger(__name__)

#: ``state.current`` values reported by slurmrestd.
REST_STATES: Final[Mapping[str, JobStatus]] = {
    "PENDING": JobStatus.PENDING,
    "RUNNING": JobStatus.RUNNING,
    "COMPLETED": JobStatus.COMPLETE,
    "FAILED": JobStatus.FAILED,
    "TIMEOUT": JobStatus.FAILED,
    "OUT_OF_MEMORY": JobStatus.FAILED,
    "CANCELLED": JobStatus.CANCELLED,
}

TOKEN_HEADER: Final[str] = "X-SLURM-USER-TOKEN"
USER_HEADER: Final[str] = "X-SLURM-USER-NAME"

DEFAULT_ENVIRONMENT: Final[Mapping[str, str]] = {
    "PATH": "/bin:/usr/bin/:/usr/local/bin/",
    "LD_LIBRARY_PATH": "/lib/:/lib64/:/usr/local/lib",
}


@dataclass(frozen=True, slots=True)
class SlurmRestConfig:
    """Static configuration for :class:`SlurmRestScheduler`.

    A fixed ``auth_token`` is used as given. Otherwise, with ``jwt_key_path``
    set, an HS256 token is signed for ``jwt_username`` and re-signed every
    ``token_refresh_interval`` seconds.
    """

    base_url: str = ""
    api_path: str = "/slurmdb/v0.0.37"
    submit_api_path: str = "/slurm/v0.0.37"
    queue_name: str = ""
    auth_token: str = ""
    token_refresh_interval: float = 12 * 60 * 60
    jwt_key_path: str = ""
    jwt_username: str = ""
    jwt_expiration_secs: int = 86400
    working_directory: str = "/root"
    environment: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_ENVIRONMENT)
    )
    timeout: float = 30.0


def sign_token(
    key: bytes, username: str, expiration_secs: int, now: float | None = None
) -> str:
    """Return a slurmrestd JWT for *username* signed with *key*."""

    issued = int(now if now is not None else time.time())
    claims = {"iat": issued, "exp": issued + expiration_secs, "sun": username}
    return jwt.encode(claims, key, algorithm="HS256")


def find_job_state(payload: Any, job_id: str) -> str | None:
    """Return ``state.current`` of the entry named *job_id* in *payload*."""

    jobs = payload.get("jobs") if isinstance(payload, Mapping) else None
    if not isinstance(jobs, list):
        return None
    for entry in jobs:
        if not isinstance(entry, Mapping) or entry.get("name") != job_id:
            continue
        state = entry.get("state")
        if isinstance(state, Mapping) and isinstance(state.get("current"), str):
            return state["current"]
        if isinstance(state, str):
            return state
    return None


class SlurmRestScheduler:
    """Submit and track jobs through slurmrestd instead of the CLI tools."""

    name = "slurm-rest"

    def __init__(
        self,
        config: SlurmRestConfig,
        tracker: JobTracker,
        *,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self._client = client or httpx.Client(timeout=config.timeout)
        self._clock = clock
        self._token_lock = threading.Lock()
        self._token = config.auth_token
        self._token_issued_at: float | None = None
        if not config.base_url:
            log.warning(
                "scheduler.slurm_rest.no_base_url",
                hint="Requests will fail until 'slurm_rest.base_url' is set.",
            )

    # authentication ------------------------------------------------------

    def auth_token(self) -> str:
        """Return the current token, signing a fresh one when it is due."""

        if self.config.auth_token or not self.config.jwt_key_path:
            return self.config.auth_token
        with self._token_lock:
            now = self._clock()
            issued = self._token_issued_at
            if self._token and issued is not None:
                if now - issued < self.config.token_refresh_interval:
                    return self._token
            key_path = Path(self.config.jwt_key_path)
            try:
                key = key_path.read_bytes()
            except OSError as exc:
                log.error(
                    "scheduler.slurm_rest.jwt_key_unreadable",
                    path=str(key_path),
                    error=str(exc),
                )
                raise ConfigurationError(
                    f"Unable to read JWT key '{key_path}': {exc}",
                    hint="Check 'slurm_rest.jwt_key_path'.",
                    context={"path": str(key_path)},
                ) from exc
            self._token = sign_token(
                key,
                self.config.jwt_username,
                self.config.jwt_expiration_secs,
                now=now,
            )
            self._token_issued_at = now
            log.info(
                "scheduler.slurm_rest.token_refreshed",
                username=self.config.jwt_username,
            )
            return self._token

    def _headers(self, job_id: str | None = None) -> dict[str, str]:
        token = self.auth_token()
        if not token:
            raise ConfigurationError(
                "Slurm auth token not provided.",
                hint="Set 'slurm_rest.auth_token' or 'slurm_rest.jwt_key_path'.",
                context={"job_id": job_id},
            )
        return {TOKEN_HEADER: token, USER_HEADER: self.config.jwt_username}

    def _url(self, api_path: str, suffix: str) -> str:
        if not self.config.base_url:
            log.error("scheduler.slurm_rest.configuration_error")
            raise ConfigurationError(
                "Slurm REST base URL cannot be empty.",
                hint="Set 'slurm_rest.base_url' in the active profile.",
            )
        return f"{self.config.base_url.rstrip('/')}{api_path}{suffix}"

    # operations ----------------------------------------------------------

    def submit(self, job: JobLike) -> None:
        job.validate()
        base = job.base_job
        method = base.method
        if method is None:
            raise InvalidJobError(
                "Job method cannot be empty.", context={"job_id": base.id}
            )
        headers = self._headers(base.id)
        headers["Content-Type"] = "application/json"
        url = self._url(self.config.submit_api_path, "/job/submit")
        description: dict[str, Any] = {
            "name": base.id,
            "ntasks": 1,
            "nodes": 1,
            "current_working_directory": self.config.working_directory,
            "standard_input": "/dev/null",
            "standard_output": base.log_path,
            "standard_error": base.log_path,
            "environment": dict(self.config.environment),
        }
        if self.config.queue_name:
            description["partition"] = self.config.queue_name
        body = {
            "job": description,
            "script": f"#!/bin/bash\n {method.command()} --output {base.output_path}",
        }

        log.info("scheduler.slurm_rest.submit.start", job_id=base.id, url=url)
        try:
            response = self._client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            log.error("scheduler.slurm_rest.submit.failed", job_id=base.id, error=str(exc))
            raise SubmissionError(
                f"Failed to submit job: {exc}", context={"job_id": base.id}
            ) from exc
        if response.status_code != httpx.codes.OK:
            log.error(
                "scheduler.slurm_rest.submit.failed",
                job_id=base.id,
                status_code=response.status_code,
                body=response.text,
            )
            raise SubmissionError(
                f"Job submission failed with status {response.status_code}: {response.text}",
                context={"job_id": base.id, "status_code": response.status_code},
            )

        payload = _json_or_none(response)
        slurm_job_id = payload.get("job_id") if isinstance(payload, Mapping) else None
        if slurm_job_id is None or slurm_job_id == "":
            log.error(
                "scheduler.slurm_rest.submit.unparseable",
                job_id=base.id,
                body=response.text,
            )
            raise SubmissionError(
                "Job id not found in submission response.",
                code="scheduler.slurm_rest.unexpected_output",
                context={"job_id": base.id},
            )
        slurm_job_id = str(slurm_job_id)

        if base.user_id:
            self.tracker.store_job_with_user(base.id, slurm_job_id, base.user_id)
        else:
            self.tracker.store_job_mapping(base.id, slurm_job_id)
        base.touch()
        log.info(
            "scheduler.slurm_rest.submit.success",
            job_id=base.id,
            slurm_job_id=slurm_job_id,
        )

    def cancel(self, job: JobLike) -> None:
        base = job.base_job
        headers = self._headers(base.id)
        slurm_job_id = self.tracker.get_scheduler_job_id(base.id)
        url = self._url(self.config.submit_api_path, f"/job/{slurm_job_id}")
        try:
            response = self._client.delete(url, headers=headers)
        except httpx.HTTPError as exc:
            raise CancellationError(
                f"Failed to cancel job: {exc}",
                context={"job_id": base.id, "slurm_job_id": slurm_job_id},
            ) from exc
        if response.status_code != httpx.codes.OK:
            log.error(
                "scheduler.slurm_rest.cancel.failed",
                job_id=base.id,
                slurm_job_id=slurm_job_id,
                status_code=response.status_code,
                body=response.text,
            )
            raise CancellationError(
                f"Job cancellation failed with status {response.status_code}: {response.text}",
                context={"job_id": base.id, "slurm_job_id": slurm_job_id},
            )
        self.tracker.delete_job_mapping(base.id)
        base.touch()
        log.info(
            "scheduler.slurm_rest.cancel.success",
            job_id=base.id,
            slurm_job_id=slurm_job_id,
        )

    def get_status(self, job: JobLike) -> JobStatus:
        base = job.base_job
        headers = self._headers(base.id)
        slurm_job_id = self.tracker.get_scheduler_job_id(base.id)
        url = self._url(self.config.api_path, f"/job/{slurm_job_id}")
        context = {"job_id": base.id, "slurm_job_id": slurm_job_id}
        try:
            response = self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            log.warning("scheduler.slurm_rest.status.failed", error=str(exc), **context)
            raise PollError(
                f"Failed to get job status: {exc}",
                hint="Unable to determine status; try again later.",
                context=context,
            ) from exc
        if response.status_code != httpx.codes.OK:
            log.warning(
                "scheduler.slurm_rest.status.failed",
                status_code=response.status_code,
                body=response.text,
                **context,
            )
            raise PollError(
                f"Job status request failed with status {response.status_code}: {response.text}",
                hint="Unable to determine status; try again later.",
                context=context,
            )

        state = find_job_state(_json_or_none(response), base.id)
        if state is None:
            raise PollError(
                f"Job '{base.id}' not found in the status response.",
                context=context,
            )
        status = REST_STATES.get(state.upper())
        if status is None:
            # Left tracked so a later poll can still see the real state.
            log.warning("scheduler.slurm_rest.status.unknown_state", state=state, **context)
            return JobStatus.FAILED

        if status.is_terminal:
            self._finalise(base.id, status)
        log.debug("scheduler.slurm_rest.status", status=status.value, **context)
        return status

    def _finalise(self, job_id: str, status: JobStatus) -> None:
        try:
            self.tracker.update_job_status(job_id, status.value)
        except DatamonkeyError as exc:
            log.warning(
                "scheduler.slurm_rest.status_record_failed", job_id=job_id, error=str(exc)
            )
        try:
            self.tracker.delete_job_mapping(job_id)
        except DatamonkeyError as exc:
            log.warning(
                "scheduler.slurm_rest.mapping_delete_failed", job_id=job_id, error=str(exc)
            )

    def check_health(self) -> HealthReport:
        try:
            token = self.auth_token()
        except ConfigurationError as exc:
            return HealthReport(False, "Auth token not configured", exc)
        if not token:
            return HealthReport(
                False,
                "Auth token not configured",
                ConfigurationError("Slurm auth token not configured."),
            )
        try:
            url = self._url("", "/openapi/v3")
        except ConfigurationError as exc:
            return HealthReport(False, "No base URL specified", exc)

        headers = {TOKEN_HEADER: token, USER_HEADER: self.config.jwt_username}
        try:
            response = self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            return HealthReport(
                False,
                "Connection error",
                PollError(f"Failed to connect to slurm: {exc}"),
            )
        if response.status_code != httpx.codes.OK:
            log.warning(
                "scheduler.slurm_rest.health.failed",
                status_code=response.status_code,
                body=response.text,
            )
            return HealthReport(
                False,
                f"Bad status code: {response.status_code}",
                PollError(
                    f"Slurm returned bad status code {response.status_code}: {response.text}",
                    context={"status_code": response.status_code},
                ),
            )
        return HealthReport(True, "Healthy")

    def close(self) -> None:
        self._client.close()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


__all__ = [
    "REST_STATES",
    "SlurmRestConfig",
    "SlurmRestScheduler",
    "find_job_state",
    "sign_token",
]
