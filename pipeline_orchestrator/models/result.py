"""Models for job and pipeline execution results."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from pipeline_orchestrator.errors import FailureClass

type JobStatus = Literal[
    "pending",
    "waiting_for_approval",
    "approved",
    "running",
    "succeeded",
    "failed",
    "canceled",
    "skipped",
    "blocked",
]

type PipelineStatus = Literal["running", "success", "failed", "canceled"]

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    ["succeeded", "failed", "canceled", "skipped", "blocked"]
)


@dataclass(frozen=True, kw_only=True)
class ExecutionResult:
    """Outcome of a single runtime execution: exit code and captured output."""

    exit_code: int
    output: str
    duration: float


@dataclass(frozen=True, kw_only=True)
class ArtifactHandle:
    """Reference to files published by a job."""

    job_id: str
    location: Path
    paths: Sequence[str]
    expires_at: datetime


@dataclass(frozen=True, kw_only=True)
class JobResult:
    """Terminal outcome of a job within a pipeline run.

    ``logs`` holds the captured output of every attempt, oldest first.
    """

    job_id: str
    status: JobStatus
    duration: float = 0.0
    attempts: int = 0
    artifacts: ArtifactHandle | None = None
    logs: Sequence[str] = field(default_factory=list)
    failure: FailureClass | None = None
    message: str | None = None
    environment_url: str | None = None


@dataclass(frozen=True, kw_only=True)
class PipelineResult:
    """Aggregate outcome of a pipeline run."""

    pipeline_id: str
    status: PipelineStatus
    jobs: Mapping[str, JobResult]
