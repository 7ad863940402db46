"""Exception taxonomy for pipeline execution."""

from typing import Literal

type FailureClass = Literal[
    "runner_system_failure",
    "api_failure",
    "job_execution_timeout",
    "script_failure",
    "quality_gate_failure",
    "quality_gate_timeout",
    "dependency_unsatisfied",
    "approval_rejected",
]

TRANSIENT_FAILURES: frozenset[FailureClass] = frozenset(
    ["runner_system_failure", "api_failure", "job_execution_timeout"]
)


class PipelineError(Exception):
    """Base class for errors raised by the orchestration engine."""


class DefinitionError(PipelineError, ValueError):
    """Raised when a pipeline definition is structurally invalid."""


class InvalidTransitionError(PipelineError):
    """Raised when a job is moved to a state its current state cannot reach."""


class JobFailure(PipelineError):
    """Base class for failures that terminate a job execution attempt."""

    failure_class: FailureClass = "script_failure"

    @property
    def transient(self) -> bool:
        """Whether the failure is infrastructure-level and eligible for retry."""
        return self.failure_class in TRANSIENT_FAILURES


class RuntimeProvisionFailure(JobFailure):
    """The runtime could not provision an environment for the job."""

    failure_class: FailureClass = "runner_system_failure"


class ApiFailure(JobFailure):
    """An external API used by the job failed."""

    failure_class: FailureClass = "api_failure"


class JobTimeoutFailure(JobFailure):
    """The job exceeded its soft timeout."""

    failure_class: FailureClass = "job_execution_timeout"


class ScriptFailure(JobFailure):
    """The job script exited with a non-zero status."""

    failure_class: FailureClass = "script_failure"

    def __init__(self, message: str, *, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class QualityGateFailure(JobFailure):
    """The quality gate rejected the submitted analysis."""

    failure_class: FailureClass = "quality_gate_failure"


class QualityGateTimeout(JobFailure):
    """The quality gate did not produce a verdict in time."""

    failure_class: FailureClass = "quality_gate_timeout"


class DependencyUnsatisfied(JobFailure):
    """A job's dependencies did not reach a state that allows it to start."""

    failure_class: FailureClass = "dependency_unsatisfied"


class ApprovalRejected(JobFailure):
    """An approval gate was rejected by an external actor."""

    failure_class: FailureClass = "approval_rejected"


class NotificationDeliveryFailure(PipelineError):
    """A notification could not be delivered. Logged, never propagated."""


class ArtifactExpiredError(PipelineError):
    """The requested artifact exceeded its retention period."""
