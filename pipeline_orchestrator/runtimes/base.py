"""Abstract base class for job runtimes."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from pipeline_orchestrator.models.result import ExecutionResult


@dataclass(frozen=True, kw_only=True)
class CacheRef:
    """Resolved cache declaration handed to a runtime."""

    key: str
    paths: Sequence[str]


@dataclass(frozen=True, kw_only=True)
class JobRuntime(ABC):
    """Abstract base for container or sandbox runtimes executing job scripts.

    The engine only interprets the exit code and captured output. A runtime
    that cannot provision an execution environment raises
    ``RuntimeProvisionFailure`` instead of returning a result.
    """

    @abstractmethod
    async def execute(
        self,
        image_ref: str | None,
        script_lines: Sequence[str],
        env_vars: Mapping[str, str],
        cache_refs: Sequence[CacheRef],
    ) -> ExecutionResult:
        """Run the script lines in order, stopping at the first failing one.

        Args:
            image_ref: Container image to run in, if the runtime uses images
            script_lines: Shell steps of the job
            env_vars: Variables exported to the script
            cache_refs: Caches to make available to the script

        Returns:
            Exit code, captured output and duration of the execution

        """


def render_script(script_lines: Sequence[str]) -> str:
    """Join script steps into one shell program that stops on first failure."""
    return "\n".join(["set -e", *script_lines])
