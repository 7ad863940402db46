"""Execution of a single job: attempts, retries, quality gate and artifacts."""

import asyncio
import logging
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from string import Template

from pipeline_orchestrator.artifacts import ArtifactStore
from pipeline_orchestrator.errors import (
    ArtifactExpiredError,
    DependencyUnsatisfied,
    JobFailure,
    JobTimeoutFailure,
    QualityGateFailure,
    QualityGateTimeout,
    RuntimeProvisionFailure,
    ScriptFailure,
)
from pipeline_orchestrator.models.definition import JobDefinition, QualityGateSpec
from pipeline_orchestrator.models.result import ArtifactHandle, JobResult
from pipeline_orchestrator.quality_gates.base import QualityGate
from pipeline_orchestrator.runtimes.base import CacheRef, JobRuntime

log = logging.getLogger(__name__)

AFTER_SCRIPT_TIMEOUT = 300
ARTIFACTS_VARIABLE = "PIPELINE_ARTIFACTS"


@dataclass(frozen=True, kw_only=True)
class JobExecutor:
    """Runs one job to a terminal outcome on a runtime.

    Every attempt is a fresh runtime execution; nothing from a failed
    attempt is carried into the next one.
    """

    runtime: JobRuntime
    artifact_store: ArtifactStore
    quality_gate: QualityGate | None = None
    default_timeout: float = 3600

    async def resolve_inputs(
        self, handles: Sequence[ArtifactHandle]
    ) -> Mapping[str, str]:
        """Fetch the artifacts a job needs and expose them as a variable.

        Raises:
            DependencyUnsatisfied: If an artifact expired or disappeared

        """
        if not handles:
            return {}

        paths: list[str] = []
        for handle in handles:
            try:
                stored = await self.artifact_store.get(handle)
                paths.extend(str(path) for path in stored)
            except (ArtifactExpiredError, FileNotFoundError) as e:
                raise DependencyUnsatisfied(
                    f"Artifacts of {handle.job_id} unavailable: {e}"
                ) from e
        return {ARTIFACTS_VARIABLE: os.pathsep.join(paths)}

    async def run(self, job: JobDefinition, variables: Mapping[str, str]) -> JobResult:
        """Run a job, retrying per its policy, and return its terminal result.

        Args:
            job: Composed job definition
            variables: Fully expanded variables exported to the script

        Returns:
            ``succeeded`` or ``failed`` result with per-attempt logs

        """
        image = Template(job.image).safe_substitute(variables) if job.image else None
        caches = [
            CacheRef(
                key=Template(cache.key).safe_substitute(variables),
                paths=list(cache.paths),
            )
            for cache in job.cache
        ]

        logs: list[str] = []
        started = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._attempt(job, image, variables, caches, logs)
                artifacts = await self._publish(job)
            except JobFailure as failure:
                log.warning(
                    "Job %s attempt %d failed (%s): %s",
                    job.name,
                    attempt,
                    failure.failure_class,
                    failure,
                )
                if attempt <= job.retry.max and job.retry.allows_retry(
                    failure.failure_class, transient=failure.transient
                ):
                    log.info(
                        "Retrying job %s (%d/%d)", job.name, attempt, job.retry.max
                    )
                    continue
                return JobResult(
                    job_id=job.name,
                    status="failed",
                    duration=time.monotonic() - started,
                    attempts=attempt,
                    logs=logs,
                    failure=failure.failure_class,
                    message=str(failure),
                )

            log.info("Job %s succeeded after %d attempt(s)", job.name, attempt)
            return JobResult(
                job_id=job.name,
                status="succeeded",
                duration=time.monotonic() - started,
                attempts=attempt,
                artifacts=artifacts,
                logs=logs,
            )

    async def _attempt(
        self,
        job: JobDefinition,
        image: str | None,
        variables: Mapping[str, str],
        caches: Sequence[CacheRef],
        logs: list[str],
    ) -> None:
        timeout = job.timeout or self.default_timeout
        status = "failed"
        try:
            try:
                result = await asyncio.wait_for(
                    self.runtime.execute(image, job.script, variables, caches),
                    timeout,
                )
            except TimeoutError as e:
                logs.append("")
                raise JobTimeoutFailure(
                    f"Job exceeded its timeout of {timeout:g}s"
                ) from e
            except RuntimeProvisionFailure as e:
                logs.append(str(e))
                raise

            logs.append(result.output)
            if result.exit_code != 0:
                raise ScriptFailure(
                    f"Script exited with code {result.exit_code}",
                    exit_code=result.exit_code,
                )
            if job.quality_gate is not None:
                await self._check_quality_gate(job.quality_gate)
            status = "success"
        except asyncio.CancelledError:
            status = "canceled"
            raise
        finally:
            if job.after_script and status != "canceled":
                await self._after_script(
                    job, image, {**variables, "CI_JOB_STATUS": status}, caches
                )

    async def _check_quality_gate(self, spec: QualityGateSpec) -> None:
        if self.quality_gate is None:
            raise QualityGateFailure(
                "Job requires a quality gate but none is configured"
            )

        verdict = await self.quality_gate.submit(
            spec.sources, spec.coverage_report, timeout=spec.timeout
        )
        if verdict == "fail":
            raise QualityGateFailure("Quality gate failed")
        if verdict == "timeout":
            raise QualityGateTimeout(
                f"Quality gate gave no verdict within {spec.timeout:g}s"
            )

    async def _after_script(
        self,
        job: JobDefinition,
        image: str | None,
        variables: Mapping[str, str],
        caches: Sequence[CacheRef],
    ) -> None:
        try:
            result = await asyncio.wait_for(
                self.runtime.execute(image, job.after_script, variables, caches),
                AFTER_SCRIPT_TIMEOUT,
            )
        except (JobFailure, TimeoutError) as e:
            log.warning("after_script of %s did not complete: %s", job.name, e)
            return
        if result.exit_code != 0:
            log.warning(
                "after_script of %s exited with code %d", job.name, result.exit_code
            )

    async def _publish(self, job: JobDefinition) -> ArtifactHandle | None:
        if job.artifacts is None:
            return None
        try:
            handle = await self.artifact_store.put(
                job.name, job.artifacts.paths, job.artifacts.retention
            )
        except OSError as e:
            raise RuntimeProvisionFailure(f"Artifact upload failed: {e}") from e
        return handle if handle.paths else None
