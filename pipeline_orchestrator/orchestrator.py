"""Pipeline orchestration: instantiating runs and scheduling their jobs."""

import asyncio
import itertools
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from functools import partial

from pipeline_orchestrator.approval import ApprovalBroker
from pipeline_orchestrator.environments import Environment, EnvironmentRegistry
from pipeline_orchestrator.errors import (
    ApprovalRejected,
    DependencyUnsatisfied,
    PipelineError,
)
from pipeline_orchestrator.executor import JobExecutor
from pipeline_orchestrator.graph import StageGraph
from pipeline_orchestrator.lifecycle import JobState
from pipeline_orchestrator.models.context import CommitContext
from pipeline_orchestrator.models.definition import JobDefinition, PipelineDefinition
from pipeline_orchestrator.models.result import (
    ArtifactHandle,
    JobResult,
    JobStatus,
    PipelineResult,
    PipelineStatus,
)
from pipeline_orchestrator.models.settings import EngineSettings
from pipeline_orchestrator.notifier import (
    Notifier,
    deployment_event,
    job_outcome_event,
)
from pipeline_orchestrator.rules import RuleVerdict, evaluate_rules
from pipeline_orchestrator.variables import expand, layer

log = logging.getLogger(__name__)


class ApprovalNotPendingError(PipelineError):
    """Raised when approving or rejecting a job that is not waiting for it."""


@dataclass(kw_only=True)
class JobInstance:
    """A job instantiated for one pipeline run."""

    definition: JobDefinition
    verdict: RuleVerdict
    variables: Mapping[str, str]
    environment: Environment | None
    state: JobState
    result: JobResult | None = None
    approval_token: str | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def manual(self) -> bool:
        return self.verdict.when == "manual" or self.definition.when == "manual"

    @property
    def started(self) -> bool:
        return "running" in self.state.history


class PipelineRun:
    """One instantiation of the stage graph for a commit.

    Each job waits on the completion events of its dependencies, so jobs
    start as soon as they are eligible and never poll. Construct through
    ``PipelineOrchestrator.trigger``.
    """

    def __init__(
        self,
        *,
        pipeline_id: str,
        context: CommitContext,
        definition: PipelineDefinition,
        graph: StageGraph,
        settings: EngineSettings,
        executor: JobExecutor,
        environments: EnvironmentRegistry,
        approvals: ApprovalBroker,
        notifier: Notifier,
        slots: asyncio.Semaphore,
    ) -> None:
        self.pipeline_id = pipeline_id
        self.context = context
        self.graph = graph
        self.settings = settings
        self.executor = executor
        self.environments = environments
        self.approvals = approvals
        self.notifier = notifier
        self._slots = slots
        self._canceled = False
        self._tasks: dict[str, asyncio.Task[None]] = {}

        predefined = {
            **context.predefined_variables(),
            "CI_PIPELINE_ID": pipeline_id,
        }
        predefined["CI_PIPELINE_URL"] = expand(
            settings.pipeline_url_template, predefined
        )
        self.variables = layer(predefined, definition.variables)

        self.jobs: dict[str, JobInstance] = {
            job.name: self._instantiate(job) for job in graph.jobs.values()
        }

    def _instantiate(self, job: JobDefinition) -> JobInstance:
        verdict = evaluate_rules(self.context, job.rules, self.variables)
        job_id = f"{self.pipeline_id}-{job.name}"
        variables = layer(self.variables, job.variables, verdict.variables)
        ci_job = {
            "CI_JOB_NAME": job.name,
            "CI_JOB_STAGE": job.stage,
            "CI_JOB_ID": job_id,
        }
        ci_job["CI_JOB_URL"] = expand(
            self.settings.job_url_template, {**variables, **ci_job}
        )
        variables.update(ci_job)

        environment = None
        if job.environment is not None and verdict.run:
            environment = self.environments.resolve(job.environment, variables)
            variables["CI_ENVIRONMENT_NAME"] = environment.name
            if environment.url:
                variables["CI_ENVIRONMENT_URL"] = environment.url

        instance = JobInstance(
            definition=job,
            verdict=verdict,
            variables=variables,
            environment=environment,
            state=JobState(job.name),
        )
        if not verdict.run:
            self._finish(instance, JobResult(job_id=job.name, status="skipped"))
        return instance

    @property
    def status(self) -> PipelineStatus:
        """Aggregate status of the run.

        Required jobs are those not skipped and not allowed to fail; the run
        succeeds only if every required job succeeded.
        """
        instances = self.jobs.values()
        if any(not instance.state.terminal for instance in instances):
            return "running"

        statuses = [
            instance.state.status
            for instance in instances
            if not instance.definition.allow_failure
        ]
        if "failed" in statuses:
            return "failed"
        if self._canceled or "canceled" in statuses:
            return "canceled"
        if "blocked" in statuses:
            return "failed"
        return "success"

    @property
    def ref(self) -> tuple[str, str]:
        return (self.context.project, self.context.ref_name)

    @property
    def interruptible(self) -> bool:
        """Whether every job that has started so far is interruptible."""
        return all(
            instance.definition.interruptible
            for instance in self.jobs.values()
            if instance.started
        )

    def job_status(self, job_id: str) -> JobStatus:
        """Current status of a job of this run."""
        return self.jobs[job_id].state.status

    def start(self) -> None:
        """Create a task for every job that has not already terminated."""
        for name in self.graph.topological_order():
            instance = self.jobs[name]
            if not instance.state.terminal and name not in self._tasks:
                self._tasks[name] = asyncio.create_task(
                    self._run_job(instance), name=f"{self.pipeline_id}/{name}"
                )
                self._tasks[name].add_done_callback(partial(self._settle, instance))
        log.info(
            "Pipeline %s started for %s@%s (%d job(s) scheduled)",
            self.pipeline_id,
            self.context.ref_name or "-",
            self.context.short_sha,
            len(self._tasks),
        )

    async def wait(self) -> PipelineResult:
        """Wait until every job is terminal and return the aggregate result."""
        while pending := [task for task in self._tasks.values() if not task.done()]:
            await asyncio.gather(*pending, return_exceptions=True)
        result = self.result()
        log.info("Pipeline %s finished: %s", self.pipeline_id, result.status)
        return result

    def result(self) -> PipelineResult:
        """Snapshot of the run's outcome so far."""
        return PipelineResult(
            pipeline_id=self.pipeline_id,
            status=self.status,
            jobs={
                name: instance.result
                or JobResult(job_id=name, status=instance.state.status)
                for name, instance in self.jobs.items()
            },
        )

    def approve(self, job_id: str) -> None:
        """Authorize a gated job waiting for approval."""
        self.approvals.approve(self._pending_token(job_id))

    def reject(self, job_id: str) -> None:
        """Refuse a gated job; it is canceled and its dependents are blocked."""
        self.approvals.reject(self._pending_token(job_id))

    def cancel(self) -> None:
        """Cancel every non-terminal job and prevent further starts."""
        if self._canceled:
            return
        self._canceled = True
        log.info("Canceling pipeline %s", self.pipeline_id)
        for name, task in self._tasks.items():
            if not self.jobs[name].state.terminal:
                task.cancel()

    def _pending_token(self, job_id: str) -> str:
        instance = self.jobs.get(job_id)
        if (
            instance is None
            or instance.state.status != "waiting_for_approval"
            or instance.approval_token is None
        ):
            raise ApprovalNotPendingError(
                f"Job '{job_id}' of pipeline {self.pipeline_id} "
                "is not waiting for approval"
            )
        return instance.approval_token

    async def _run_job(self, instance: JobInstance) -> None:
        try:
            await self._wait_for_dependencies(instance)

            handles = self._check_dependencies(instance)
            inputs = await self.executor.resolve_inputs(handles)

            if instance.manual and not await self._await_approval(instance):
                return

            await self._execute(instance, inputs)
        except DependencyUnsatisfied as e:
            log.info("Job %s blocked: %s", instance.name, e)
            self._finish(
                instance,
                JobResult(
                    job_id=instance.name,
                    status="blocked",
                    failure=e.failure_class,
                    message=str(e),
                ),
            )
        except Exception as e:
            log.error("Job %s crashed: %s", instance.name, e, exc_info=e)
            if instance.state.status in ("pending", "approved"):
                instance.state.transition("running")
            if instance.state.status == "running":
                self._finish(
                    instance,
                    JobResult(job_id=instance.name, status="failed", message=str(e)),
                )

    def _settle(self, instance: JobInstance, task: asyncio.Task[None]) -> None:
        """Cancel a job whose task ended without reaching a terminal state.

        Covers tasks canceled before they ever ran.
        """
        if not instance.state.terminal:
            self._finish(
                instance,
                JobResult(
                    job_id=instance.name,
                    status="canceled",
                    message="Pipeline canceled" if task.cancelled() else "Job aborted",
                ),
            )

    async def _wait_for_dependencies(self, instance: JobInstance) -> None:
        for dependency in self.graph.dependencies[instance.name]:
            await self.jobs[dependency.job].done.wait()

    def _check_dependencies(self, instance: JobInstance) -> Sequence[ArtifactHandle]:
        """Return the artifact handles the job consumes.

        Raises:
            DependencyUnsatisfied: If a dependency ended in a blocking state

        """
        handles: list[ArtifactHandle] = []
        for dependency in self.graph.dependencies[instance.name]:
            upstream = self.jobs[dependency.job]
            status = upstream.state.status

            if status == "skipped" and dependency.tolerate_skip:
                continue
            if status == "failed" and upstream.definition.allow_failure:
                continue
            if status != "succeeded":
                raise DependencyUnsatisfied(f"'{dependency.job}' ended as {status}")

            if dependency.artifacts:
                artifacts = upstream.result.artifacts if upstream.result else None
                if artifacts is None:
                    raise DependencyUnsatisfied(
                        f"'{dependency.job}' published no artifacts"
                    )
                handles.append(artifacts)
        return handles

    async def _await_approval(self, instance: JobInstance) -> bool:
        instance.state.transition("waiting_for_approval")
        token = self.approvals.request_approval(f"{self.pipeline_id}/{instance.name}")
        instance.approval_token = token
        log.info("Job %s waiting for approval", instance.name)

        try:
            decision = await self.approvals.wait(token)
        except asyncio.CancelledError:
            self.approvals.cancel(token)
            raise

        if decision == "approved":
            instance.state.transition("approved")
            return True

        failure: ApprovalRejected | None = None
        if decision == "rejected":
            failure = ApprovalRejected(f"Approval of {instance.name} was rejected")
        self._finish(
            instance,
            JobResult(
                job_id=instance.name,
                status="canceled",
                failure=failure.failure_class if failure else None,
                message=str(failure) if failure else "Approval canceled",
            ),
        )
        return False

    async def _execute(self, instance: JobInstance, inputs: Mapping[str, str]) -> None:
        environment = instance.environment or Environment(name="")
        holder = f"{self.pipeline_id}/{instance.name}"

        async with self.environments.acquire(environment, holder), self._slots:
            instance.state.transition("running")
            log.info("Job %s running", instance.name)
            result = await self.executor.run(
                instance.definition, {**instance.variables, **inputs}
            )
            self._finish(instance, replace(result, environment_url=environment.url))

    def _finish(self, instance: JobInstance, result: JobResult) -> None:
        instance.state.transition(result.status)
        instance.result = result
        instance.done.set()
        log.info("Job %s %s", instance.name, result.status)
        self._notify(instance)

    def _notify(self, instance: JobInstance) -> None:
        webhook = self.settings.webhook_url
        channel = webhook.get_secret_value() if webhook else ""
        status = instance.state.status
        environment = instance.environment

        if environment is not None and environment.protected and status in (
            "succeeded",
            "failed",
        ):
            self.notifier.notify(
                deployment_event(
                    pipeline_id=self.pipeline_id,
                    job_id=instance.name,
                    succeeded=status == "succeeded",
                    channel=channel,
                    environment=environment.name,
                    environment_url=environment.url,
                    variables=instance.variables,
                )
            )
            return

        reached = {"running", "waiting_for_approval"} & set(instance.state.history)
        if status == "failed" or (status == "canceled" and reached):
            self.notifier.notify(
                job_outcome_event(
                    pipeline_id=self.pipeline_id,
                    job_id=instance.name,
                    outcome="failure" if status == "failed" else "canceled",
                    channel=channel,
                    variables=instance.variables,
                )
            )


class PipelineOrchestrator:
    """Creates pipeline runs for commits and owns the state shared between them.

    The environment registry and the executor slots are shared by every run,
    which is what serializes deployments across concurrent pipelines.
    """

    def __init__(
        self,
        *,
        definition: PipelineDefinition,
        settings: EngineSettings,
        executor: JobExecutor,
        notifier: Notifier,
        approvals: ApprovalBroker | None = None,
        environments: EnvironmentRegistry | None = None,
    ) -> None:
        self.definition = definition
        self.graph = StageGraph.from_definition(definition)
        self.settings = settings
        self.executor = executor
        self.notifier = notifier
        self.approvals = approvals or ApprovalBroker()
        self.environments = environments or EnvironmentRegistry(
            settings.protected_environments
        )
        self.runs: dict[str, PipelineRun] = {}
        self._ids = itertools.count(1)
        self._slots: asyncio.Semaphore | None = None

    def trigger(self, context: CommitContext) -> PipelineRun:
        """Create and start a run for a commit; must be called inside the loop."""
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.settings.max_concurrent_jobs)

        if self.settings.interrupt_redundant_runs:
            self._interrupt_redundant(context)

        run = PipelineRun(
            pipeline_id=str(next(self._ids)),
            context=context,
            definition=self.definition,
            graph=self.graph,
            settings=self.settings,
            executor=self.executor,
            environments=self.environments,
            approvals=self.approvals,
            notifier=self.notifier,
            slots=self._slots,
        )
        self.runs[run.pipeline_id] = run
        run.start()
        return run

    async def run(self, context: CommitContext) -> PipelineResult:
        """Trigger a run and wait for it to finish."""
        return await self.trigger(context).wait()

    def _interrupt_redundant(self, context: CommitContext) -> None:
        ref = (context.project, context.ref_name)
        for run in self.runs.values():
            if run.ref == ref and run.status == "running" and run.interruptible:
                log.info(
                    "Interrupting pipeline %s, superseded by a newer commit on %s",
                    run.pipeline_id,
                    context.ref_name,
                )
                run.cancel()
