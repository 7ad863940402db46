"""Stage graph: job ordering derived from stages and explicit needs."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from pipeline_orchestrator.errors import DefinitionError
from pipeline_orchestrator.models.definition import JobDefinition, PipelineDefinition


@dataclass(frozen=True, kw_only=True)
class Dependency:
    """Edge from a job to a job it waits for."""

    job: str
    artifacts: bool = False
    tolerate_skip: bool = True
    explicit: bool = False


@dataclass(frozen=True, kw_only=True)
class Stage:
    """Ordered phase of a pipeline."""

    name: str
    ordinal: int
    jobs: Sequence[JobDefinition]


@dataclass(frozen=True, kw_only=True)
class StageGraph:
    """Dependency graph of a pipeline definition.

    Jobs without ``needs`` wait for every job of every earlier stage. Jobs
    with ``needs`` wait only for the jobs they name, which lets them start
    before their own stage would otherwise be reached.
    """

    stages: Sequence[Stage]
    dependencies: Mapping[str, Sequence[Dependency]]

    @classmethod
    def from_definition(cls, definition: PipelineDefinition) -> "StageGraph":
        """Build the graph and reject dependency cycles."""
        stages = [
            Stage(name=name, ordinal=index, jobs=definition.jobs_in_stage(name))
            for index, name in enumerate(definition.stages)
        ]

        dependencies: dict[str, Sequence[Dependency]] = {}
        for stage in stages:
            earlier = [job.name for s in stages[: stage.ordinal] for job in s.jobs]
            for job in stage.jobs:
                if job.needs is None:
                    dependencies[job.name] = [Dependency(job=name) for name in earlier]
                else:
                    dependencies[job.name] = [
                        Dependency(
                            job=need.job,
                            artifacts=need.artifacts,
                            tolerate_skip=need.optional,
                            explicit=True,
                        )
                        for need in job.needs
                    ]

        graph = cls(stages=stages, dependencies=dependencies)
        graph.topological_order()
        return graph

    @property
    def jobs(self) -> Mapping[str, JobDefinition]:
        """All jobs keyed by identifier."""
        return {job.name: job for stage in self.stages for job in stage.jobs}

    def dependents(self, job_id: str) -> Sequence[str]:
        """Jobs that wait for the given job."""
        return [
            name
            for name, deps in self.dependencies.items()
            if any(dep.job == job_id for dep in deps)
        ]

    def topological_order(self) -> Sequence[str]:
        """Jobs ordered so that every job follows its dependencies.

        Ties are broken by stage ordinal, then declaration order.

        Raises:
            DefinitionError: If the needs of jobs form a cycle

        """
        declared = [job.name for stage in self.stages for job in stage.jobs]
        remaining = {name: len(self.dependencies[name]) for name in declared}
        order: list[str] = []

        ready = [name for name in declared if remaining[name] == 0]
        while ready:
            current = ready.pop(0)
            order.append(current)
            for child in self.dependents(current):
                remaining[child] -= 1
                if remaining[child] == 0:
                    ready.append(child)
            ready.sort(key=declared.index)

        if len(order) != len(declared):
            cyclic = sorted(set(declared) - set(order))
            raise DefinitionError(f"Cycle detected in job needs: {cyclic}")
        return order
