"""Models for pipeline definitions loaded from YAML files."""

import re
from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from pipeline_orchestrator.errors import DefinitionError, FailureClass
from pipeline_orchestrator.models.base import Model
from pipeline_orchestrator.templates import resolve_job

DURATION_UNITS: Mapping[str, int] = {
    "s": 1,
    "sec": 1,
    "second": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "h": 3600,
    "hr": 3600,
    "hour": 3600,
    "d": 86400,
    "day": 86400,
    "w": 604800,
    "wk": 604800,
    "week": 604800,
}

_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]+)")


def parse_duration(value: str | float) -> timedelta:
    """Parse a human duration such as ``"1 week"``, ``"5m"`` or ``"1h 30m"``.

    Bare numbers are seconds.
    """
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = value.strip().lower()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    total = 0.0
    position = 0
    for match in _DURATION_TOKEN.finditer(text):
        if text[position : match.start()].strip(" ,"):
            break
        amount, unit = match.groups()
        seconds = DURATION_UNITS.get(unit) or DURATION_UNITS.get(unit.removesuffix("s"))
        if seconds is None:
            raise ValueError(f"Unknown duration unit '{unit}' in '{value}'")
        total += float(amount) * seconds
        position = match.end()

    if position == 0 or text[position:].strip(" ,"):
        raise ValueError(f"Invalid duration '{value}'")
    return timedelta(seconds=total)


class RuleEntry(Model):
    """One row of a rule table.

    Every predicate set on the row must hold for it to match. A row without
    predicates is a catch-all.
    """

    branch: str | None = Field(default=None, description="Exact branch name")
    tag_pattern: str | None = Field(
        default=None, description="Regular expression searched in the tag name"
    )
    variables_match: Mapping[str, str] = Field(
        default_factory=dict, description="Pipeline variables that must be equal"
    )
    variables: Mapping[str, str] = Field(
        default_factory=dict, description="Variables assigned when the row matches"
    )
    when: Literal["on_success", "always", "manual", "never"] = Field(
        default="on_success", description="Applicability of the job on a match"
    )

    @field_validator("tag_pattern")
    @classmethod
    def _compile_pattern(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid tag_pattern {value!r}: {e}") from e
        return value

    @property
    def is_catch_all(self) -> bool:
        """Whether the row matches every commit."""
        return (
            self.branch is None
            and self.tag_pattern is None
            and not self.variables_match
        )


class JobNeed(Model):
    """Explicit dependency on another job."""

    job: str = Field(..., description="Identifier of the job depended on")
    artifacts: bool = Field(
        default=False, description="Whether the dependency's artifacts are required"
    )
    optional: bool = Field(
        default=False, description="Whether a skipped dependency is acceptable"
    )


class RetryPolicy(Model):
    """Automatic retry configuration.

    Transient failures are retried whenever attempts remain; other failure
    classes only when listed in ``when``.
    """

    max: int = Field(default=0, ge=0, le=2, description="Additional attempts")
    when: frozenset[FailureClass] = Field(
        default_factory=frozenset, description="Non-transient classes to retry"
    )

    @field_validator("when", mode="before")
    @classmethod
    def _split_when(cls, value: Any) -> Any:
        if isinstance(value, str):
            return frozenset(value.split())
        return value

    def allows_retry(self, failure_class: FailureClass, *, transient: bool) -> bool:
        """Whether a failure of the given class may be retried at all."""
        if failure_class in ("quality_gate_failure", "quality_gate_timeout"):
            return False
        return transient or failure_class in self.when


class CacheSpec(Model):
    """Cache declaration handed to the runtime."""

    key: str = Field(..., description="Cache key, may reference variables")
    paths: Sequence[str] = Field(default_factory=list, description="Cached paths")


class ArtifactSpec(Model):
    """Files a job publishes for later jobs."""

    paths: Sequence[str] = Field(..., min_length=1, description="Published paths")
    expire_in: str = Field(default="30 days", description="Retention period")

    @field_validator("expire_in")
    @classmethod
    def _check_expiry(cls, value: str) -> str:
        parse_duration(value)
        return value

    @property
    def retention(self) -> timedelta:
        """Retention period as a timedelta."""
        return parse_duration(self.expire_in)


class EnvironmentSpec(Model):
    """Deployment target a job is bound to."""

    name: str = Field(..., description="Environment name template")
    url: str | None = Field(default=None, description="Environment URL template")
    resource_group: str | None = Field(
        default=None, description="Concurrency key serializing deployments"
    )


class QualityGateSpec(Model):
    """Static analysis submission evaluated after the script succeeds."""

    sources: Sequence[str] = Field(..., min_length=1, description="Analysed sources")
    coverage_report: str | None = Field(default=None, description="Coverage report")
    timeout: float = Field(default=300, gt=0, description="Verdict timeout (s)")


class JobDefinition(Model):
    """Fully composed job descriptor."""

    name: str = Field(..., description="Job identifier")
    stage: str = Field(..., description="Stage the job belongs to")
    image: str | None = Field(default=None, description="Container image reference")
    script: Sequence[str] = Field(..., min_length=1, description="Script steps")
    after_script: Sequence[str] = Field(
        default_factory=list, description="Steps run after every attempt"
    )
    variables: Mapping[str, str] = Field(default_factory=dict)
    rules: Sequence[RuleEntry] | None = Field(
        default=None, description="Rule table; None means always run"
    )
    when: Literal["on_success", "manual"] = "on_success"
    needs: Sequence[JobNeed] | None = Field(
        default=None, description="Explicit dependencies; None means stage order"
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    cache: Sequence[CacheSpec] = Field(default_factory=list)
    artifacts: ArtifactSpec | None = None
    environment: EnvironmentSpec | None = None
    allow_failure: bool = False
    interruptible: bool = False
    timeout: float | None = Field(default=None, gt=0, description="Soft timeout (s)")
    quality_gate: QualityGateSpec | None = None

    @field_validator("script", "after_script", mode="before")
    @classmethod
    def _listify_script(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("needs", mode="before")
    @classmethod
    def _expand_needs(cls, value: Any) -> Any:
        if isinstance(value, Sequence) and not isinstance(value, str):
            return [{"job": need} if isinstance(need, str) else need for need in value]
        return value

    @field_validator("retry", mode="before")
    @classmethod
    def _expand_retry(cls, value: Any) -> Any:
        if isinstance(value, int):
            return {"max": value}
        return value

    @field_validator("cache", mode="before")
    @classmethod
    def _listify_cache(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return [value]
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value).total_seconds()
        return value


class PipelineDefinition(Model):
    """Complete pipeline definition: stages, rule tables, templates and jobs."""

    stages: Sequence[str] = Field(..., min_length=1, description="Ordered stages")
    variables: Mapping[str, str] = Field(
        default_factory=dict, description="Global variables"
    )
    rule_sets: Mapping[str, Sequence[RuleEntry]] = Field(
        default_factory=dict, description="Named rule tables shared by jobs"
    )
    templates: Mapping[str, Mapping[str, Any]] = Field(
        default_factory=dict, description="Partial jobs composed via extends"
    )
    jobs: Mapping[str, JobDefinition] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _compose_jobs(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data

        templates = data.get("templates") or {}
        rule_sets = data.get("rule_sets") or {}
        jobs: dict[str, Any] = {}
        for name, raw in (data.get("jobs") or {}).items():
            if not isinstance(raw, Mapping):
                jobs[name] = raw
                continue
            job = resolve_job(raw, templates)
            rules = job.get("rules")
            if isinstance(rules, str):
                if rules not in rule_sets:
                    raise DefinitionError(
                        f"Job '{name}' references unknown rule set '{rules}'"
                    )
                job["rules"] = rule_sets[rules]
            job["name"] = name
            jobs[name] = job

        return {**data, "jobs": jobs}

    @model_validator(mode="after")
    def _check_references(self) -> "PipelineDefinition":
        if len(set(self.stages)) != len(self.stages):
            raise DefinitionError("Stage names must be unique")

        for job in self.jobs.values():
            if job.stage not in self.stages:
                raise DefinitionError(
                    f"Job '{job.name}' uses unknown stage '{job.stage}'"
                )
            needed = [need.job for need in job.needs or ()]
            if len(set(needed)) != len(needed):
                raise DefinitionError(f"Job '{job.name}' lists a need twice")
            for need in job.needs or ():
                dependency = self.jobs.get(need.job)
                if dependency is None:
                    raise DefinitionError(
                        f"Job '{job.name}' needs unknown job '{need.job}'"
                    )
                if self.stage_index(dependency.stage) > self.stage_index(job.stage):
                    raise DefinitionError(
                        f"Job '{job.name}' needs '{need.job}' from a later stage"
                    )
                if need.artifacts and dependency.artifacts is None:
                    raise DefinitionError(
                        f"Job '{job.name}' needs artifacts from '{need.job}' "
                        "which declares none"
                    )
        return self

    def stage_index(self, stage: str) -> int:
        """Ordinal position of a stage."""
        return self.stages.index(stage)

    def jobs_in_stage(self, stage: str) -> Sequence[JobDefinition]:
        """Jobs of one stage in declaration order."""
        return [job for job in self.jobs.values() if job.stage == stage]
