"""Tests for pipeline definition models."""

from datetime import timedelta
from typing import Any

import pytest
from pydantic import ValidationError

from pipeline_orchestrator.models.definition import (
    JobDefinition,
    PipelineDefinition,
    RetryPolicy,
    parse_duration,
)


def pipeline(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "stages": ["build", "deploy"],
        "jobs": {
            "build": {"stage": "build", "script": ["make"]},
            "deploy": {"stage": "deploy", "script": ["make deploy"]},
        },
    }
    data.update(overrides)
    return data


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1 week", timedelta(weeks=1)),
            ("2 days", timedelta(days=2)),
            ("30m", timedelta(minutes=30)),
            ("1h 30m", timedelta(hours=1, minutes=30)),
            ("5 minutes", timedelta(minutes=5)),
            ("90", timedelta(seconds=90)),
            (45, timedelta(seconds=45)),
        ],
    )
    def test_parses_human_durations(self, value: str | int, expected: timedelta) -> None:
        """Parses units, plurals, compound values and bare seconds."""
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["soon", "3 fortnights", "", "1h later"])
    def test_rejects_invalid_durations(self, value: str) -> None:
        """Raises ValueError for unknown units or trailing text."""
        with pytest.raises(ValueError):
            parse_duration(value)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_accepts_space_separated_when(self) -> None:
        """Splits a space-separated failure class list."""
        policy = RetryPolicy.model_validate(
            {"max": 2, "when": "runner_system_failure script_failure"}
        )

        assert policy.when == {"runner_system_failure", "script_failure"}

    def test_rejects_more_than_two_retries(self) -> None:
        """Bounds max to two additional attempts."""
        with pytest.raises(ValidationError):
            RetryPolicy(max=3)

    def test_transient_failures_always_retryable(self) -> None:
        """Allows transient failures even when when is empty."""
        policy = RetryPolicy(max=1)

        assert policy.allows_retry("api_failure", transient=True)
        assert not policy.allows_retry("script_failure", transient=False)

    def test_script_failure_retryable_when_listed(self) -> None:
        """Allows script failures only when listed."""
        policy = RetryPolicy(max=1, when=frozenset(["script_failure"]))

        assert policy.allows_retry("script_failure", transient=False)

    def test_quality_gate_never_retryable(self) -> None:
        """Refuses quality gate outcomes whatever the configuration."""
        policy = RetryPolicy(
            max=2, when=frozenset(["quality_gate_failure", "quality_gate_timeout"])
        )

        assert not policy.allows_retry("quality_gate_failure", transient=False)
        assert not policy.allows_retry("quality_gate_timeout", transient=False)


class TestJobDefinition:
    """Tests for JobDefinition shorthands."""

    def test_expands_shorthands(self) -> None:
        """Normalizes string scripts, string needs, integer retry and a single cache."""
        job = JobDefinition.model_validate(
            {
                "name": "deploy",
                "stage": "deploy",
                "script": "make deploy",
                "needs": ["build", {"job": "test", "artifacts": True}],
                "retry": 1,
                "cache": {"key": "deps", "paths": ["node_modules/"]},
                "timeout": "10m",
            }
        )

        assert job.script == ["make deploy"]
        assert [need.job for need in job.needs or ()] == ["build", "test"]
        assert job.needs is not None and job.needs[1].artifacts
        assert job.retry.max == 1
        assert job.cache[0].key == "deps"
        assert job.timeout == 600

    def test_requires_script(self) -> None:
        """Rejects a job without script steps."""
        with pytest.raises(ValidationError):
            JobDefinition.model_validate({"name": "x", "stage": "build", "script": []})

    def test_rejects_unknown_fields(self) -> None:
        """Rejects keys that are not part of the job schema."""
        with pytest.raises(ValidationError):
            JobDefinition.model_validate(
                {"name": "x", "stage": "build", "script": ["true"], "services": []}
            )


class TestPipelineDefinition:
    """Tests for PipelineDefinition composition and validation."""

    def test_names_jobs_from_keys(self) -> None:
        """Sets each job's name from its key."""
        definition = PipelineDefinition.model_validate(pipeline())

        assert list(definition.jobs) == ["build", "deploy"]
        assert definition.jobs["deploy"].name == "deploy"

    def test_composes_templates(self) -> None:
        """Merges templates into jobs, the job's own keys winning."""
        definition = PipelineDefinition.model_validate(
            pipeline(
                templates={
                    "notify": {"retry": {"max": 2, "when": "script_failure"}},
                    "deploy_base": {
                        "extends": "notify",
                        "image": "alpine:latest",
                        "variables": {"REGISTRY": "registry.example.com"},
                    },
                },
                jobs={
                    "build": {"stage": "build", "script": ["make"]},
                    "deploy": {
                        "stage": "deploy",
                        "extends": ["deploy_base"],
                        "script": ["make deploy"],
                        "variables": {"TARGET": "prod"},
                    },
                },
            )
        )

        deploy = definition.jobs["deploy"]
        assert deploy.image == "alpine:latest"
        assert deploy.retry.max == 2
        assert deploy.retry.when == {"script_failure"}
        assert deploy.variables == {
            "REGISTRY": "registry.example.com",
            "TARGET": "prod",
        }

    def test_resolves_rule_set_reference(self) -> None:
        """Replaces a rule set name with the named table."""
        definition = PipelineDefinition.model_validate(
            pipeline(
                rule_sets={"main_only": [{"branch": "main"}, {"when": "never"}]},
                jobs={
                    "build": {"stage": "build", "script": ["make"]},
                    "deploy": {
                        "stage": "deploy",
                        "script": ["make deploy"],
                        "rules": "main_only",
                    },
                },
            )
        )

        rules = definition.jobs["deploy"].rules
        assert rules is not None
        assert [rule.branch for rule in rules] == ["main", None]

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            pytest.param(
                {"stages": ["build", "build", "deploy"]},
                "Stage names must be unique",
                id="duplicate-stage",
            ),
            pytest.param(
                {"jobs": {"lint": {"stage": "verify", "script": ["lint"]}}},
                "unknown stage 'verify'",
                id="unknown-stage",
            ),
            pytest.param(
                {
                    "jobs": {
                        "build": {"stage": "build", "script": ["make"], "needs": ["x"]}
                    }
                },
                "needs unknown job 'x'",
                id="unknown-need",
            ),
            pytest.param(
                {
                    "jobs": {
                        "build": {
                            "stage": "build",
                            "script": ["make"],
                            "needs": ["deploy"],
                        },
                        "deploy": {"stage": "deploy", "script": ["make deploy"]},
                    }
                },
                "from a later stage",
                id="later-stage-need",
            ),
            pytest.param(
                {
                    "jobs": {
                        "build": {"stage": "build", "script": ["make"]},
                        "deploy": {
                            "stage": "deploy",
                            "script": ["make deploy"],
                            "needs": [{"job": "build", "artifacts": True}],
                        },
                    }
                },
                "declares none",
                id="missing-artifacts",
            ),
            pytest.param(
                {
                    "jobs": {
                        "build": {"stage": "build", "script": ["make"]},
                        "deploy": {
                            "stage": "deploy",
                            "script": ["make deploy"],
                            "needs": ["build", "build"],
                        },
                    }
                },
                "lists a need twice",
                id="duplicate-need",
            ),
            pytest.param(
                {
                    "jobs": {
                        "deploy": {
                            "stage": "deploy",
                            "script": ["make deploy"],
                            "rules": "nowhere",
                        }
                    }
                },
                "unknown rule set 'nowhere'",
                id="unknown-rule-set",
            ),
            pytest.param(
                {
                    "jobs": {
                        "deploy": {
                            "stage": "deploy",
                            "script": ["make deploy"],
                            "extends": "missing",
                        }
                    }
                },
                "Unknown template 'missing'",
                id="unknown-template",
            ),
        ],
    )
    def test_rejects_invalid_references(
        self, overrides: dict[str, Any], message: str
    ) -> None:
        """Reports structural errors with the offending names."""
        with pytest.raises(ValidationError) as exc_info:
            PipelineDefinition.model_validate(pipeline(**overrides))

        assert message in str(exc_info.value)

    def test_jobs_in_stage_keeps_declaration_order(self) -> None:
        """Lists the jobs of a stage in the order they were declared."""
        definition = PipelineDefinition.model_validate(
            pipeline(
                jobs={
                    "b": {"stage": "build", "script": ["b"]},
                    "a": {"stage": "build", "script": ["a"]},
                    "c": {"stage": "deploy", "script": ["c"]},
                }
            )
        )

        assert [job.name for job in definition.jobs_in_stage("build")] == ["b", "a"]
        assert definition.stage_index("deploy") == 1
