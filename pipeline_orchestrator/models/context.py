"""Commit context a pipeline run is created for."""

import re
from collections.abc import Mapping

from pydantic import Field, model_validator

from pipeline_orchestrator.models.base import Model

SLUG_MAX_LENGTH = 63


def slugify_ref(ref: str) -> str:
    """Convert a ref name into a string usable in hostnames and paths.

    Lowercases, replaces anything outside ``[a-z0-9]`` with ``-``, truncates
    to 63 characters and strips leading/trailing dashes.
    """
    slug = re.sub(r"[^a-z0-9]", "-", ref.lower())[:SLUG_MAX_LENGTH]
    return slug.strip("-")


class CommitContext(Model):
    """Immutable description of the commit a pipeline runs for."""

    sha: str = Field(..., min_length=1, description="Full commit SHA")
    project: str = Field(..., min_length=1, description="Project path (group/name)")
    branch: str | None = Field(default=None, description="Branch name for pushes")
    tag: str | None = Field(default=None, description="Tag name for tag pushes")

    @model_validator(mode="after")
    def _check_ref(self) -> "CommitContext":
        if self.branch is not None and self.tag is not None:
            raise ValueError("branch and tag are mutually exclusive")
        return self

    @property
    def short_sha(self) -> str:
        """First eight characters of the commit SHA."""
        return self.sha[:8]

    @property
    def ref_name(self) -> str:
        """Branch or tag name, empty for detached commits."""
        return self.branch or self.tag or ""

    @property
    def ref_slug(self) -> str:
        """Slugified ref name."""
        return slugify_ref(self.ref_name)

    def predefined_variables(self) -> Mapping[str, str]:
        """Variables every job of a run sees, derived from the commit."""
        variables = {
            "CI_COMMIT_SHA": self.sha,
            "CI_COMMIT_SHORT_SHA": self.short_sha,
            "CI_COMMIT_REF_NAME": self.ref_name,
            "CI_COMMIT_REF_SLUG": self.ref_slug,
            "CI_PROJECT_PATH": self.project,
            "CI_PROJECT_NAME": self.project.rsplit("/", 1)[-1],
        }
        if self.branch is not None:
            variables["CI_COMMIT_BRANCH"] = self.branch
        if self.tag is not None:
            variables["CI_COMMIT_TAG"] = self.tag
        return variables
