"""Translation of source-control webhook payloads into commit contexts."""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel

from pipeline_orchestrator.models.context import CommitContext

BRANCH_PREFIX = "refs/heads/"
TAG_PREFIX = "refs/tags/"
NULL_SHA = "0" * 40


class GitLabProject(BaseModel):
    """Project section of a GitLab push hook."""

    path_with_namespace: str


class GitLabPushHook(BaseModel):
    """Subset of GitLab push and tag push hooks the engine relies on."""

    object_kind: Literal["push", "tag_push"]
    ref: str
    checkout_sha: str | None
    project: GitLabProject


class GitHubRepository(BaseModel):
    """Repository section of a GitHub push event."""

    full_name: str


class GitHubPushEvent(BaseModel):
    """Subset of the GitHub push event the engine relies on."""

    ref: str
    after: str
    deleted: bool = False
    repository: GitHubRepository


def split_ref(ref: str) -> tuple[str | None, str | None]:
    """Split a fully qualified git ref into (branch, tag)."""
    if ref.startswith(BRANCH_PREFIX):
        return ref.removeprefix(BRANCH_PREFIX), None
    if ref.startswith(TAG_PREFIX):
        return None, ref.removeprefix(TAG_PREFIX)
    raise ValueError(f"Unsupported ref '{ref}'")


def from_gitlab(payload: Mapping[str, Any]) -> CommitContext:
    """Build a commit context from a GitLab push or tag push hook.

    Raises:
        ValueError: If the payload is invalid or describes a ref deletion

    """
    hook = GitLabPushHook.model_validate(payload)
    if hook.checkout_sha is None or hook.checkout_sha == NULL_SHA:
        raise ValueError("Ref deletions do not trigger pipelines")

    branch, tag = split_ref(hook.ref)
    return CommitContext(
        sha=hook.checkout_sha,
        project=hook.project.path_with_namespace,
        branch=branch,
        tag=tag,
    )


def from_github(payload: Mapping[str, Any]) -> CommitContext:
    """Build a commit context from a GitHub push event.

    Raises:
        ValueError: If the payload is invalid or describes a ref deletion

    """
    event = GitHubPushEvent.model_validate(payload)
    if event.deleted or event.after == NULL_SHA:
        raise ValueError("Ref deletions do not trigger pipelines")

    branch, tag = split_ref(event.ref)
    return CommitContext(
        sha=event.after,
        project=event.repository.full_name,
        branch=branch,
        tag=tag,
    )
