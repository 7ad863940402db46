"""Tests for the commit context model."""

import pytest
from pydantic import ValidationError

from pipeline_orchestrator.models.context import CommitContext, slugify_ref


@pytest.mark.parametrize(
    ("ref", "expected"),
    [
        ("development", "development"),
        ("feature/Login_Page", "feature-login-page"),
        ("1.2.3", "1-2-3"),
        ("-release-", "release"),
        ("a" * 70, "a" * 63),
    ],
)
def test_slugify_ref(ref: str, expected: str) -> None:
    """Lowercases, replaces unsafe characters, truncates and strips dashes."""
    assert slugify_ref(ref) == expected


def test_rejects_branch_and_tag_together() -> None:
    """Refuses a commit that claims to be both a branch and a tag push."""
    with pytest.raises(ValidationError):
        CommitContext(sha="abc", project="acme/app", branch="main", tag="1.0")


def test_predefined_variables_for_branch() -> None:
    """Derives commit variables for a branch push."""
    context = CommitContext(
        sha="0123456789abcdef0123", project="acme/storefront", branch="feature/X"
    )

    assert context.predefined_variables() == {
        "CI_COMMIT_SHA": "0123456789abcdef0123",
        "CI_COMMIT_SHORT_SHA": "01234567",
        "CI_COMMIT_REF_NAME": "feature/X",
        "CI_COMMIT_REF_SLUG": "feature-x",
        "CI_PROJECT_PATH": "acme/storefront",
        "CI_PROJECT_NAME": "storefront",
        "CI_COMMIT_BRANCH": "feature/X",
    }


def test_predefined_variables_for_tag() -> None:
    """Sets CI_COMMIT_TAG instead of CI_COMMIT_BRANCH for tag pushes."""
    context = CommitContext(sha="0123456789", project="acme/storefront", tag="1.2.3")

    variables = context.predefined_variables()

    assert variables["CI_COMMIT_TAG"] == "1.2.3"
    assert "CI_COMMIT_BRANCH" not in variables
    assert context.ref_slug == "1-2-3"


def test_context_is_immutable() -> None:
    """Refuses attribute assignment."""
    context = CommitContext(sha="0123456789", project="acme/storefront")

    with pytest.raises(ValidationError):
        context.branch = "main"  # type: ignore[misc]
