"""Tests for the job lifecycle state machine."""

import pytest

from pipeline_orchestrator.errors import InvalidTransitionError
from pipeline_orchestrator.lifecycle import JobState
from pipeline_orchestrator.models.result import JobStatus


def test_starts_pending() -> None:
    """Starts every job in pending."""
    state = JobState("build")

    assert state.status == "pending"
    assert not state.terminal


def test_gated_path() -> None:
    """Walks a gated job through approval to success."""
    state = JobState("deploy")

    for status in ("waiting_for_approval", "approved", "running", "succeeded"):
        state.transition(status)  # type: ignore[arg-type]

    assert state.history == (
        "pending",
        "waiting_for_approval",
        "approved",
        "running",
        "succeeded",
    )
    assert state.terminal


@pytest.mark.parametrize(
    ("path", "target"),
    [
        pytest.param([], "succeeded", id="pending-to-succeeded"),
        pytest.param(["waiting_for_approval"], "running", id="bypass-approval"),
        pytest.param(["running", "succeeded"], "running", id="restart-terminal"),
        pytest.param(["skipped"], "running", id="run-skipped"),
        pytest.param(["running"], "blocked", id="block-running"),
    ],
)
def test_rejects_illegal_transitions(path: list[JobStatus], target: JobStatus) -> None:
    """Raises InvalidTransitionError for unreachable targets."""
    state = JobState("job")
    for status in path:
        state.transition(status)

    with pytest.raises(InvalidTransitionError):
        state.transition(target)


@pytest.mark.parametrize(
    "path",
    [
        ["canceled"],
        ["waiting_for_approval", "canceled"],
        ["waiting_for_approval", "approved", "canceled"],
        ["running", "canceled"],
    ],
)
def test_cancel_reachable_until_terminal(path: list[JobStatus]) -> None:
    """Allows cancellation from every non-terminal state."""
    state = JobState("job")

    for status in path:
        state.transition(status)

    assert state.status == "canceled"
