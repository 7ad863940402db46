"""Job lifecycle state machine."""

import logging
from collections.abc import Mapping, Sequence

from pipeline_orchestrator.errors import InvalidTransitionError
from pipeline_orchestrator.models.result import TERMINAL_STATUSES, JobStatus

log = logging.getLogger(__name__)

TRANSITIONS: Mapping[JobStatus, frozenset[JobStatus]] = {
    "pending": frozenset(
        ["waiting_for_approval", "running", "skipped", "blocked", "canceled"]
    ),
    "waiting_for_approval": frozenset(["approved", "canceled"]),
    "approved": frozenset(["running", "canceled"]),
    "running": frozenset(["succeeded", "failed", "canceled"]),
    "succeeded": frozenset(),
    "failed": frozenset(),
    "canceled": frozenset(),
    "skipped": frozenset(),
    "blocked": frozenset(),
}


class JobState:
    """Current status of one job instance and the path it took to get there."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._history: list[JobStatus] = ["pending"]

    @property
    def status(self) -> JobStatus:
        return self._history[-1]

    @property
    def history(self) -> Sequence[JobStatus]:
        return tuple(self._history)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, target: JobStatus) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If ``target`` is not reachable from the
                current status

        """
        if target not in TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Job '{self.job_id}' cannot move from {self.status} to {target}"
            )
        log.debug("Job %s: %s -> %s", self.job_id, self.status, target)
        self._history.append(target)
