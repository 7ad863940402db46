"""Manual approval of gated jobs."""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Literal

log = logging.getLogger(__name__)

type ApprovalDecision = Literal["approved", "rejected", "canceled"]


class UnknownApprovalError(KeyError):
    """Raised when a decision refers to a token that is not pending."""


class ApprovalService(ABC):
    """External approval collaborator.

    The engine requests a token when a gate is reached and then waits on it;
    some external actor later calls ``approve`` or ``reject`` with that token.
    """

    @abstractmethod
    def request_approval(self, job_id: str) -> str:
        """Register a gate and return the token identifying it."""

    @abstractmethod
    def approve(self, token: str) -> None:
        """Authorize the gated job to run."""

    @abstractmethod
    def reject(self, token: str) -> None:
        """Refuse the gated job; it is canceled."""

    @abstractmethod
    async def wait(self, token: str) -> ApprovalDecision:
        """Suspend until a decision is taken for the token."""


class ApprovalBroker(ApprovalService):
    """In-process approval service backed by futures.

    Waiting never polls and never times out: a gate stays pending until a
    decision arrives or the waiting task is canceled. Jobs named in
    ``pre_approved`` are approved as soon as they are requested.
    """

    def __init__(self, pre_approved: frozenset[str] = frozenset()) -> None:
        self.pre_approved = pre_approved
        self._pending: dict[str, tuple[str, asyncio.Future[ApprovalDecision]]] = {}

    @property
    def pending(self) -> Mapping[str, str]:
        """Pending tokens mapped to the job they gate."""
        return {token: job_id for token, (job_id, _) in self._pending.items()}

    def request_approval(self, job_id: str) -> str:
        """Register a gate; must be called from within the event loop."""
        token = str(uuid.uuid4())
        future: asyncio.Future[ApprovalDecision] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[token] = (job_id, future)
        log.info("Approval requested for %s (token=%s)", job_id, token)
        if job_id.rsplit("/", 1)[-1] in self.pre_approved:
            self.approve(token)
        return token

    def approve(self, token: str) -> None:
        """Authorize the gated job to run."""
        self._decide(token, "approved")

    def reject(self, token: str) -> None:
        """Refuse the gated job."""
        self._decide(token, "rejected")

    def cancel(self, token: str) -> None:
        """Withdraw a pending request, e.g. because its pipeline was canceled."""
        entry = self._pending.get(token)
        if entry is not None and not entry[1].done():
            self._decide(token, "canceled")

    async def wait(self, token: str) -> ApprovalDecision:
        """Suspend until a decision is taken for the token."""
        if token not in self._pending:
            raise UnknownApprovalError(token)
        _, future = self._pending[token]
        try:
            return await future
        finally:
            self._pending.pop(token, None)

    def _decide(self, token: str, decision: ApprovalDecision) -> None:
        entry = self._pending.get(token)
        if entry is None or entry[1].done():
            raise UnknownApprovalError(token)
        job_id, future = entry
        future.set_result(decision)
        log.info("Approval for %s %s", job_id, decision)
