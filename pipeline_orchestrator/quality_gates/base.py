"""Abstract base classes for quality gates."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

type GateVerdict = Literal["pass", "fail", "timeout"]


@dataclass(frozen=True, kw_only=True)
class QualityGate(ABC):
    """Quality-gate collaborator evaluated after a job's script succeeds.

    A ``fail`` or ``timeout`` verdict fails the job without retry.
    """

    @abstractmethod
    async def submit(
        self,
        sources: Sequence[str],
        coverage_report: str | None,
        timeout: float = 300,
    ) -> GateVerdict:
        """Submit an analysis and wait for the gate's verdict."""


@dataclass(frozen=True, kw_only=True)
class PollingQualityGate(QualityGate):
    """Quality gate whose verdict is obtained by polling a status endpoint."""

    poll_interval: float = 5

    async def prepare(
        self, sources: Sequence[str], coverage_report: str | None
    ) -> GateVerdict | None:
        """Validate inputs before polling; return a verdict to short-circuit."""
        return None

    @abstractmethod
    async def poll_status(self) -> Literal["pass", "fail"] | None:
        """Return the verdict if available, None while still computing."""

    async def submit(
        self,
        sources: Sequence[str],
        coverage_report: str | None,
        timeout: float = 300,
    ) -> GateVerdict:
        """Poll the gate until it produces a verdict or ``timeout`` expires."""
        if (verdict := await self.prepare(sources, coverage_report)) is not None:
            return verdict

        deadline = asyncio.get_running_loop().time() + timeout

        while True:
            if (status := await self.poll_status()) is not None:
                return status

            if asyncio.get_running_loop().time() >= deadline:
                return "timeout"

            await asyncio.sleep(self.poll_interval)
