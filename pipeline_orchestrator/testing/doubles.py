"""In-memory runtime double and helpers for engine tests."""

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from pipeline_orchestrator.models.result import ExecutionResult
from pipeline_orchestrator.runtimes.base import CacheRef, JobRuntime


@dataclass(frozen=True, kw_only=True)
class RecordedExecution:
    """One call made to a ScriptedRuntime."""

    image_ref: str | None
    script_lines: Sequence[str]
    env_vars: Mapping[str, str]
    cache_refs: Sequence[CacheRef]


@dataclass(frozen=True, kw_only=True)
class ScriptedRuntime(JobRuntime):
    """Runtime returning scripted outcomes keyed by the first script line.

    Each outcome is an exit code or an exception to raise. The last outcome of
    a key repeats once the others are consumed; unknown keys exit with 0.
    A script whose key has an entry in ``gates`` blocks until that event is set.
    """

    outcomes: dict[str, list[int | BaseException]] = field(default_factory=dict)
    gates: dict[str, asyncio.Event] = field(default_factory=dict)
    calls: list[RecordedExecution] = field(default_factory=list)

    def executions(self, key: str) -> list[RecordedExecution]:
        """Calls whose script started with the given line."""
        return [call for call in self.calls if call.script_lines[0] == key]

    async def execute(
        self,
        image_ref: str | None,
        script_lines: Sequence[str],
        env_vars: Mapping[str, str],
        cache_refs: Sequence[CacheRef],
    ) -> ExecutionResult:
        """Record the call and replay the next scripted outcome."""
        key = script_lines[0]
        self.calls.append(
            RecordedExecution(
                image_ref=image_ref,
                script_lines=list(script_lines),
                env_vars=dict(env_vars),
                cache_refs=list(cache_refs),
            )
        )

        if (gate := self.gates.get(key)) is not None:
            await gate.wait()

        queue = self.outcomes.get(key, [])
        outcome = (queue.pop(0) if len(queue) > 1 else queue[0]) if queue else 0
        if isinstance(outcome, BaseException):
            raise outcome
        return ExecutionResult(exit_code=outcome, output=f"$ {key}", duration=0.0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds.

    Raises:
        TimeoutError: If the predicate still fails after ``timeout`` seconds

    """
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)
