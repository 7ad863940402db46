"""Deployment environments and serialization of protected deploys."""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from string import Template

from pipeline_orchestrator.models.definition import EnvironmentSpec

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Environment:
    """Resolved deployment target.

    ``key`` is the concurrency-group key; ``None`` means deployments to this
    environment may run concurrently.
    """

    name: str
    url: str | None = None
    key: str | None = None

    @property
    def protected(self) -> bool:
        """Whether deployments to this environment are serialized."""
        return self.key is not None


class EnvironmentRegistry:
    """Hands out exclusive deployment tokens per concurrency key.

    One registry is shared by every pipeline run of an orchestrator, so two
    runs deploying to the same protected environment queue behind each other
    in arrival order.
    """

    def __init__(self, protected_environments: frozenset[str] = frozenset()) -> None:
        self._protected = protected_environments
        self._holders: dict[str, str] = {}
        self._queues: dict[str, deque[tuple[str, asyncio.Future[None]]]] = {}

    def resolve(
        self, spec: EnvironmentSpec, variables: Mapping[str, str]
    ) -> Environment:
        """Expand the name and URL templates of an environment binding."""
        name = Template(spec.name).safe_substitute(variables)
        url = Template(spec.url).safe_substitute(variables) if spec.url else None

        if spec.resource_group is not None:
            key: str | None = Template(spec.resource_group).safe_substitute(variables)
        elif name in self._protected or name.split("/", 1)[0] in self._protected:
            key = name
        else:
            key = None

        return Environment(name=name, url=url, key=key)

    def holder(self, key: str) -> str | None:
        """Identifier of the job currently holding the token for a key."""
        return self._holders.get(key)

    def queued(self, key: str) -> Sequence[str]:
        """Jobs waiting for the token of a key, in arrival order."""
        return [
            holder for holder, waiter in self._queues.get(key, ()) if not waiter.done()
        ]

    @asynccontextmanager
    async def acquire(
        self, environment: Environment, holder: str
    ) -> AsyncGenerator[None, None]:
        """Hold the environment's token for the duration of the block.

        Unprotected environments are entered immediately. The token is
        released however the block exits, including cancellation.
        """
        if environment.key is None:
            yield
            return

        await self._acquire(environment.key, holder)
        try:
            yield
        finally:
            self._release(environment.key, holder)

    async def _acquire(self, key: str, holder: str) -> None:
        if key not in self._holders:
            self._holders[key] = holder
            log.info("Environment token %s acquired by %s", key, holder)
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queues.setdefault(key, deque()).append((holder, waiter))
        log.info(
            "Environment token %s held by %s, %s queued",
            key,
            self._holders[key],
            holder,
        )
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                self._release(key, holder)
            raise
        log.info("Environment token %s acquired by %s", key, holder)

    def _release(self, key: str, holder: str) -> None:
        if self._holders.get(key) != holder:
            return

        queue = self._queues.get(key)
        while queue:
            next_holder, waiter = queue.popleft()
            if not waiter.done():
                self._holders[key] = next_holder
                waiter.set_result(None)
                log.info("Environment token %s handed to %s", key, next_holder)
                return

        del self._holders[key]
        self._queues.pop(key, None)
        log.info("Environment token %s released by %s", key, holder)
