"""Local shell runtime implementation."""

import asyncio
import logging
import os
import time
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from pipeline_orchestrator.errors import RuntimeProvisionFailure
from pipeline_orchestrator.models.result import ExecutionResult
from pipeline_orchestrator.runtimes.base import CacheRef, JobRuntime, render_script
from pipeline_orchestrator.runtimes.local.config import LocalRuntimeConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class LocalRuntime(JobRuntime):
    """Runs job scripts as host subprocesses in the configured workdir.

    Caches need no handling: every job shares the same workdir.
    """

    config: LocalRuntimeConfig

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: LocalRuntimeConfig
    ) -> AsyncGenerator["LocalRuntime", None]:
        """Create runtime for the given configuration."""
        yield cls(config=config)

    async def execute(
        self,
        image_ref: str | None,
        script_lines: Sequence[str],
        env_vars: Mapping[str, str],
        cache_refs: Sequence[CacheRef],
    ) -> ExecutionResult:
        """Run the script through the configured shell."""
        if image_ref:
            log.debug("Local runtime ignores image %s", image_ref)
        if cache_refs:
            log.debug(
                "Local runtime shares the workdir, ignoring %d cache(s)", len(cache_refs)
            )

        env = {**os.environ, **env_vars} if self.config.inherit_env else dict(env_vars)
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self.config.shell,
                "-c",
                render_script(script_lines),
                cwd=self.config.workdir,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise RuntimeProvisionFailure(f"Cannot start shell: {e}") from e

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return ExecutionResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            output=stdout.decode(errors="replace"),
            duration=time.monotonic() - started,
        )
