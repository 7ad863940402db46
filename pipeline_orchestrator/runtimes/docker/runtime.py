"""Docker runtime implementation."""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from pipeline_orchestrator.errors import RuntimeProvisionFailure
from pipeline_orchestrator.models.context import slugify_ref
from pipeline_orchestrator.models.result import ExecutionResult
from pipeline_orchestrator.runtimes.base import CacheRef, JobRuntime, render_script
from pipeline_orchestrator.runtimes.docker.config import DockerRuntimeConfig

log = logging.getLogger(__name__)

# `docker run` exits with 125 when the daemon fails before the container
# command starts (bad image, daemon down, invalid flags).
DOCKER_RUN_ERROR = 125


@dataclass(frozen=True, kw_only=True)
class DockerRuntime(JobRuntime):
    """Runs each job script in a throw-away container."""

    config: DockerRuntimeConfig

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: DockerRuntimeConfig
    ) -> AsyncGenerator["DockerRuntime", None]:
        """Create runtime for the given configuration."""
        yield cls(config=config)

    def build_command(
        self,
        image_ref: str | None,
        script_lines: Sequence[str],
        env_vars: Mapping[str, str],
        cache_refs: Sequence[CacheRef],
    ) -> Sequence[str]:
        """Build the `docker run` invocation for a job."""
        workdir = self.config.container_workdir
        command = [
            self.config.docker_binary,
            "run",
            "--rm",
            "--workdir",
            workdir,
            "--volume",
            f"{self.config.workdir.resolve()}:{workdir}",
        ]
        if self.config.network:
            command += ["--network", self.config.network]
        if self.config.privileged:
            command.append("--privileged")

        for cache in cache_refs:
            for index, path in enumerate(cache.paths):
                volume = f"pipeline-cache-{slugify_ref(cache.key)}-{index}"
                command += ["--volume", f"{volume}:{workdir}/{path.rstrip('/')}"]

        for name, value in env_vars.items():
            command += ["--env", f"{name}={value}"]

        command += [
            image_ref or self.config.default_image,
            "sh",
            "-c",
            render_script(script_lines),
        ]
        return command

    async def execute(
        self,
        image_ref: str | None,
        script_lines: Sequence[str],
        env_vars: Mapping[str, str],
        cache_refs: Sequence[CacheRef],
    ) -> ExecutionResult:
        """Run the script in a container of the given image."""
        command = self.build_command(image_ref, script_lines, env_vars, cache_refs)
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise RuntimeProvisionFailure(f"Cannot start docker: {e}") from e

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        output = stdout.decode(errors="replace")
        if process.returncode == DOCKER_RUN_ERROR:
            raise RuntimeProvisionFailure(
                f"Container for {image_ref or self.config.default_image} "
                f"failed to start: {output.strip()}"
            )

        return ExecutionResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            output=output,
            duration=time.monotonic() - started,
        )
