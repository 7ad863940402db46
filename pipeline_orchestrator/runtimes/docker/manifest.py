"""Docker runtime manifest."""

from pipeline_orchestrator.runtimes.docker.config import DockerRuntimeConfig
from pipeline_orchestrator.runtimes.docker.runtime import DockerRuntime
from pipeline_orchestrator.runtimes.manifest import RuntimeManifest

docker_manifest = RuntimeManifest(
    config_cls=DockerRuntimeConfig,
    runtime_factory=DockerRuntime.from_config,
)
