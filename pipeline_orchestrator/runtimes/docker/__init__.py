"""Docker runtime module."""

from pipeline_orchestrator.runtimes.docker.config import DockerRuntimeConfig
from pipeline_orchestrator.runtimes.docker.manifest import docker_manifest
from pipeline_orchestrator.runtimes.docker.runtime import DockerRuntime

__all__ = ["DockerRuntime", "DockerRuntimeConfig", "docker_manifest"]
