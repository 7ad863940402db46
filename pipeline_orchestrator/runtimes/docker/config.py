"""Configuration for the Docker runtime."""

from pathlib import Path

from pydantic import BaseModel


class DockerRuntimeConfig(BaseModel):
    """Configuration for the Docker runtime.

    The workdir is bind-mounted at ``container_workdir`` in every job
    container, so files written by one job are visible to the next.
    """

    docker_binary: str = "docker"
    default_image: str = "alpine:latest"
    workdir: Path = Path(".")
    container_workdir: str = "/workspace"
    network: str | None = None
    privileged: bool = False
