"""Configuration for the local shell runtime."""

from pathlib import Path

from pydantic import BaseModel


class LocalRuntimeConfig(BaseModel):
    """Configuration for the local shell runtime.

    Scripts run directly on the host; the image reference is ignored.
    """

    shell: str = "/bin/sh"
    workdir: Path = Path(".")
    inherit_env: bool = True
