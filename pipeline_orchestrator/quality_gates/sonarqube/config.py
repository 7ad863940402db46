"""Configuration for the SonarQube quality gate."""

from pathlib import Path

from pydantic import BaseModel, SecretStr


class SonarQubeConfig(BaseModel):
    """Configuration for the SonarQube quality gate.

    The token needs the ``Browse`` permission on the project to read its
    quality-gate status.
    """

    host_url: str
    token: SecretStr
    project_key: str
    project_dir: Path = Path(".")
    poll_interval: float = 5
