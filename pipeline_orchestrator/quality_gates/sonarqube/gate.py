"""SonarQube quality gate implementation."""

import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Literal

import aiohttp

from pipeline_orchestrator.errors import ApiFailure
from pipeline_orchestrator.quality_gates.base import GateVerdict, PollingQualityGate
from pipeline_orchestrator.quality_gates.sonarqube.config import SonarQubeConfig
from pipeline_orchestrator.quality_gates.sonarqube.models import (
    GateStatus,
    ProjectStatusResponse,
)

log = logging.getLogger(__name__)

STATUS_TO_VERDICT: Mapping[GateStatus, Literal["pass", "fail"] | None] = {
    "OK": "pass",
    "WARN": "pass",
    "ERROR": "fail",
    "NONE": None,
}


@dataclass(frozen=True, kw_only=True)
class SonarQubeQualityGate(PollingQualityGate):
    """Reads the quality-gate status of a project analysed by sonar-scanner.

    The scanner itself runs in the job script; this gate only waits for the
    server to compute the verdict of the uploaded analysis.
    """

    config: SonarQubeConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: SonarQubeConfig
    ) -> AsyncGenerator["SonarQubeQualityGate", None]:
        """Create gate with managed session lifecycle."""
        headers = {"Authorization": f"Bearer {config.token.get_secret_value()}"}
        async with aiohttp.ClientSession(headers=headers) as session:
            yield cls(
                config=config, session=session, poll_interval=config.poll_interval
            )

    async def prepare(
        self, sources: Sequence[str], coverage_report: str | None
    ) -> GateVerdict | None:
        """Fail early when the coverage report the analysis relies on is missing."""
        if coverage_report is None:
            return None
        if not (self.config.project_dir / coverage_report).exists():
            log.warning("Coverage report %s not found", coverage_report)
            return "fail"
        return None

    async def poll_status(self) -> Literal["pass", "fail"] | None:
        """Read the project's quality-gate status."""
        url = f"{self.config.host_url.rstrip('/')}/api/qualitygates/project_status"
        params = {"projectKey": self.config.project_key}
        try:
            async with self.session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise ApiFailure(
                        f"Failed to get quality gate status: {response.status} {text}"
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise ApiFailure(f"SonarQube unreachable: {e}") from e

        status = ProjectStatusResponse.model_validate(data).project_status.status
        log.info("Quality gate for %s: %s", self.config.project_key, status)
        return STATUS_TO_VERDICT[status]
