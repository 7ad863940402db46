"""SonarQube quality gate module."""

from pipeline_orchestrator.quality_gates.sonarqube.config import SonarQubeConfig
from pipeline_orchestrator.quality_gates.sonarqube.gate import SonarQubeQualityGate

__all__ = ["SonarQubeConfig", "SonarQubeQualityGate"]
