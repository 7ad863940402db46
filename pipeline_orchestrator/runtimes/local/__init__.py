"""Local shell runtime module."""

from pipeline_orchestrator.runtimes.local.config import LocalRuntimeConfig
from pipeline_orchestrator.runtimes.local.manifest import local_manifest
from pipeline_orchestrator.runtimes.local.runtime import LocalRuntime

__all__ = ["LocalRuntime", "LocalRuntimeConfig", "local_manifest"]
