"""Local shell runtime manifest."""

from pipeline_orchestrator.runtimes.local.config import LocalRuntimeConfig
from pipeline_orchestrator.runtimes.local.runtime import LocalRuntime
from pipeline_orchestrator.runtimes.manifest import RuntimeManifest

local_manifest = RuntimeManifest(
    config_cls=LocalRuntimeConfig,
    runtime_factory=LocalRuntime.from_config,
)
