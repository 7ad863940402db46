"""Runtime manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic import BaseModel

from pipeline_orchestrator.runtimes.base import JobRuntime


@dataclass(frozen=True, kw_only=True)
class RuntimeManifest[ConfigT: BaseModel]:
    """Manifest describing a runtime plugin.

    The manifest contains references to the configuration class and the
    runtime factory function for lazy loading of runtimes based on their key.
    """

    config_cls: type[ConfigT]
    runtime_factory: Callable[[ConfigT], AbstractAsyncContextManager[JobRuntime]]
