"""Loading of runtimes from entry points."""

from importlib.metadata import entry_points
from typing import Any

from pipeline_orchestrator.runtimes.manifest import RuntimeManifest

ENTRY_POINT_GROUP = "pipeline_orchestrator.runtimes"


class RuntimeNotFoundError(Exception):
    """Raised when a runtime is not found."""


def load_runtime_manifest(key: str) -> RuntimeManifest[Any]:
    """Load a runtime manifest by key.

    Args:
        key: The runtime key as registered in pyproject.toml
             (e.g., "local", "docker")

    Returns:
        The runtime manifest instance

    Raises:
        RuntimeNotFoundError: If no runtime with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: RuntimeManifest[Any] = entry.load()
            return manifest

    available = [e.name for e in entries]
    raise RuntimeNotFoundError(
        f"Runtime '{key}' not found. Available runtimes: {available}"
    )
