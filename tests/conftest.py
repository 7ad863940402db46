"""Shared fixtures for pipeline orchestrator tests."""

from collections.abc import Generator
from pathlib import Path

import pytest
from aioresponses import aioresponses as aioresponses_cls

EXAMPLE_DEFINITION = Path(__file__).parent.parent / "examples" / "nodejs-docker.yaml"


@pytest.fixture
def aioresponses() -> Generator[aioresponses_cls, None, None]:
    """Intercept aiohttp requests."""
    with aioresponses_cls() as mocked:
        yield mocked


@pytest.fixture
def example_definition_path() -> Path:
    """Path to the Node.js example pipeline shipped with the project."""
    return EXAMPLE_DEFINITION
