"""Loading of pipeline definitions from YAML files."""

import asyncio
from pathlib import Path

import yaml
from pydantic import ValidationError

from pipeline_orchestrator.graph import StageGraph
from pipeline_orchestrator.models.definition import PipelineDefinition


async def load_pipeline_definition(path: Path) -> PipelineDefinition:
    """Load and validate a pipeline definition file.

    Args:
        path: Path to the YAML definition

    Returns:
        Validated definition with templates composed into jobs

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid YAML or fails validation
        DefinitionError: If the needs of jobs form a cycle

    """
    if not path.is_file():
        raise FileNotFoundError(f"Pipeline definition not found: {path}")

    content = await asyncio.to_thread(path.read_text)

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty pipeline definition: {path}")

    try:
        definition = PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid pipeline definition schema in {path}: {e}") from e

    StageGraph.from_definition(definition)
    return definition
