"""Composition of job templates into concrete job descriptors."""

from collections.abc import Mapping, Sequence
from typing import Any

from pipeline_orchestrator.errors import DefinitionError


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge two mappings, recursing into nested mappings.

    Values that are not mappings on both sides (scalars, lists) are replaced
    by the override, never concatenated.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _extends_of(raw: Mapping[str, Any]) -> Sequence[str]:
    extends = raw.get("extends", ())
    if isinstance(extends, str):
        return (extends,)
    return tuple(extends)


def resolve_template(
    name: str,
    templates: Mapping[str, Mapping[str, Any]],
    _chain: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Flatten a template and everything it extends into one mapping."""
    if name in _chain:
        cycle = " -> ".join((*_chain, name))
        raise DefinitionError(f"Cyclic extends: {cycle}")
    if name not in templates:
        raise DefinitionError(f"Unknown template '{name}'")

    raw = templates[name]
    resolved: dict[str, Any] = {}
    for parent in _extends_of(raw):
        resolved = deep_merge(
            resolved, resolve_template(parent, templates, (*_chain, name))
        )
    body = {key: value for key, value in raw.items() if key != "extends"}
    return deep_merge(resolved, body)


def resolve_job(
    raw: Mapping[str, Any], templates: Mapping[str, Mapping[str, Any]]
) -> dict[str, Any]:
    """Build a job descriptor from its templates plus its own overrides.

    Templates listed later in ``extends`` override earlier ones, and the
    job's own keys override every template.
    """
    resolved: dict[str, Any] = {}
    for parent in _extends_of(raw):
        resolved = deep_merge(resolved, resolve_template(parent, templates))
    body = {key: value for key, value in raw.items() if key != "extends"}
    return deep_merge(resolved, body)
