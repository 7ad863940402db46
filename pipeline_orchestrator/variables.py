"""Expansion of `$NAME` / `${NAME}` references in pipeline variables."""

from collections.abc import Mapping
from string import Template


def expand(value: str, variables: Mapping[str, str]) -> str:
    """Substitute known variables, leaving unknown references untouched."""
    return Template(value).safe_substitute(variables)


def layer(base: Mapping[str, str], *overrides: Mapping[str, str]) -> dict[str, str]:
    """Apply variable layers in order, expanding each value as it is added.

    Later layers win, and a value may reference anything defined before it.
    """
    merged = dict(base)
    for override in overrides:
        for name, value in override.items():
            merged[name] = expand(str(value), merged)
    return merged
