"""Base model configuration for pipeline data structures."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Base model with standard configuration.

    Definitions are immutable once loaded and reject unknown keys. Numbers
    are accepted where strings are expected, as YAML variables often are.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", coerce_numbers_to_str=True)
