"""Shared Pydantic base models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class HealthBase(BaseModel):
    """Base model with shared config for all health dashboard schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class PayloadBase(HealthBase):
    """Base for device payload schemas: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, frozen=True)
