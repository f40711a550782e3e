"""Base Pydantic models for books, steps and settings.

This module defines the foundational model classes used by the book
loader, the runner request models and runtime settings.
"""

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchemaModel(BaseModel):
    """Base immutable model for all book elements.

    Design principles enforced by this model:
        - Immutability: elements can not be modified after creation,
          so a built scenario can be run repeatedly with the same result.
        - Strict schema validation: unknown or extra fields are rejected
          to avoid silent errors caused by typos.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        frozen=True,
        extra='forbid',
    )


class SettingsModel(BaseSettings):
    """Base immutable model for runtime settings.

    Unknown or extra environment variables are ignored, so the
    surrounding environment may contain unrelated variables.
    """

    model_config = SettingsConfigDict(
        frozen=True,
        extra='ignore',
    )
