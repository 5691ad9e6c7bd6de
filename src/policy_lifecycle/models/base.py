# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Base Pydantic model configuration for all domain models.

Value objects and summaries use the strict configuration. Stored documents
relax ``extra`` so fields written by import collaborators survive a
read-modify-write cycle through this engine.
"""

from datetime import datetime
from typing import Any, Self
from uuid import UUID

from beartype import beartype
from pydantic import BaseModel, ConfigDict, Field


@beartype
class BaseModelConfig(BaseModel):
    """Base model with strict configuration for value objects.

    Enforces:
    - Immutability (frozen=True)
    - No extra fields allowed (extra="forbid")
    - Automatic whitespace stripping
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )


class DocumentModel(BaseModel):
    """Base model for records persisted in the document store."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        str_strip_whitespace=True,
        validate_default=True,
    )

    id: UUID = Field(..., description="Unique identifier for the record")
    created_at: datetime | None = Field(
        None, description="Timestamp when the record was created"
    )
    updated_at: datetime | None = Field(
        None, description="Timestamp when the record was last updated"
    )

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Self:
        """Build the model from a raw store document."""
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible store document."""
        return self.model_dump(mode="json")
