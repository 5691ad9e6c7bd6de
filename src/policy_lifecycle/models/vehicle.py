# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Vehicle domain model."""

from enum import Enum
from uuid import UUID

from pydantic import Field, field_validator

from .base import DocumentModel
from .policy import OwnerProfile, VehicleDetails

VEHICLES = "vehicles"


class VehicleStatus(str, Enum):
    """Lifecycle status of a vehicle record."""

    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"
    CONVERTED = "CONVERTED"
    # Older label for CONVERTED; readable, never written.
    LEGACY_CONVERTED = "LEGACY_CONVERTED"
    REMOVED = "REMOVED"

    @property
    def is_converted(self) -> bool:
        """Whether the vehicle was promoted under any label."""
        return self in (VehicleStatus.CONVERTED, VehicleStatus.LEGACY_CONVERTED)


class Vehicle(DocumentModel):
    """Vehicle record as stored in the ``vehicles`` collection."""

    serial_number: str = Field(..., min_length=1, max_length=50)
    vehicle_status: VehicleStatus = Field(default=VehicleStatus.UNASSIGNED)
    policy_ref: UUID | None = None
    owner: OwnerProfile | None = None

    make: str | None = None
    model: str | None = None
    year: int | None = Field(None, ge=1900, le=2100)
    color: str | None = None
    plates: str | None = None
    created_by: str | None = None

    @field_validator("serial_number")
    @classmethod
    def normalize_serial(cls, v: str) -> str:
        """Serial numbers are stored upper-case without inner whitespace."""
        return "".join(v.split()).upper()

    def details(self) -> VehicleDetails:
        """Descriptive data to copy onto a policy."""
        return VehicleDetails(
            make=self.make,
            model=self.model,
            year=self.year,
            color=self.color,
            plates=self.plates,
        )
