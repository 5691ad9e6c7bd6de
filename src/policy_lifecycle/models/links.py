"""Typed Vehicle <-> Policy reference.

Both sides of the relation are produced from one VehicleLink value and written
in the same transaction, so a link is never half-established by a write path.
"""

from typing import Any
from uuid import UUID

from attrs import field, frozen
from beartype import beartype

from .policy import Policy
from .vehicle import Vehicle, VehicleStatus

VEHICLE_NOT_LINKED = "VEHICLE_NOT_LINKED"
POLICY_NOT_LINKED = "POLICY_NOT_LINKED"
NUMBER_MISMATCH = "NUMBER_MISMATCH"


@frozen
class VehicleLink:
    """Bidirectional reference between a vehicle and its provisional policy."""

    vehicle_id: UUID = field()
    policy_id: UUID = field()
    serial_number: str = field()

    @classmethod
    @beartype
    def for_pair(cls, vehicle: Vehicle, policy_id: UUID) -> "VehicleLink":
        """Build the link a conversion of ``vehicle`` will establish."""
        return cls(
            vehicle_id=vehicle.id,
            policy_id=policy_id,
            serial_number=vehicle.serial_number,
        )

    @beartype
    def vehicle_patch(self) -> dict[str, Any]:
        """Vehicle-side fields of the link.

        The normalized serial is written back so the stored vehicle matches
        the policy number.
        """
        return {
            "vehicle_status": VehicleStatus.CONVERTED.value,
            "policy_ref": str(self.policy_id),
            "serial_number": self.serial_number,
        }

    @beartype
    def policy_fields(self) -> dict[str, Any]:
        """Policy-side fields of the link."""
        return {
            "vehicle_ref": str(self.vehicle_id),
            "policy_number": self.serial_number,
        }

    @staticmethod
    @beartype
    def check(vehicle: Vehicle, policy: Policy) -> list[str]:
        """Validate a (vehicle, policy) pair symmetrically.

        Returns the list of problems found; an empty list means both sides
        agree.
        """
        problems: list[str] = []
        if vehicle.policy_ref != policy.id:
            problems.append(VEHICLE_NOT_LINKED)
        if policy.vehicle_ref != vehicle.id:
            problems.append(POLICY_NOT_LINKED)
        if policy.policy_kind.is_provisional and policy.policy_number != vehicle.serial_number:
            problems.append(NUMBER_MISMATCH)
        return problems
