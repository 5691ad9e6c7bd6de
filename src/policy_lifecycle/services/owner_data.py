"""Synthetic owner and contact data for converted vehicles.

Vehicles registered without an owner receive plausible placeholder data at
conversion time. The generator is reseeded from the serial number, so
converting the same vehicle twice yields the same profile; different
vehicles may collide.
"""

import hashlib

from beartype import beartype
from faker import Faker

from ..models.policy import OwnerProfile

LOCALE = "es_MX"

fake = Faker(LOCALE)


def _seed_for(serial_number: str) -> int:
    digest = hashlib.sha256(serial_number.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def _phone_digits(raw: str) -> str:
    # Ten-digit national number; prefixes and extensions are dropped.
    digits = "".join(ch for ch in raw if ch.isdigit())
    return digits[-10:]


@beartype
def generate_owner_profile(serial_number: str) -> OwnerProfile:
    """Build a deterministic synthetic owner profile for a vehicle serial."""
    fake.seed_instance(_seed_for(serial_number))
    full_name = f"{fake.first_name()} {fake.last_name()} {fake.last_name()}"

    return OwnerProfile(
        full_name=full_name,
        tax_id=fake.rfc(),
        phone=_phone_digits(fake.phone_number()),
        email=fake.free_email(),
        street=fake.street_address(),
        neighborhood=f"Col. {fake.last_name()}",
        municipality=fake.city(),
        region=fake.state(),
        postal_code=fake.postcode(),
    )
