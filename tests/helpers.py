"""Shared builders and fakes for zkcensus tests."""

from datetime import date

from zkcensus.data_models import (
    AgeRange,
    CircuitInput,
    Continent,
    NullifierSecret,
    PrivateWitness,
    PublicInput,
)
from zkcensus.nullifier import derive_nullifier

CIRCUIT_CENSUS_ID = "census-circuit"


def make_circuit_input(
    date_of_birth=date(2001, 1, 1),
    nationality="BRA",
    age_range=AgeRange.AGE_18_24,
    continent=Continent.SOUTH_AMERICA,
    reference_date=date(2024, 6, 1),
    census_id=CIRCUIT_CENSUS_ID,
    secret_value=b"\x11" * 32,
) -> CircuitInput:
    """Circuit input built directly, bypassing the classification checks."""
    secret = NullifierSecret(secret_value)
    public = PublicInput(
        census_id=census_id,
        age_range_code=int(age_range),
        continent_code=int(continent),
        nullifier_hash=derive_nullifier(secret, census_id),
    )
    witness = PrivateWitness(
        date_of_birth=date_of_birth,
        reference_date=reference_date,
        nationality=nationality,
        secret=secret,
    )
    return CircuitInput(public=public, witness=witness)
