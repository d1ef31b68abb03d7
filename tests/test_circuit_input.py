from datetime import date

import pytest

from zkcensus.circuit_input import CircuitInputBuilder
from zkcensus.data_models import AgeRange, CensusMetadata, Continent
from zkcensus.exceptions import ClassificationError, ClassificationFailure
from zkcensus.nullifier import InMemorySecretStore, NullifierDeriver


def make_census(**overrides) -> CensusMetadata:
    fields = dict(
        census_id="census-test",
        name="Test",
        description="",
        creator="00" * 32,
        min_age=18,
        enable_location=True,
    )
    fields.update(overrides)
    return CensusMetadata(**fields)


def test_builds_public_input_for_example_identity(builder, deriver, record_factory):
    record = record_factory(date_of_birth=date(2001, 1, 1), nationality="BRA")

    circuit_input = builder.build(record, make_census(), reference_date=date(2024, 6, 1))

    assert circuit_input.public.census_id == "census-test"
    assert circuit_input.public.age_range_code == int(AgeRange.AGE_18_24)
    assert circuit_input.public.continent_code == int(Continent.SOUTH_AMERICA)
    assert circuit_input.public.nullifier_hash == deriver.derive("census-test")
    assert circuit_input.witness.nationality == "BRA"


def test_record_is_wiped_after_success(builder, record_factory):
    record = record_factory()
    builder.build(record, make_census(), reference_date=date(2024, 6, 1))

    assert record.is_wiped
    assert record.date_of_birth is None
    assert record.document_number == ""


def test_record_is_wiped_after_failure(builder, record_factory):
    record = record_factory(date_of_birth=date(2010, 1, 1))

    with pytest.raises(ClassificationError):
        builder.build(record, make_census(), reference_date=date(2024, 6, 1))

    assert record.is_wiped


def test_below_minimum_age(builder, record_factory):
    with pytest.raises(ClassificationError) as exc_info:
        builder.build(
            record_factory(date_of_birth=date(2010, 1, 1)),
            make_census(min_age=18),
            reference_date=date(2024, 6, 1),
        )
    assert exc_info.value.reason is ClassificationFailure.BELOW_MINIMUM_AGE


def test_missing_birth_date(builder, record_factory):
    with pytest.raises(ClassificationError) as exc_info:
        builder.build(
            record_factory(date_of_birth=None), make_census(), reference_date=date(2024, 6, 1)
        )
    assert exc_info.value.reason is ClassificationFailure.MISSING_ATTRIBUTE
    assert exc_info.value.context["attribute"] == "date_of_birth"


def test_malformed_nationality(builder, record_factory):
    with pytest.raises(ClassificationError) as exc_info:
        builder.build(
            record_factory(nationality="B4A"), make_census(), reference_date=date(2024, 6, 1)
        )
    assert exc_info.value.reason is ClassificationFailure.MALFORMED_ATTRIBUTE


def test_wiped_record_cannot_be_reused(builder, record_factory):
    record = record_factory()
    builder.build(record, make_census(), reference_date=date(2024, 6, 1))

    with pytest.raises(ClassificationError) as exc_info:
        builder.build(record, make_census(), reference_date=date(2024, 6, 1))
    assert exc_info.value.reason is ClassificationFailure.MISSING_ATTRIBUTE


def test_expired_document_rejected(builder, record_factory):
    with pytest.raises(ClassificationError) as exc_info:
        builder.build(
            record_factory(expiry_date=date(2020, 1, 1)),
            make_census(),
            reference_date=date(2024, 6, 1),
        )
    assert exc_info.value.reason is ClassificationFailure.DOCUMENT_EXPIRED


def test_expired_document_accepted_when_policy_disabled(deriver, record_factory):
    builder = CircuitInputBuilder(deriver, reject_expired_documents=False)
    circuit_input = builder.build(
        record_factory(expiry_date=date(2020, 1, 1)),
        make_census(),
        reference_date=date(2024, 6, 1),
    )
    assert circuit_input.public.age_range_code == int(AgeRange.AGE_18_24)


def test_inactive_census_rejected(builder, record_factory):
    with pytest.raises(ClassificationError) as exc_info:
        builder.build(
            record_factory(), make_census(active=False), reference_date=date(2024, 6, 1)
        )
    assert exc_info.value.reason is ClassificationFailure.CENSUS_INACTIVE


def test_location_disabled_uses_unknown_marker(builder, record_factory):
    circuit_input = builder.build(
        record_factory(nationality="BRA"),
        make_census(enable_location=False),
        reference_date=date(2024, 6, 1),
    )
    assert circuit_input.public.continent_code == int(Continent.UNKNOWN)
    assert circuit_input.witness.nationality is None


def test_unknown_continent_rejected_by_census_policy(builder, record_factory):
    with pytest.raises(ClassificationError) as exc_info:
        builder.build(
            record_factory(nationality="XXA"),
            make_census(allow_unknown_continent=False),
            reference_date=date(2024, 6, 1),
        )
    assert exc_info.value.reason is ClassificationFailure.UNKNOWN_CONTINENT_REJECTED


def test_same_identity_gets_same_nullifier_per_census(record_factory):
    builder = CircuitInputBuilder(NullifierDeriver(InMemorySecretStore()))
    first = builder.build(record_factory(), make_census(), reference_date=date(2024, 6, 1))
    second = builder.build(record_factory(), make_census(), reference_date=date(2024, 6, 1))
    other = builder.build(
        record_factory(), make_census(census_id="census-other"), reference_date=date(2024, 6, 1)
    )

    assert first.public.nullifier_hash == second.public.nullifier_hash
    assert first.public.nullifier_hash != other.public.nullifier_hash


def test_discard_zeroizes_secret(builder, record_factory):
    circuit_input = builder.build(
        record_factory(), make_census(), reference_date=date(2024, 6, 1)
    )
    circuit_input.discard()
    assert circuit_input.witness.secret.value == bytes(32)
