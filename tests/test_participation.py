from datetime import date

import pytest

from zkcensus.auth import AuthenticatedSession
from zkcensus.data_models import AgeRange, Continent, ProofState, RegistrationStatus
from zkcensus.exceptions import (
    AuthenticationError,
    ClassificationError,
    ClassificationFailure,
    SubmissionRejectedError,
)
from zkcensus.participation import CensusParticipationFlow
from zkcensus.signing import Ed25519Signer

from tests.conftest import REFERENCE_DATE


@pytest.fixture
def flow(aggregator, builder, engine, coordinator):
    return CensusParticipationFlow(aggregator, builder, engine, coordinator)


def test_participation_registers_member(flow, aggregator, census, signer, record_factory):
    record = record_factory(date_of_birth=date(2001, 1, 1), nationality="BRA")

    registration = flow.participate(
        record, census.census_id, signer, reference_date=REFERENCE_DATE
    )

    assert registration.status is RegistrationStatus.VERIFIED
    assert registration.age_range is AgeRange.AGE_18_24
    assert registration.continent is Continent.SOUTH_AMERICA
    assert record.is_wiped
    assert aggregator.get_statistics(census.census_id).total_members == 1


def test_second_participation_is_rejected(flow, aggregator, census, signer, record_factory):
    flow.participate(record_factory(), census.census_id, signer, reference_date=REFERENCE_DATE)

    with pytest.raises(SubmissionRejectedError):
        flow.participate(
            record_factory(), census.census_id, signer, reference_date=REFERENCE_DATE
        )
    assert aggregator.get_statistics(census.census_id).total_members == 1


def test_ineligible_record_is_wiped(flow, engine, census, signer, record_factory):
    record = record_factory(date_of_birth=date(2012, 5, 1))

    with pytest.raises(ClassificationError) as exc_info:
        flow.participate(record, census.census_id, signer, reference_date=REFERENCE_DATE)

    assert exc_info.value.reason is ClassificationFailure.BELOW_MINIMUM_AGE
    assert record.is_wiped
    assert engine.status().state is ProofState.FAILED


def test_session_must_match_signer(flow, census, signer, record_factory):
    session = AuthenticatedSession(public_key=Ed25519Signer.generate().public_key)
    record = record_factory()

    with pytest.raises(AuthenticationError):
        flow.participate(record, census.census_id, signer, session=session)
    assert record.is_wiped


def test_bypassed_session_is_accepted(flow, census, signer, record_factory):
    session = AuthenticatedSession(public_key="dev", bypassed=True)
    registration = flow.participate(
        record_factory(),
        census.census_id,
        signer,
        session=session,
        reference_date=REFERENCE_DATE,
    )
    assert registration.status is RegistrationStatus.VERIFIED


def test_progress_is_reported(flow, census, signer, record_factory):
    reported = []
    flow.participate(
        record_factory(),
        census.census_id,
        signer,
        reference_date=REFERENCE_DATE,
        on_progress=reported.append,
    )
    assert reported[-1] == 1.0
