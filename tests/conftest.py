"""
Pytest configuration and shared fixtures for zkcensus tests.

Proving uses a small number of work rounds so that full pipeline runs stay
fast; nothing else differs from the production configuration.
"""

from datetime import date

import pytest

from zkcensus.aggregator import CensusAggregator
from zkcensus.circuit_input import CircuitInputBuilder
from zkcensus.data_models import PassportRecord
from zkcensus.nullifier import InMemorySecretStore, NullifierDeriver
from zkcensus.proof_engine import ProofEngine
from zkcensus.signing import Ed25519Signer, build_census_creation_message
from zkcensus.submission import SubmissionCoordinator
from zkcensus.zk_prover import ZkProver

FAST_PROVING_ROUNDS = 300
REFERENCE_DATE = date(2024, 6, 1)


@pytest.fixture
def reference_date() -> date:
    return REFERENCE_DATE


@pytest.fixture
def prover() -> ZkProver:
    return ZkProver(proving_rounds=FAST_PROVING_ROUNDS)


@pytest.fixture
def creator() -> Ed25519Signer:
    return Ed25519Signer.generate()


@pytest.fixture
def signer() -> Ed25519Signer:
    return Ed25519Signer.generate()


@pytest.fixture
def aggregator(prover) -> CensusAggregator:
    return CensusAggregator(prover)


@pytest.fixture
def census_factory(aggregator, creator):
    """Create censuses signed by ``creator``."""

    def create(
        min_age: int = 18,
        enable_location: bool = True,
        allow_unknown_continent: bool = True,
        name: str = "Test census",
        description: str = "",
        census_id=None,
    ):
        message = build_census_creation_message(
            name,
            description,
            min_age,
            enable_location,
            allow_unknown_continent,
            creator.public_key,
        )
        return aggregator.create_census(
            name,
            description,
            min_age,
            enable_location,
            creator.public_key,
            creator.sign(message),
            allow_unknown_continent=allow_unknown_continent,
            census_id=census_id,
        )

    return create


@pytest.fixture
def census(census_factory):
    return census_factory()


@pytest.fixture
def record_factory():
    """Build passport records with sensible defaults."""

    def make(
        date_of_birth=date(2001, 1, 1),
        nationality: str = "BRA",
        expiry_date=date(2030, 1, 1),
        document_number: str = "AB1234567",
    ) -> PassportRecord:
        return PassportRecord(
            document_number=document_number,
            document_type="P",
            issuing_country=nationality,
            nationality=nationality,
            date_of_birth=date_of_birth,
            sex="F",
            expiry_date=expiry_date,
        )

    return make


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def deriver(secret_store) -> NullifierDeriver:
    return NullifierDeriver(secret_store)


@pytest.fixture
def builder(deriver) -> CircuitInputBuilder:
    return CircuitInputBuilder(deriver)


@pytest.fixture
def engine(prover):
    with ProofEngine(prover, timeout_seconds=30) as proof_engine:
        yield proof_engine


@pytest.fixture
def coordinator(aggregator) -> SubmissionCoordinator:
    return SubmissionCoordinator(aggregator, sleep=lambda _: None)


@pytest.fixture
def proof_factory(aggregator, engine, record_factory, reference_date):
    """Prove membership of a fresh identity in a census."""

    def make(census, record=None, secret_store=None):
        builder = CircuitInputBuilder(NullifierDeriver(secret_store or InMemorySecretStore()))
        circuit_input = builder.build(record or record_factory(), census, reference_date)
        return engine.prove(
            aggregator.get_proving_parameters(census.census_id), circuit_input
        )

    return make
