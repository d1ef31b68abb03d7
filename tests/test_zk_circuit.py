from dataclasses import replace
from datetime import date

import pytest

from zkcensus.data_models import AgeRange, CircuitInput, Continent
from zkcensus.exceptions import ProofGenerationError
from zkcensus.zk_circuit import CensusCircuit, validate_circuit_inputs

from tests.helpers import make_circuit_input as make_input


def test_build_circuit_spec():
    spec = CensusCircuit(min_age=18, enable_location=True).build_circuit()

    assert spec["constraint_count"] == len(spec["constraints"])
    assert "public_nullifier_hash" in spec["public_inputs"]
    assert "private_nationality" in spec["private_inputs"]
    assert spec["circuit_parameters"]["min_age"] == 18


def test_validate_circuit():
    circuit = CensusCircuit(min_age=18, enable_location=True)
    circuit.build_circuit()
    assert circuit.validate_circuit()


def test_validate_requires_build():
    with pytest.raises(ProofGenerationError):
        CensusCircuit(min_age=18, enable_location=True).validate_circuit()


def test_circuit_hash_depends_on_parameters():
    base = CensusCircuit(18, True).circuit_hash()

    assert base == CensusCircuit(18, True).circuit_hash()
    assert base != CensusCircuit(21, True).circuit_hash()
    assert base != CensusCircuit(18, False).circuit_hash()
    assert base != CensusCircuit(18, True, allow_unknown_continent=False).circuit_hash()


def test_valid_assignment_satisfies_circuit():
    circuit_input = make_input()
    circuit = CensusCircuit(min_age=18, enable_location=True)
    assert circuit.evaluate(circuit_input.public, circuit_input.witness) == []


@pytest.mark.parametrize(
    "public_change",
    [
        {"age_range_code": int(AgeRange.AGE_25_34)},
        {"age_range_code": 99},
        {"continent_code": int(Continent.EUROPE)},
        {"nullifier_hash": b"\x00" * 32},
        {"census_id": "census-other"},
    ],
)
def test_inconsistent_public_input_fails(public_change):
    circuit_input = make_input()
    circuit = CensusCircuit(min_age=18, enable_location=True)
    failures = circuit.evaluate(
        replace(circuit_input.public, **public_change), circuit_input.witness
    )
    assert failures


def test_minimum_age_enforced():
    circuit_input = make_input(date_of_birth=date(2008, 1, 1), age_range=AgeRange.UNDER_18)
    circuit = CensusCircuit(min_age=18, enable_location=True)
    failures = circuit.evaluate(circuit_input.public, circuit_input.witness)
    assert any("minimum_age" in failure for failure in failures)


def test_future_birth_date_fails():
    circuit_input = make_input(date_of_birth=date(2030, 1, 1))
    circuit = CensusCircuit(min_age=0, enable_location=True)
    assert circuit.evaluate(circuit_input.public, circuit_input.witness)


def test_location_disabled_requires_unknown_marker():
    circuit = CensusCircuit(min_age=18, enable_location=False)

    with_marker = make_input(nationality=None, continent=Continent.UNKNOWN)
    assert circuit.evaluate(with_marker.public, with_marker.witness) == []

    with_continent = make_input(nationality=None, continent=Continent.SOUTH_AMERICA)
    assert circuit.evaluate(with_continent.public, with_continent.witness)


def test_unknown_continent_policy():
    unknown = make_input(nationality="XXA", continent=Continent.UNKNOWN)

    permissive = CensusCircuit(min_age=18, enable_location=True)
    assert permissive.evaluate(unknown.public, unknown.witness) == []

    strict = CensusCircuit(min_age=18, enable_location=True, allow_unknown_continent=False)
    assert strict.evaluate(unknown.public, unknown.witness)


def test_circuit_summary():
    circuit = CensusCircuit(min_age=18, enable_location=True)
    assert circuit.generate_circuit_summary() == {"error": "Circuit not built"}

    circuit.build_circuit()
    summary = circuit.generate_circuit_summary()
    assert summary["total_constraints"] == circuit.constraint_count
    assert summary["constraint_types"]["assert_equal"] == 2


def test_validate_circuit_inputs_rejects_short_nullifier():
    circuit_input = make_input()
    bad = CircuitInput(
        public=replace(circuit_input.public, nullifier_hash=b"\x00" * 4),
        witness=circuit_input.witness,
    )
    with pytest.raises(ProofGenerationError):
        validate_circuit_inputs(bad)
