import threading
from dataclasses import replace

import pytest

from zkcensus.data_models import AgeRange, Continent
from zkcensus.exceptions import (
    ProofCancelledError,
    ProofFailure,
    ProofGenerationError,
    ProofVerificationError,
)
from zkcensus.zk_circuit import CensusCircuit
from zkcensus.zk_prover import ZkProver

from tests.helpers import make_circuit_input as make_input


@pytest.fixture
def keys(prover):
    return prover.setup(CensusCircuit(min_age=18, enable_location=True))


@pytest.fixture
def proof(prover, keys):
    proving_key, _ = keys
    return prover.prove(proving_key, make_input())


def test_setup_keys_share_circuit_hash(keys):
    proving_key, verifying_key = keys
    assert proving_key.circuit_hash == verifying_key.circuit_hash
    assert len(verifying_key.fingerprint()) == 16


def test_keys_do_not_render_trapdoor(keys):
    proving_key, verifying_key = keys
    assert proving_key.trapdoor.hex() not in repr(proving_key)
    assert verifying_key.trapdoor.hex() not in repr(verifying_key)


def test_valid_proof_verifies(prover, keys, proof):
    _, verifying_key = keys
    assert prover.verify(verifying_key, proof)
    assert prover.verify(verifying_key, proof.proof_bytes, proof.public_input)


def test_proofs_are_not_deterministic(prover, keys):
    proving_key, verifying_key = keys
    first = prover.prove(proving_key, make_input())
    second = prover.prove(proving_key, make_input())

    assert first.proof_bytes != second.proof_bytes
    assert prover.verify(verifying_key, first)
    assert prover.verify(verifying_key, second)


@pytest.mark.parametrize(
    "public_change",
    [
        {"age_range_code": int(AgeRange.AGE_25_34)},
        {"continent_code": int(Continent.EUROPE)},
        {"nullifier_hash": b"\x01" * 32},
        {"census_id": "census-other"},
    ],
)
def test_modified_public_input_is_rejected(prover, keys, proof, public_change):
    _, verifying_key = keys
    tampered = replace(proof.public_input, **public_change)
    assert not prover.verify(verifying_key, proof.proof_bytes, tampered)


def test_flipped_nullifier_bit_is_rejected(prover, keys, proof):
    _, verifying_key = keys
    nullifier = bytearray(proof.public_input.nullifier_hash)
    nullifier[0] ^= 0x01
    tampered = replace(proof.public_input, nullifier_hash=bytes(nullifier))
    assert not prover.verify(verifying_key, proof.proof_bytes, tampered)


@pytest.mark.parametrize("offset_from_end", [1, 32, 64, 96, 128])
def test_flipped_proof_bit_is_rejected(prover, keys, proof, offset_from_end):
    _, verifying_key = keys
    mutated = bytearray(proof.proof_bytes)
    mutated[-offset_from_end] ^= 0x80
    assert not prover.verify(verifying_key, bytes(mutated), proof.public_input)


def test_unencodable_public_input_is_rejected(prover, keys, proof):
    _, verifying_key = keys
    tampered = replace(proof.public_input, age_range_code=2**40)
    assert not prover.verify(verifying_key, proof.proof_bytes, tampered)


def test_truncated_proof_is_malformed(prover, keys, proof):
    _, verifying_key = keys
    with pytest.raises(ProofVerificationError):
        prover.verify(verifying_key, proof.proof_bytes[:-1], proof.public_input)

    with pytest.raises(ProofVerificationError):
        prover.verify(verifying_key, b"\x00", proof.public_input)


def test_proof_from_other_setup_is_rejected(prover, proof):
    _, other_verifying_key = prover.setup(CensusCircuit(min_age=18, enable_location=True))
    assert not prover.verify(other_verifying_key, proof)


def test_proof_from_other_circuit_is_rejected(prover, proof):
    _, other_verifying_key = prover.setup(CensusCircuit(min_age=21, enable_location=True))
    assert not prover.verify(other_verifying_key, proof)


def test_unsatisfied_witness_is_refused(prover, keys):
    proving_key, _ = keys
    circuit_input = make_input()
    circuit_input.public = replace(
        circuit_input.public, age_range_code=int(AgeRange.AGE_65_PLUS)
    )

    with pytest.raises(ProofGenerationError) as exc_info:
        prover.prove(proving_key, circuit_input)
    assert exc_info.value.reason is ProofFailure.UNSATISFIED_CONSTRAINTS


def test_cancel_event_stops_proving(prover, keys):
    proving_key, _ = keys
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(ProofCancelledError):
        prover.prove(proving_key, make_input(), cancel_event=cancel_event)


def test_progress_is_monotonic_and_completes(prover, keys):
    proving_key, _ = keys
    reported = []
    prover.prove(proving_key, make_input(), progress=reported.append)

    assert reported[0] == 0.0
    assert reported[-1] == 1.0
    assert reported == sorted(reported)


def test_unsupported_configuration():
    with pytest.raises(ProofGenerationError):
        ZkProver(proof_system="stark")
    with pytest.raises(ProofGenerationError):
        ZkProver(security_level=64)
    with pytest.raises(ProofGenerationError):
        ZkProver(proving_rounds=0)


def test_prover_statistics(prover, keys):
    stats = prover.get_prover_statistics()
    assert stats["setup_stats"]["setups_performed"] == 1
    assert stats["prover_config"]["proving_rounds"] == prover.proving_rounds
    assert stats["capabilities"]["simulated_soundness"] is True
