"""
Zero-Knowledge proof generation and verification for the zkcensus system.

This module provides a high-level interface for generating and verifying
zero-knowledge proofs that a hidden passport attribute set belongs to the
published census buckets. It abstracts the underlying cryptographic
operations behind a setup / prove / verify interface.

The implementation simulates a Groth16-style SNARK: the trusted setup yields
a proving and a verifying key that share a setup trapdoor, and a proof binds
the circuit hash, the canonical public input and a blinded witness commitment
under a keyed tag. Any change to the public input invalidates the proof.

Soundness is simulated only. The verifying key carries the same trapdoor as
the proving key, so anyone holding the published parameters can mint a valid
tag for an arbitrary public input without satisfying the circuit. Proofs from
this backend show the flow works end to end; they do not convince a party
that distrusts the prover. Real soundness needs a production backend such as
py-arkworks behind the same setup / prove / verify interface.
"""

import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Union

import structlog

from .config import PROOF_SYSTEM, PROVING_ROUNDS, SECURITY_LEVEL
from .constants import (
    MAX_PROOF_SIZE,
    PROOF_DOMAIN_TAG,
    PROOF_ELEMENT_LENGTH,
    PROVING_CHUNK_ROUNDS,
    SUPPORTED_PROOF_SYSTEMS,
    SUPPORTED_SECURITY_LEVELS,
    WITNESS_DOMAIN_TAG,
)
from .data_models import CensusProof, CircuitInput, PrivateWitness, PublicInput
from .exceptions import (
    ProofCancelledError,
    ProofFailure,
    ProofGenerationError,
    ProofVerificationError,
)
from .utils import timer
from .zk_circuit import CensusCircuit, validate_circuit_inputs

# Initialize structured logger
logger = structlog.get_logger(__name__)

PROOF_FORMAT_VERSION = 1

# commitment || work digest || nonce || tag
_PROOF_BODY_LENGTH = 4 * PROOF_ELEMENT_LENGTH

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class ProvingKey:
    """Proving key produced by the trusted setup for one census circuit."""

    circuit_hash: str
    proof_system: str
    security_level: int
    proving_rounds: int
    circuit: CensusCircuit = field(repr=False, compare=False)
    trapdoor: bytes = field(repr=False)


@dataclass(frozen=True)
class VerifyingKey:
    """Verifying key produced by the trusted setup for one census circuit."""

    circuit_hash: str
    proof_system: str
    security_level: int
    trapdoor: bytes = field(repr=False)

    def fingerprint(self) -> str:
        """Short public identifier of the key."""
        return hashlib.sha256(
            self.circuit_hash.encode() + self.trapdoor
        ).hexdigest()[:16]


@dataclass(frozen=True)
class ProvingParameters:
    """Keys the ledger publishes for a census."""

    census_id: str
    proving_key: ProvingKey
    verifying_key: VerifyingKey


def _canonical_witness(witness: PrivateWitness) -> bytes:
    fields = [
        witness.date_of_birth.isoformat().encode(),
        witness.reference_date.isoformat().encode(),
        (witness.nationality or "").encode(),
        witness.secret.value,
    ]
    return b"".join(len(f).to_bytes(4, "big") + f for f in fields)


def _proof_tag(
    trapdoor: bytes,
    circuit_hash: str,
    public_input: PublicInput,
    commitment: bytes,
    work_digest: bytes,
    nonce: bytes,
) -> bytes:
    message = (
        PROOF_DOMAIN_TAG
        + bytes.fromhex(circuit_hash)
        + public_input.to_bytes()
        + commitment
        + work_digest
        + nonce
    )
    return hmac.new(trapdoor, message, hashlib.sha256).digest()


class ZkProver:
    """
    Zero-Knowledge prover for census membership.

    This class provides key generation, proof creation and verification
    for census circuits.

    Parameters
    ----------
    proof_system : str, default=PROOF_SYSTEM
        Proof system to use (groth16 or plonk).
    security_level : int, default=SECURITY_LEVEL
        Security level in bits (128 or 256).
    proving_rounds : int, default=PROVING_ROUNDS
        Number of proving work rounds per proof.

    Examples
    --------
    >>> prover = ZkProver()
    >>> proving_key, verifying_key = prover.setup(CensusCircuit(18, True))
    >>> proof = prover.prove(proving_key, circuit_input)
    >>> prover.verify(verifying_key, proof)
    True
    """

    def __init__(
        self,
        proof_system: str = PROOF_SYSTEM,
        security_level: int = SECURITY_LEVEL,
        proving_rounds: int = PROVING_ROUNDS,
    ) -> None:
        if proof_system not in SUPPORTED_PROOF_SYSTEMS:
            raise ProofGenerationError(
                f"Unsupported proof system '{proof_system}'. "
                f"Must be one of {list(SUPPORTED_PROOF_SYSTEMS)}",
                reason=ProofFailure.INVALID_PARAMETERS,
                proof_system=proof_system,
            )

        if security_level not in SUPPORTED_SECURITY_LEVELS:
            raise ProofGenerationError(
                f"Unsupported security level {security_level}. Must be 128 or 256",
                reason=ProofFailure.INVALID_PARAMETERS,
                proof_system=proof_system,
            )

        if proving_rounds < 1:
            raise ProofGenerationError(
                "proving_rounds must be at least 1",
                reason=ProofFailure.INVALID_PARAMETERS,
                proof_system=proof_system,
            )

        self.proof_system = proof_system
        self.security_level = security_level
        self.proving_rounds = proving_rounds

        self.setup_count = 0
        self.last_setup_time: Optional[float] = None

        logger.info(
            "ZkProver initialized",
            proof_system=proof_system,
            security_level=security_level,
            proving_rounds=proving_rounds,
        )

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    @timer
    def setup(self, circuit: CensusCircuit) -> Tuple[ProvingKey, VerifyingKey]:
        """
        Perform the simulated trusted setup for ``circuit``.

        Parameters
        ----------
        circuit : CensusCircuit
            Circuit the keys are generated for.

        Returns
        -------
        Tuple[ProvingKey, VerifyingKey]
            Keys sharing the circuit hash and setup trapdoor.

        Raises
        ------
        ProofGenerationError
            If the circuit is invalid.
        """
        start_time = time.time()

        try:
            circuit.build_circuit()
            circuit.validate_circuit()
            circuit_hash = circuit.circuit_hash()

            trapdoor = secrets.token_bytes(self.security_level // 8 * 2)

            proving_key = ProvingKey(
                circuit_hash=circuit_hash,
                proof_system=self.proof_system,
                security_level=self.security_level,
                proving_rounds=self.proving_rounds,
                circuit=circuit,
                trapdoor=trapdoor,
            )
            verifying_key = VerifyingKey(
                circuit_hash=circuit_hash,
                proof_system=self.proof_system,
                security_level=self.security_level,
                trapdoor=trapdoor,
            )

        except ProofGenerationError:
            raise
        except Exception as e:
            raise ProofGenerationError(
                f"Trusted setup simulation failed: {str(e)}",
                proof_system=self.proof_system,
            ) from e

        self.setup_count += 1
        self.last_setup_time = time.time() - start_time

        logger.info(
            "Trusted setup simulation completed",
            circuit_hash=circuit_hash[:16],
            circuit_constraints=circuit.constraint_count,
            setup_time_seconds=self.last_setup_time,
        )

        return proving_key, verifying_key

    # -------------------------------------------------------------------------
    # Proving
    # -------------------------------------------------------------------------

    def _commit_witness(self, witness: PrivateWitness) -> bytes:
        blinding = os.urandom(PROOF_ELEMENT_LENGTH)
        return hashlib.sha256(
            WITNESS_DOMAIN_TAG + blinding + _canonical_witness(witness)
        ).digest()

    def _run_proving_work(
        self,
        seed: bytes,
        rounds: int,
        cancel_event: Optional[threading.Event],
        progress: Optional[ProgressCallback],
    ) -> bytes:
        digest = hashlib.sha256(seed).digest()

        for round_index in range(rounds):
            if round_index % PROVING_CHUNK_ROUNDS == 0:
                if cancel_event is not None and cancel_event.is_set():
                    raise ProofCancelledError()
                if progress is not None:
                    progress(round_index / rounds)
            digest = hashlib.sha256(digest).digest()

        if cancel_event is not None and cancel_event.is_set():
            raise ProofCancelledError()
        if progress is not None:
            progress(1.0)

        return digest

    def prove(
        self,
        proving_key: ProvingKey,
        circuit_input: CircuitInput,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> CensusProof:
        """
        Generate a zero-knowledge proof for ``circuit_input``.

        Parameters
        ----------
        proving_key : ProvingKey
            Proving key of the census circuit.
        circuit_input : CircuitInput
            Public input and private witness.
        cancel_event : threading.Event, optional
            Checked between proving chunks; when set the proof is abandoned.
        progress : Callable[[float], None], optional
            Receives the completed fraction of the proving work.

        Returns
        -------
        CensusProof
            Proof together with its public input.

        Raises
        ------
        ProofCancelledError
            If ``cancel_event`` was set.
        ProofGenerationError
            If the witness does not satisfy the circuit or proving fails.
        """
        logger.info("Starting ZK proof generation", census_id=circuit_input.public.census_id)
        start_time = time.time()

        try:
            validate_circuit_inputs(circuit_input)

            failures = proving_key.circuit.evaluate(
                circuit_input.public, circuit_input.witness
            )
            if failures:
                raise ProofGenerationError(
                    "Witness does not satisfy the census circuit",
                    reason=ProofFailure.UNSATISFIED_CONSTRAINTS,
                    proof_system=proving_key.proof_system,
                    context={"unsatisfied_constraints": failures},
                )

            public_input = circuit_input.public
            commitment = self._commit_witness(circuit_input.witness)
            work_digest = self._run_proving_work(
                commitment + public_input.to_bytes(),
                proving_key.proving_rounds,
                cancel_event,
                progress,
            )
            nonce = os.urandom(PROOF_ELEMENT_LENGTH)
            tag = _proof_tag(
                proving_key.trapdoor,
                proving_key.circuit_hash,
                public_input,
                commitment,
                work_digest,
                nonce,
            )

            metadata = json.dumps(
                {
                    "proof_system": proving_key.proof_system,
                    "security_level": proving_key.security_level,
                    "circuit_hash": proving_key.circuit_hash,
                    "version": PROOF_FORMAT_VERSION,
                },
                sort_keys=True,
            ).encode()

            proof_bytes = (
                len(metadata).to_bytes(4, "big")
                + metadata
                + commitment
                + work_digest
                + nonce
                + tag
            )

            if len(proof_bytes) > MAX_PROOF_SIZE:
                raise ProofGenerationError(
                    f"Generated proof too large: {len(proof_bytes)} > {MAX_PROOF_SIZE} bytes",
                    proof_system=proving_key.proof_system,
                )

        except ProofGenerationError:
            raise
        except Exception as e:
            raise ProofGenerationError(
                f"Unexpected error during proof generation: {str(e)}",
                proof_system=proving_key.proof_system,
            ) from e

        logger.info(
            "ZK proof generation completed",
            census_id=public_input.census_id,
            proof_size_bytes=len(proof_bytes),
            generation_time_seconds=time.time() - start_time,
        )

        return CensusProof(
            proof_bytes=proof_bytes,
            public_input=public_input,
            proof_system=proving_key.proof_system,
        )

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def _parse_proof(self, proof: bytes) -> Tuple[Dict[str, Any], bytes]:
        """
        Parse proof bytes to extract metadata and proof data.

        Raises
        ------
        ProofVerificationError
            If the bytes are not a well-formed proof.
        """
        if not isinstance(proof, (bytes, bytearray)):
            raise ProofVerificationError("Proof must be bytes")

        if len(proof) < 4:
            raise ProofVerificationError("Proof too short to contain valid metadata")

        metadata_length = int.from_bytes(proof[:4], "big")

        if len(proof) != 4 + metadata_length + _PROOF_BODY_LENGTH:
            raise ProofVerificationError("Proof corrupted: unexpected length")

        metadata_bytes = proof[4 : 4 + metadata_length]
        try:
            metadata = json.loads(metadata_bytes.decode())
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ProofVerificationError("Proof corrupted: invalid metadata format")

        if not isinstance(metadata, dict):
            raise ProofVerificationError("Proof corrupted: invalid metadata format")

        return metadata, bytes(proof[4 + metadata_length :])

    def verify(
        self,
        verifying_key: VerifyingKey,
        proof: Union[CensusProof, bytes],
        public_input: Optional[PublicInput] = None,
    ) -> bool:
        """
        Verify a zero-knowledge proof.

        Parameters
        ----------
        verifying_key : VerifyingKey
            Verifying key of the census circuit.
        proof : CensusProof or bytes
            Proof to verify. Raw bytes require ``public_input``.
        public_input : PublicInput, optional
            Public statement; overrides the one carried by a ``CensusProof``.

        Returns
        -------
        bool
            True if the proof is valid for the public input, False otherwise.

        Raises
        ------
        ProofVerificationError
            If the proof is structurally malformed (not the same as invalid).
        """
        if isinstance(proof, CensusProof):
            proof_bytes = proof.proof_bytes
            public_input = public_input or proof.public_input
        else:
            proof_bytes = proof

        if public_input is None:
            raise ProofVerificationError("Missing public input for verification")

        metadata, body = self._parse_proof(proof_bytes)

        if metadata.get("proof_system") != verifying_key.proof_system:
            logger.warning(
                "Proof system mismatch",
                expected=verifying_key.proof_system,
                actual=metadata.get("proof_system"),
            )
            return False

        if metadata.get("security_level") != verifying_key.security_level:
            logger.warning(
                "Security level mismatch",
                expected=verifying_key.security_level,
                actual=metadata.get("security_level"),
            )
            return False

        if metadata.get("circuit_hash") != verifying_key.circuit_hash:
            logger.warning("Circuit hash mismatch - proof from different circuit")
            return False

        commitment = body[:PROOF_ELEMENT_LENGTH]
        work_digest = body[PROOF_ELEMENT_LENGTH : 2 * PROOF_ELEMENT_LENGTH]
        nonce = body[2 * PROOF_ELEMENT_LENGTH : 3 * PROOF_ELEMENT_LENGTH]
        tag = body[3 * PROOF_ELEMENT_LENGTH :]

        try:
            expected_tag = _proof_tag(
                verifying_key.trapdoor,
                verifying_key.circuit_hash,
                public_input,
                commitment,
                work_digest,
                nonce,
            )
        except (OverflowError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Public input cannot be encoded", error=str(e))
            return False

        is_valid = hmac.compare_digest(tag, expected_tag)

        logger.debug(
            "ZK proof verification completed",
            verification_result=is_valid,
            proof_size_bytes=len(proof_bytes),
        )

        return is_valid

    def get_prover_statistics(self) -> Dict[str, Any]:
        """
        Get statistics about the prover configuration.

        Returns
        -------
        Dict[str, Any]
            Dictionary containing prover statistics.
        """
        return {
            "prover_config": {
                "proof_system": self.proof_system,
                "security_level": self.security_level,
                "proving_rounds": self.proving_rounds,
            },
            "setup_stats": {
                "setups_performed": self.setup_count,
                "last_setup_time_seconds": self.last_setup_time,
            },
            "capabilities": {
                "simulated_soundness": True,
                "max_proof_size_bytes": MAX_PROOF_SIZE,
                "supported_proof_systems": list(SUPPORTED_PROOF_SYSTEMS),
                "supported_security_levels": list(SUPPORTED_SECURITY_LEVELS),
            },
        }
