"""
End-to-end census participation for the zkcensus system.

The participation flow wires the client-side pipeline together: it fetches
the census and its proving parameters from the ledger, builds the circuit
input on the proving worker, proves, and submits the signed proof.
"""

from datetime import date
from typing import Optional

import structlog

from .auth import AuthenticatedSession
from .circuit_input import CircuitInputBuilder
from .data_models import PassportRecord, Registration
from .exceptions import AuthenticationError
from .proof_engine import ProofEngine
from .signing import Signer
from .submission import LedgerClient, SubmissionCoordinator
from .zk_prover import ProgressCallback

# Initialize structured logger
logger = structlog.get_logger(__name__)


class CensusParticipationFlow:
    """
    Client-side pipeline from passport record to ledger registration.

    Parameters
    ----------
    ledger : LedgerClient
        Ledger the census is read from.
    input_builder : CircuitInputBuilder
        Builds circuit input from passport records.
    proof_engine : ProofEngine
        Engine running the proving session.
    coordinator : SubmissionCoordinator
        Submits the signed proof.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        input_builder: CircuitInputBuilder,
        proof_engine: ProofEngine,
        coordinator: SubmissionCoordinator,
    ) -> None:
        self.ledger = ledger
        self.input_builder = input_builder
        self.proof_engine = proof_engine
        self.coordinator = coordinator

    def participate(
        self,
        record: PassportRecord,
        census_id: str,
        signer: Signer,
        session: Optional[AuthenticatedSession] = None,
        reference_date: Optional[date] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Registration:
        """
        Register ``record`` in ``census_id`` on behalf of ``signer``.

        The record is wiped before this method returns.

        Raises
        ------
        AuthenticationError
            If ``session`` belongs to another wallet.
        ClassificationError
            If the record is ineligible for the census.
        ProofGenerationError
            If proving fails.
        SubmissionError
            If the ledger does not accept the proof.
        """
        try:
            if (
                session is not None
                and not session.bypassed
                and session.public_key != signer.public_key
            ):
                raise AuthenticationError("Session does not belong to the signing wallet")

            census = self.ledger.get_census(census_id)
            parameters = self.ledger.get_proving_parameters(census_id)

            proof = self.proof_engine.prove(
                parameters,
                input_factory=lambda: self.input_builder.build(
                    record, census, reference_date
                ),
                on_progress=on_progress,
            )
        finally:
            record.wipe()

        registration = self.coordinator.submit(proof, signer)

        logger.info(
            "Census participation completed",
            census_id=census_id,
            registration_id=registration.registration_id,
        )
        return registration
