"""
Proof submission for the zkcensus system.

The SubmissionCoordinator signs a finished proof with the wallet, sends it to
the ledger and turns the ledger's answer into a local registration record.
Transport failures and ``Transient`` ledger answers are retried with
exponential backoff up to a fixed bound; every other rejection is terminal
and surfaces on the first occurrence.

A retry after a lost acknowledgement can meet ``DuplicateNullifier`` for a
registration its own earlier attempt committed. The coordinator recognises
this by comparing the submission digest stored by the ledger with its own
and reports the earlier registration instead of a failure.
"""

import time
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

import structlog

from .config import (
    SUBMISSION_BACKOFF_MULTIPLIER,
    SUBMISSION_INITIAL_BACKOFF_SECONDS,
    SUBMISSION_MAX_ATTEMPTS,
    SUBMISSION_MAX_BACKOFF_SECONDS,
)
from .data_models import (
    AgeRange,
    CensusMetadata,
    CensusProof,
    Continent,
    ErrorKind,
    Registration,
    SubmissionRequest,
    SubmissionResponse,
)
from .exceptions import (
    SubmissionRejectedError,
    SubmissionRetriesExhaustedError,
    TransientSubmissionError,
)
from .signing import Signer, build_submission_message, sign_message
from .utils import retry, truncate_hex
from .zk_prover import ProvingParameters

# Initialize structured logger
logger = structlog.get_logger(__name__)


@runtime_checkable
class LedgerClient(Protocol):
    """Operations the client needs from the census ledger."""

    def submit(self, request: SubmissionRequest) -> SubmissionResponse:
        ...

    def find_registration(
        self, census_id: str, nullifier_hash: bytes
    ) -> Optional[Registration]:
        ...

    def get_census(self, census_id: str) -> CensusMetadata:
        ...

    def get_proving_parameters(self, census_id: str) -> ProvingParameters:
        ...


class SubmissionCoordinator:
    """
    Signs proofs and submits them to the ledger with bounded retries.

    Parameters
    ----------
    ledger : LedgerClient
        Ledger the requests are sent to.
    max_attempts : int, default=SUBMISSION_MAX_ATTEMPTS
        Attempts per submission, first one included.
    initial_backoff : float, default=SUBMISSION_INITIAL_BACKOFF_SECONDS
        Delay before the first retry in seconds.
    backoff_multiplier : float, default=SUBMISSION_BACKOFF_MULTIPLIER
        Growth factor of the delay.
    max_backoff : float, default=SUBMISSION_MAX_BACKOFF_SECONDS
        Ceiling on a single delay.
    sleep : Callable[[float], None], default=time.sleep
        Sleep function, injectable for tests.

    Examples
    --------
    >>> coordinator = SubmissionCoordinator(aggregator)
    >>> registration = coordinator.submit(proof, signer)
    >>> registration.status
    <RegistrationStatus.VERIFIED: 'verified'>
    """

    def __init__(
        self,
        ledger: LedgerClient,
        max_attempts: int = SUBMISSION_MAX_ATTEMPTS,
        initial_backoff: float = SUBMISSION_INITIAL_BACKOFF_SECONDS,
        backoff_multiplier: float = SUBMISSION_BACKOFF_MULTIPLIER,
        max_backoff: float = SUBMISSION_MAX_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.ledger = ledger
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff = max_backoff
        self.sleep = sleep

    def build_request(self, proof: CensusProof, signer: Signer) -> SubmissionRequest:
        """
        Sign ``proof`` and package it as a submission request.

        Raises
        ------
        SigningError
            If the signer fails.
        """
        signature = sign_message(signer, build_submission_message(proof))
        return SubmissionRequest(
            census_id=proof.public_input.census_id,
            proof=proof.proof_bytes,
            public_input=proof.public_input,
            signature=signature,
            public_key=signer.public_key,
        )

    def submit(self, proof: CensusProof, signer: Signer) -> Registration:
        """
        Submit ``proof`` on behalf of ``signer``.

        Returns
        -------
        Registration
            Verified local registration record.

        Raises
        ------
        SigningError
            If the signer fails (never retried).
        SubmissionRejectedError
            If the ledger rejects the submission with a terminal error kind.
        SubmissionRetriesExhaustedError
            If transient failures outlast ``max_attempts``.
        """
        request = self.build_request(proof, signer)
        public = request.public_input

        registration = Registration(
            census_id=request.census_id,
            nullifier_hash=public.nullifier_hash,
            age_range=AgeRange(public.age_range_code),
            continent=Continent(public.continent_code),
            submission_digest=request.digest(),
        )

        attempt_state = {"attempts": 0, "transient_seen": False}
        send = retry(
            max_attempts=self.max_attempts,
            delay=self.initial_backoff,
            backoff=self.backoff_multiplier,
            max_delay=self.max_backoff,
            exceptions=(TransientSubmissionError,),
            sleep=self.sleep,
        )(self._submit_once)

        logger.info(
            "Submitting census proof",
            census_id=request.census_id,
            nullifier_prefix=truncate_hex(public.nullifier_hash),
        )

        try:
            registration_id = send(request, attempt_state)
        except TransientSubmissionError as e:
            raise SubmissionRetriesExhaustedError(
                f"Submission failed after {attempt_state['attempts']} attempts: {e.message}",
                attempts=attempt_state["attempts"],
                census_id=request.census_id,
            ) from e

        registration.mark_verified(registration_id)

        logger.info(
            "Census registration verified",
            census_id=request.census_id,
            registration_id=registration_id,
            attempts=attempt_state["attempts"],
        )
        return registration

    def _submit_once(self, request: SubmissionRequest, attempt_state: Dict) -> str:
        attempt_state["attempts"] += 1

        try:
            response = self.ledger.submit(request)
        except (ConnectionError, TimeoutError) as e:
            attempt_state["transient_seen"] = True
            raise TransientSubmissionError(
                f"Ledger unreachable: {e}", census_id=request.census_id
            ) from e

        if response.ok:
            return response.registration_id

        if response.error_kind is ErrorKind.TRANSIENT:
            attempt_state["transient_seen"] = True
            raise TransientSubmissionError(
                response.message or "Ledger reported a transient failure",
                census_id=request.census_id,
            )

        if (
            response.error_kind is ErrorKind.DUPLICATE_NULLIFIER
            and attempt_state["transient_seen"]
        ):
            registration_id = self._find_own_registration(request)
            if registration_id is not None:
                return registration_id

        logger.warning(
            "Submission rejected by ledger",
            census_id=request.census_id,
            error_kind=response.error_kind.value,
        )
        raise SubmissionRejectedError(
            response.message or response.error_kind.value,
            error_kind=response.error_kind.value,
            census_id=request.census_id,
        )

    def _find_own_registration(self, request: SubmissionRequest) -> Optional[str]:
        try:
            existing = self.ledger.find_registration(
                request.census_id, request.public_input.nullifier_hash
            )
        except (ConnectionError, TimeoutError) as e:
            raise TransientSubmissionError(
                f"Ledger unreachable during duplicate lookup: {e}",
                census_id=request.census_id,
            ) from e

        if existing is None or existing.submission_digest != request.digest():
            return None

        logger.info(
            "Earlier attempt already committed, treating duplicate as success",
            census_id=request.census_id,
            registration_id=existing.registration_id,
        )
        return existing.registration_id
