"""
Census ledger for the zkcensus system.

The CensusAggregator owns every census, its proving parameters, its consumed
nullifiers and its aggregate counters. A submission is accepted only if its
proof verifies against the census verifying key, its signature verifies and
its nullifier has not been used for that census before. Accepted submissions
update the counters atomically: the new counters are computed on a copy,
checked against the ledger invariants and then swapped in while the census
lock is held, so concurrent submissions never lose an increment.

Ledger invariants, per census:

* ``total_members == sum(age_distribution)``
* ``total_members == sum(continent_distribution)`` when location is enabled
* no counter is negative
* at most one registration per nullifier hash
"""

import copy
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import structlog

from .constants import MAX_SUPPORTED_AGE
from .data_models import (
    AgeRange,
    CensusMetadata,
    CensusStatistics,
    Continent,
    ErrorKind,
    Registration,
    RegistrationStatus,
    SubmissionRequest,
    SubmissionResponse,
)
from .exceptions import (
    AuthenticationError,
    CensusNotFoundError,
    LedgerError,
    ProofVerificationError,
)
from .signing import (
    build_census_close_message,
    build_census_creation_message,
    build_revocation_message,
    build_submission_message_for,
    verify_signature,
)
from .utils import generate_census_id, generate_registration_id, truncate_hex
from .zk_circuit import CensusCircuit
from .zk_prover import ProvingParameters, ZkProver

# Initialize structured logger
logger = structlog.get_logger(__name__)


class CensusAggregator:
    """
    In-process census ledger.

    Implements the ``LedgerClient`` protocol used by the submission layer.

    Parameters
    ----------
    prover : ZkProver, optional
        Prover used for the per-census trusted setup and for verification.

    Examples
    --------
    >>> aggregator = CensusAggregator(ZkProver(proving_rounds=1000))
    >>> census = aggregator.create_census("Survey", "", 18, True, signer.public_key, signature)
    >>> aggregator.get_statistics(census.census_id).total_members
    0
    """

    def __init__(self, prover: Optional[ZkProver] = None) -> None:
        self.prover = prover or ZkProver()

        self._registry_lock = threading.Lock()
        self._census_locks: Dict[str, threading.Lock] = {}
        self._censuses: Dict[str, CensusMetadata] = {}
        self._parameters: Dict[str, ProvingParameters] = {}
        self._registrations: Dict[str, Dict[bytes, Registration]] = {}
        self._verified_counts: Dict[str, int] = {}

        logger.info("CensusAggregator initialized")

    # =========================================================================
    # Census lifecycle
    # =========================================================================

    def create_census(
        self,
        name: str,
        description: str,
        min_age: int,
        enable_location: bool,
        creator_public_key: str,
        signature: bytes,
        allow_unknown_continent: bool = True,
        census_id: Optional[str] = None,
    ) -> CensusMetadata:
        """
        Create a census and run its trusted setup.

        Parameters
        ----------
        name : str
            Display name.
        description : str
            Free-form description.
        min_age : int
            Minimum age of a member.
        enable_location : bool
            Whether the continent distribution is collected.
        creator_public_key : str
            Hex Ed25519 key of the creator.
        signature : bytes
            Creator signature over the canonical creation message.
        allow_unknown_continent : bool, default=True
            Whether members of unmapped nationalities are counted as unknown.
        census_id : str, optional
            Explicit id; generated when omitted.

        Returns
        -------
        CensusMetadata
            Copy of the stored census with zeroed counters.

        Raises
        ------
        AuthenticationError
            If the creator signature does not verify.
        LedgerError
            If ``census_id`` is already taken.
        ValueError
            If ``min_age`` is outside the supported range.
        """
        if not 0 <= min_age <= MAX_SUPPORTED_AGE:
            raise ValueError(f"min_age must be between 0 and {MAX_SUPPORTED_AGE}")

        message = build_census_creation_message(
            name,
            description,
            min_age,
            enable_location,
            allow_unknown_continent,
            creator_public_key,
        )
        if not verify_signature(creator_public_key, message, signature):
            raise AuthenticationError("Census creation signature is invalid")

        census_id = census_id or generate_census_id()
        circuit = CensusCircuit(min_age, enable_location, allow_unknown_continent)
        proving_key, verifying_key = self.prover.setup(circuit)

        census = CensusMetadata(
            census_id=census_id,
            name=name,
            description=description,
            creator=creator_public_key,
            min_age=min_age,
            enable_location=enable_location,
            allow_unknown_continent=allow_unknown_continent,
        )

        with self._registry_lock:
            if census_id in self._censuses:
                raise LedgerError(f"Census already exists: {census_id}", census_id=census_id)
            self._censuses[census_id] = census
            self._census_locks[census_id] = threading.Lock()
            self._registrations[census_id] = {}
            self._verified_counts[census_id] = 0
            self._parameters[census_id] = ProvingParameters(
                census_id=census_id,
                proving_key=proving_key,
                verifying_key=verifying_key,
            )

        logger.info(
            "Census created",
            census_id=census_id,
            min_age=min_age,
            enable_location=enable_location,
            allow_unknown_continent=allow_unknown_continent,
            verifying_key=verifying_key.fingerprint(),
        )
        return census.copy()

    def close_census(self, census_id: str, signature: bytes) -> CensusMetadata:
        """
        Stop accepting registrations for a census.

        Raises
        ------
        CensusNotFoundError
            If the census does not exist.
        AuthenticationError
            If the signature is not the creator's.
        """
        lock, _ = self._lookup(census_id)

        with lock:
            census = self._censuses[census_id]
            if not verify_signature(
                census.creator, build_census_close_message(census_id), signature
            ):
                raise AuthenticationError("Census close signature is invalid")

            if census.active:
                updated = census.copy()
                updated.active = False
                updated.last_updated = datetime.now(timezone.utc)
                self._swap(updated)
                census = updated
                logger.info(
                    "Census closed", census_id=census_id, total_members=census.total_members
                )

            return census.copy()

    def list_censuses(self) -> List[CensusMetadata]:
        with self._registry_lock:
            censuses = [census.copy() for census in self._censuses.values()]
        return sorted(censuses, key=lambda census: census.created_at)

    def get_census(self, census_id: str) -> CensusMetadata:
        lock, _ = self._lookup(census_id)
        with lock:
            return self._censuses[census_id].copy()

    def get_proving_parameters(self, census_id: str) -> ProvingParameters:
        """
        Published keys for a census.

        With the simulated prover the verifying key shares the setup
        trapdoor, so holding these parameters is enough to tag any public
        input. Registrations are only as sound as the prover backend.
        """
        _, parameters = self._lookup(census_id)
        return parameters

    def get_statistics(self, census_id: str) -> CensusStatistics:
        """Aggregate counters of a census; no identity-linked data."""
        lock, _ = self._lookup(census_id)
        with lock:
            return CensusStatistics.from_metadata(self._censuses[census_id])

    def find_registration(
        self, census_id: str, nullifier_hash: bytes
    ) -> Optional[Registration]:
        lock, _ = self._lookup(census_id)
        with lock:
            registration = self._registrations[census_id].get(bytes(nullifier_hash))
            return copy.deepcopy(registration) if registration else None

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(self, request: SubmissionRequest) -> SubmissionResponse:
        """
        Verify and record a census submission.

        Checks run in order and the first failing one decides the error
        kind. Nothing is mutated unless every check passes.

        Returns
        -------
        SubmissionResponse
            Success with the registration id, or the rejection kind.

        Raises
        ------
        LedgerError
            If committing would break a ledger invariant.
        """
        census_id = request.census_id
        public = request.public_input

        with self._registry_lock:
            lock = self._census_locks.get(census_id)
            parameters = self._parameters.get(census_id)

        if lock is None:
            return self._reject(census_id, ErrorKind.CENSUS_INACTIVE, "Census not found")

        with lock:
            census = self._censuses[census_id]
            active, min_age = census.active, census.min_age
            enable_location = census.enable_location

        if not active:
            return self._reject(
                census_id, ErrorKind.CENSUS_INACTIVE, "Census is not accepting registrations"
            )

        if public.census_id != census_id:
            return self._reject(
                census_id, ErrorKind.INVALID_PROOF, "Public input belongs to another census"
            )

        try:
            age_range = AgeRange(public.age_range_code)
            continent = Continent(public.continent_code)
        except ValueError:
            return self._reject(
                census_id, ErrorKind.INVALID_PROOF, "Public input codes are out of range"
            )

        if age_range.upper < min_age:
            return self._reject(
                census_id,
                ErrorKind.BELOW_MINIMUM_AGE,
                f"Age range {age_range.label} is below the minimum age {min_age}",
            )

        try:
            proof_valid = self.prover.verify(
                parameters.verifying_key, request.proof, public
            )
        except ProofVerificationError as e:
            logger.debug("Malformed proof submitted", census_id=census_id, error=e.message)
            proof_valid = False

        if not proof_valid:
            return self._reject(census_id, ErrorKind.INVALID_PROOF, "Proof verification failed")

        message = build_submission_message_for(public, request.proof)
        if not verify_signature(request.public_key, message, request.signature):
            return self._reject(
                census_id, ErrorKind.INVALID_SIGNATURE, "Signature verification failed"
            )

        nullifier_hash = bytes(public.nullifier_hash)

        with lock:
            census = self._censuses[census_id]
            registrations = self._registrations[census_id]

            if not census.active:
                return self._reject(
                    census_id,
                    ErrorKind.CENSUS_INACTIVE,
                    "Census is not accepting registrations",
                )

            if nullifier_hash in registrations:
                return self._reject(
                    census_id,
                    ErrorKind.DUPLICATE_NULLIFIER,
                    "Nullifier already used for this census",
                )

            updated = self._apply_delta(census, age_range, continent, +1)
            verified = self._verified_counts[census_id] + 1
            self._check_invariants(updated, verified)

            registration = Registration(
                census_id=census_id,
                nullifier_hash=nullifier_hash,
                age_range=age_range,
                continent=continent if enable_location else Continent.UNKNOWN,
                submission_digest=request.digest(),
            )
            registration.mark_verified(generate_registration_id())

            registrations[nullifier_hash] = registration
            self._verified_counts[census_id] = verified
            self._swap(updated)

        logger.info(
            "Census registration accepted",
            census_id=census_id,
            registration_id=registration.registration_id,
            nullifier_prefix=truncate_hex(nullifier_hash),
            total_members=updated.total_members,
        )
        return SubmissionResponse.success(registration.registration_id)

    # =========================================================================
    # Revocation
    # =========================================================================

    def revoke_registration(
        self, census_id: str, nullifier_hash: bytes, signature: bytes
    ) -> Registration:
        """
        Revoke a registration and remove it from the counters.

        The nullifier stays consumed: the same identity cannot register
        again for this census.

        Raises
        ------
        CensusNotFoundError
            If the census does not exist.
        AuthenticationError
            If the signature is not the creator's.
        LedgerError
            If there is no verified registration for the nullifier.
        """
        lock, _ = self._lookup(census_id)
        nullifier_hash = bytes(nullifier_hash)

        with lock:
            census = self._censuses[census_id]
            if not verify_signature(
                census.creator,
                build_revocation_message(census_id, nullifier_hash),
                signature,
            ):
                raise AuthenticationError("Revocation signature is invalid")

            registrations = self._registrations[census_id]
            registration = registrations.get(nullifier_hash)
            if registration is None or registration.status is not RegistrationStatus.VERIFIED:
                raise LedgerError(
                    "No verified registration for this nullifier", census_id=census_id
                )

            updated = self._apply_delta(
                census, registration.age_range, registration.continent, -1
            )
            verified = self._verified_counts[census_id] - 1
            self._check_invariants(updated, verified)

            revoked = replace(registration)
            revoked.mark_revoked()
            registrations[nullifier_hash] = revoked
            self._verified_counts[census_id] = verified
            self._swap(updated)

        logger.info(
            "Census registration revoked",
            census_id=census_id,
            registration_id=revoked.registration_id,
            total_members=updated.total_members,
        )
        return copy.deepcopy(revoked)

    # =========================================================================
    # Internals
    # =========================================================================

    def _lookup(self, census_id: str) -> Tuple[threading.Lock, ProvingParameters]:
        with self._registry_lock:
            lock = self._census_locks.get(census_id)
            if lock is None:
                raise CensusNotFoundError(census_id)
            return lock, self._parameters[census_id]

    def _swap(self, census: CensusMetadata) -> None:
        with self._registry_lock:
            self._censuses[census.census_id] = census

    def _reject(
        self, census_id: str, error_kind: ErrorKind, message: str
    ) -> SubmissionResponse:
        logger.warning(
            "Census submission rejected",
            census_id=census_id,
            error_kind=error_kind.value,
            reason=message,
        )
        return SubmissionResponse.failure(error_kind, message)

    @staticmethod
    def _apply_delta(
        census: CensusMetadata, age_range: AgeRange, continent: Continent, delta: int
    ) -> CensusMetadata:
        updated = census.copy()
        updated.total_members += delta
        updated.age_distribution[age_range] += delta
        if updated.enable_location:
            updated.continent_distribution[continent] += delta
        updated.last_updated = datetime.now(timezone.utc)
        return updated

    @staticmethod
    def _check_invariants(census: CensusMetadata, expected_members: int) -> None:
        violations = []

        if census.total_members != expected_members:
            violations.append("member count does not match registrations")
        if census.total_members != sum(census.age_distribution.values()):
            violations.append("age distribution does not sum to total")
        if census.enable_location and census.total_members != sum(
            census.continent_distribution.values()
        ):
            violations.append("continent distribution does not sum to total")
        if census.total_members < 0 or any(
            count < 0
            for count in list(census.age_distribution.values())
            + list(census.continent_distribution.values())
        ):
            violations.append("negative counter")

        if violations:
            logger.critical(
                "Ledger invariant violated",
                census_id=census.census_id,
                violations=violations,
            )
            raise LedgerError(
                "Ledger invariant violated: " + "; ".join(violations),
                census_id=census.census_id,
            )
