"""
Data models for the zkcensus system.

This module defines the core data structures used throughout the census
pipeline: the ephemeral passport record, the privacy-preserving buckets, the
circuit input and proof types, and the ledger-side census and registration
records.

Identity-bearing models (``PassportRecord``, ``PrivateWitness``,
``NullifierSecret``) never render their values in ``repr`` and can be wiped
in place once consumed.
"""

import copy
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from .constants import AGE_RANGE_BOUNDS, NULLIFIER_SECRET_LENGTH
from .exceptions import ClassificationError, ClassificationFailure


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Buckets
# =============================================================================


class AgeRange(IntEnum):
    """
    Ordinal age buckets partitioning ages 0 to 130.

    The integer value is the range code used in public inputs and in the
    statistics read interface.
    """

    UNDER_18 = 0
    AGE_18_24 = 1
    AGE_25_34 = 2
    AGE_35_44 = 3
    AGE_45_54 = 4
    AGE_55_64 = 5
    AGE_65_PLUS = 6

    @property
    def lower(self) -> int:
        return AGE_RANGE_BOUNDS[self.value][0]

    @property
    def upper(self) -> int:
        return AGE_RANGE_BOUNDS[self.value][1]

    @property
    def label(self) -> str:
        """Short label, e.g. ``"18-24"``, ``"<18"`` or ``"65+"``."""
        if self.value == 0:
            return f"<{self.upper + 1}"
        if self.value == len(AGE_RANGE_BOUNDS) - 1:
            return f"{self.lower}+"
        return f"{self.lower}-{self.upper}"

    @property
    def display_name(self) -> str:
        if self.value == 0:
            return f"Under {self.upper + 1}"
        if self.value == len(AGE_RANGE_BOUNDS) - 1:
            return f"{self.lower}+"
        return f"{self.lower} - {self.upper}"

    def contains(self, age: int) -> bool:
        return self.lower <= age <= self.upper

    @classmethod
    def for_age(cls, age: int) -> "AgeRange":
        """
        Return the single range containing ``age``.

        Raises
        ------
        ClassificationError
            If the age lies outside the supported domain.
        """
        for age_range in cls:
            if age_range.contains(age):
                return age_range

        raise ClassificationError(
            f"Age {age} is outside the supported range",
            reason=ClassificationFailure.AGE_OUT_OF_RANGE,
            attribute="date_of_birth",
        )

    @classmethod
    def from_label(cls, label: str) -> "AgeRange":
        for age_range in cls:
            if age_range.label == label:
                return age_range
        raise ValueError(f"Unknown age range label: {label}")


class Continent(IntEnum):
    """Continent buckets. Codes that map nowhere resolve to ``UNKNOWN``."""

    AFRICA = 0
    ASIA = 1
    EUROPE = 2
    NORTH_AMERICA = 3
    SOUTH_AMERICA = 4
    OCEANIA = 5
    UNKNOWN = 6

    @property
    def label(self) -> str:
        """Compact label, e.g. ``"SouthAmerica"``."""
        return "".join(part.capitalize() for part in self.name.split("_"))

    @property
    def display_name(self) -> str:
        return " ".join(part.capitalize() for part in self.name.split("_"))

    @classmethod
    def from_label(cls, label: str) -> "Continent":
        for continent in cls:
            if continent.label == label:
                return continent
        raise ValueError(f"Unknown continent label: {label}")


# =============================================================================
# Identity Inputs
# =============================================================================


@dataclass(repr=False)
class PassportRecord:
    """
    Already-parsed passport attributes for one classification and proof cycle.

    The record is owned by the caller and must not outlive the cycle:
    ``CircuitInputBuilder`` wipes it as soon as it has been consumed.

    Parameters
    ----------
    document_number : str
        Passport number as printed in the MRZ.
    document_type : str
        MRZ document type code (``"P"`` for passports).
    issuing_country : str
        ISO-3166 alpha-3 code of the issuing state.
    nationality : str
        ISO-3166 alpha-3 nationality code (MRZ aliases accepted).
    date_of_birth : date
        Holder's date of birth.
    sex : str
        MRZ sex marker (``"M"``, ``"F"`` or ``"<"``).
    expiry_date : date
        Document expiry date.

    Examples
    --------
    >>> record = PassportRecord(
    ...     document_number="AB1234567890142",
    ...     document_type="P",
    ...     issuing_country="BRA",
    ...     nationality="BRA",
    ...     date_of_birth=date(2001, 9, 9),
    ...     sex="M",
    ...     expiry_date=date(2030, 1, 1),
    ... )
    >>> record.masked_document_number()
    '*************42'
    """

    document_number: str
    document_type: str
    issuing_country: str
    nationality: str
    date_of_birth: Optional[date]
    sex: str
    expiry_date: Optional[date]
    _wiped: bool = field(default=False, init=False)

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else "redacted"
        return f"PassportRecord(<{state}>)"

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def masked_document_number(self) -> str:
        """Return the document number with all but the last two characters hidden."""
        number = self.document_number or ""
        if len(number) <= 2:
            return "*" * len(number)
        return "*" * (len(number) - 2) + number[-2:]

    def wipe(self) -> None:
        """Overwrite every attribute so the record no longer carries identity data."""
        self.document_number = ""
        self.document_type = ""
        self.issuing_country = ""
        self.nationality = ""
        self.date_of_birth = None
        self.sex = ""
        self.expiry_date = None
        self._wiped = True


class NullifierSecret:
    """
    Per-device random secret from which nullifier hashes are derived.

    The value is kept in a mutable buffer so it can be zeroized. It is never
    rendered by ``repr`` and never transmitted.
    """

    __slots__ = ("_buffer",)

    def __init__(self, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise TypeError(f"secret must be bytes, got {type(value).__name__}")
        if len(value) != NULLIFIER_SECRET_LENGTH:
            raise ValueError(
                f"secret must be {NULLIFIER_SECRET_LENGTH} bytes, got {len(value)}"
            )
        self._buffer = bytearray(value)

    @property
    def value(self) -> bytes:
        return bytes(self._buffer)

    def zeroize(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NullifierSecret):
            return NotImplemented
        return hmac.compare_digest(bytes(self._buffer), bytes(other._buffer))

    def __hash__(self) -> int:
        raise TypeError("NullifierSecret is not hashable")

    def __repr__(self) -> str:
        return "NullifierSecret(<redacted>)"


# =============================================================================
# Circuit Input and Proof
# =============================================================================


@dataclass(frozen=True)
class PublicInput:
    """
    Public statement a census proof is bound to.

    No validation happens on construction: verifiers must be able to receive
    arbitrary values and reject them.
    """

    census_id: str
    age_range_code: int
    continent_code: int
    nullifier_hash: bytes

    def to_bytes(self) -> bytes:
        """
        Canonical encoding of the public input vector.

        Every field is length-prefixed or fixed-width, so distinct inputs
        always encode to distinct byte strings.
        """
        census_bytes = self.census_id.encode("utf-8")
        return b"".join(
            [
                len(census_bytes).to_bytes(4, "big"),
                census_bytes,
                self.age_range_code.to_bytes(4, "big", signed=True),
                self.continent_code.to_bytes(4, "big", signed=True),
                len(self.nullifier_hash).to_bytes(4, "big"),
                bytes(self.nullifier_hash),
            ]
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used inside a submission request."""
        return {
            "ageRangeCode": self.age_range_code,
            "continentCode": self.continent_code,
            "nullifierHash": self.nullifier_hash.hex(),
        }

    @classmethod
    def from_dict(cls, census_id: str, data: Dict[str, Any]) -> "PublicInput":
        return cls(
            census_id=census_id,
            age_range_code=int(data["ageRangeCode"]),
            continent_code=int(data["continentCode"]),
            nullifier_hash=bytes.fromhex(data["nullifierHash"]),
        )


@dataclass(repr=False)
class PrivateWitness:
    """Private attributes needed to prove bucket membership."""

    date_of_birth: date
    reference_date: date
    nationality: Optional[str]
    secret: NullifierSecret

    def __repr__(self) -> str:
        return "PrivateWitness(<redacted>)"

    def zeroize(self) -> None:
        self.secret.zeroize()
        self.nationality = None


@dataclass(repr=False)
class CircuitInput:
    """Public and private input set for one proving session."""

    public: PublicInput
    witness: PrivateWitness

    def __repr__(self) -> str:
        return f"CircuitInput(public={self.public!r}, witness=<redacted>)"

    def discard(self) -> None:
        """Zeroize the witness once the proving session is over."""
        self.witness.zeroize()


@dataclass(frozen=True)
class CensusProof:
    """Opaque proof bytes together with the public input they prove."""

    proof_bytes: bytes
    public_input: PublicInput
    proof_system: str = "groth16"
    created_at: datetime = field(default_factory=_utcnow)

    def digest(self) -> str:
        """SHA-256 of the proof bytes as a hex string."""
        return hashlib.sha256(self.proof_bytes).hexdigest()

    @property
    def size_bytes(self) -> int:
        return len(self.proof_bytes)


class ProofState(str, Enum):
    """States of the proof engine."""

    IDLE = "idle"
    BUILDING_INPUT = "building_input"
    PROVING = "proving"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# =============================================================================
# Ledger Records
# =============================================================================


def empty_age_distribution() -> Dict[AgeRange, int]:
    return {age_range: 0 for age_range in AgeRange}


def empty_continent_distribution() -> Dict[Continent, int]:
    return {continent: 0 for continent in Continent}


@dataclass
class CensusMetadata:
    """
    Census definition and its aggregate counters.

    Owned and mutated exclusively by ``CensusAggregator``; every reader
    receives a copy.
    """

    census_id: str
    name: str
    description: str
    creator: str
    min_age: int
    enable_location: bool
    allow_unknown_continent: bool = True
    active: bool = True
    total_members: int = 0
    age_distribution: Dict[AgeRange, int] = field(default_factory=empty_age_distribution)
    continent_distribution: Dict[Continent, int] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.census_id:
            raise ValueError("census_id must be a non-empty string")
        if self.min_age < 0:
            raise ValueError("min_age cannot be negative")
        if self.enable_location and not self.continent_distribution:
            self.continent_distribution = empty_continent_distribution()

    @property
    def member_count_label(self) -> str:
        total = self.total_members
        return f"{total} member{'' if total == 1 else 's'}"

    def copy(self) -> "CensusMetadata":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "censusId": self.census_id,
            "name": self.name,
            "description": self.description,
            "creator": self.creator,
            "active": self.active,
            "minAge": self.min_age,
            "enableLocation": self.enable_location,
            "allowUnknownContinent": self.allow_unknown_continent,
            "totalMembers": self.total_members,
            "ageDistribution": {
                str(int(k)): v for k, v in self.age_distribution.items()
            },
            "continentDistribution": {
                str(int(k)): v for k, v in self.continent_distribution.items()
            },
            "createdAt": self.created_at.isoformat(),
            "lastUpdated": self.last_updated.isoformat(),
        }


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REVOKED = "revoked"


@dataclass
class Registration:
    """
    Per-(identity, census) registration record.

    Registrations are never deleted; deleting one would reopen its nullifier.
    """

    census_id: str
    nullifier_hash: bytes
    age_range: AgeRange
    continent: Continent
    submission_digest: str
    status: RegistrationStatus = RegistrationStatus.PENDING
    registration_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def mark_verified(self, registration_id: str) -> None:
        if self.status is not RegistrationStatus.PENDING:
            raise ValueError(f"Cannot verify a {self.status.value} registration")
        self.registration_id = registration_id
        self.status = RegistrationStatus.VERIFIED

    def mark_revoked(self) -> None:
        if self.status is not RegistrationStatus.VERIFIED:
            raise ValueError(f"Cannot revoke a {self.status.value} registration")
        self.status = RegistrationStatus.REVOKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registrationId": self.registration_id,
            "censusId": self.census_id,
            "nullifierHash": self.nullifier_hash.hex(),
            "ageRange": int(self.age_range),
            "continent": int(self.continent),
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class CensusStatistics:
    """Read-only aggregate view of a census; carries no identity-linked fields."""

    census_id: str
    total_members: int
    age_distribution: Dict[AgeRange, int]
    continent_distribution: Dict[Continent, int]
    last_updated: datetime

    @classmethod
    def from_metadata(cls, metadata: CensusMetadata) -> "CensusStatistics":
        return cls(
            census_id=metadata.census_id,
            total_members=metadata.total_members,
            age_distribution=dict(metadata.age_distribution),
            continent_distribution=dict(metadata.continent_distribution),
            last_updated=metadata.last_updated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "censusId": self.census_id,
            "totalMembers": self.total_members,
            "ageDistribution": {
                str(int(k)): v for k, v in sorted(self.age_distribution.items())
            },
            "continentDistribution": {
                str(int(k)): v for k, v in sorted(self.continent_distribution.items())
            },
            "lastUpdated": self.last_updated.isoformat(),
        }


# =============================================================================
# Wire Types
# =============================================================================


class ErrorKind(str, Enum):
    """Error kinds returned by the ledger for a rejected submission."""

    INVALID_PROOF = "InvalidProof"
    INVALID_SIGNATURE = "InvalidSignature"
    DUPLICATE_NULLIFIER = "DuplicateNullifier"
    BELOW_MINIMUM_AGE = "BelowMinimumAge"
    CENSUS_INACTIVE = "CensusInactive"
    TRANSIENT = "Transient"


@dataclass(frozen=True)
class SubmissionRequest:
    """Signed proof package sent to the ledger."""

    census_id: str
    proof: bytes
    public_input: PublicInput
    signature: bytes
    public_key: str

    def digest(self) -> str:
        """Identifies this exact submission (proof and signature)."""
        return hashlib.sha256(self.proof + self.signature).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "censusId": self.census_id,
            "proof": self.proof.hex(),
            "publicInput": self.public_input.to_dict(),
            "signature": self.signature.hex(),
            "publicKey": self.public_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionRequest":
        census_id = data["censusId"]
        return cls(
            census_id=census_id,
            proof=bytes.fromhex(data["proof"]),
            public_input=PublicInput.from_dict(census_id, data["publicInput"]),
            signature=bytes.fromhex(data["signature"]),
            public_key=data["publicKey"],
        )


@dataclass(frozen=True)
class SubmissionResponse:
    """Ledger answer to a submission request."""

    registration_id: Optional[str] = None
    status: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, registration_id: str) -> "SubmissionResponse":
        return cls(
            registration_id=registration_id, status=RegistrationStatus.VERIFIED.value
        )

    @classmethod
    def failure(cls, error_kind: ErrorKind, message: str) -> "SubmissionResponse":
        return cls(error_kind=error_kind, message=message)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"registrationId": self.registration_id, "status": self.status}
        return {"errorKind": self.error_kind.value, "message": self.message}
