"""
Wallet signing for the zkcensus system.

Submissions, census creation, census closing and registration revocation are
authorised by an Ed25519 signature over a canonical JSON message. The signer
is an injected capability (a wallet in production); ``Ed25519Signer`` is a
local implementation used by tests, the CLI and the simulation.
"""

import hashlib
import json
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .constants import (
    CENSUS_CLOSE_DOMAIN,
    CENSUS_CREATION_DOMAIN,
    REGISTRATION_REVOKE_DOMAIN,
    SUBMISSION_MESSAGE_DOMAIN,
)
from .data_models import CensusProof, PublicInput
from .exceptions import SigningError

# Initialize structured logger
logger = structlog.get_logger(__name__)


@runtime_checkable
class Signer(Protocol):
    """Signing capability of a wallet.

    ``public_key`` is the hex encoding of the raw 32-byte Ed25519 key.
    """

    @property
    def public_key(self) -> str:
        ...

    def sign(self, message: bytes) -> bytes:
        ...


class Ed25519Signer:
    """
    Local Ed25519 signer.

    Parameters
    ----------
    private_key : Ed25519PrivateKey, optional
        Key to sign with. A fresh key is generated when omitted.
    """

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None) -> None:
        self._private_key = private_key or Ed25519PrivateKey.generate()
        self._public_key = (
            self._private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            .hex()
        )

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, data: bytes) -> "Ed25519Signer":
        return cls(Ed25519PrivateKey.from_private_bytes(data))

    @property
    def public_key(self) -> str:
        return self._public_key

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def __repr__(self) -> str:
        return f"Ed25519Signer(public_key={self._public_key[:16]}...)"


def _canonical(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def build_submission_message(proof: CensusProof) -> bytes:
    """
    Canonical message a wallet signs to submit ``proof``.

    Binds the census id, the public input and the proof bytes, so a signature
    cannot be moved to another proof or another census.
    """
    return build_submission_message_for(proof.public_input, proof.proof_bytes)


def build_submission_message_for(public_input: PublicInput, proof_bytes: bytes) -> bytes:
    return _canonical(
        {
            "domain": SUBMISSION_MESSAGE_DOMAIN,
            "censusId": public_input.census_id,
            "ageRangeCode": public_input.age_range_code,
            "continentCode": public_input.continent_code,
            "nullifierHash": public_input.nullifier_hash.hex(),
            "proofDigest": hashlib.sha256(proof_bytes).hexdigest(),
        }
    )


def build_census_creation_message(
    name: str,
    description: str,
    min_age: int,
    enable_location: bool,
    allow_unknown_continent: bool,
    creator_public_key: str,
) -> bytes:
    return _canonical(
        {
            "domain": CENSUS_CREATION_DOMAIN,
            "name": name,
            "description": description,
            "minAge": min_age,
            "enableLocation": enable_location,
            "allowUnknownContinent": allow_unknown_continent,
            "creator": creator_public_key,
        }
    )


def build_census_close_message(census_id: str) -> bytes:
    return _canonical({"domain": CENSUS_CLOSE_DOMAIN, "censusId": census_id})


def build_revocation_message(census_id: str, nullifier_hash: bytes) -> bytes:
    return _canonical(
        {
            "domain": REGISTRATION_REVOKE_DOMAIN,
            "censusId": census_id,
            "nullifierHash": nullifier_hash.hex(),
        }
    )


def sign_message(signer: Signer, message: bytes) -> bytes:
    """
    Sign ``message`` with ``signer``.

    Raises
    ------
    SigningError
        If the signer fails for any reason; its message is kept verbatim.
    """
    try:
        signature = signer.sign(message)
    except SigningError:
        raise
    except Exception as e:
        logger.warning("Signer failed", error_type=type(e).__name__)
        raise SigningError(str(e), signer=getattr(signer, "public_key", None)) from e

    if not isinstance(signature, (bytes, bytearray)):
        raise SigningError("Signer returned a non-bytes signature")

    return bytes(signature)


def verify_signature(public_key_hex: str, message: bytes, signature: bytes) -> bool:
    """
    Check an Ed25519 signature.

    Returns
    -------
    bool
        False for a bad signature or a malformed public key.
    """
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        public_key.verify(bytes(signature), message)
    except InvalidSignature:
        return False
    except (ValueError, TypeError):
        logger.debug("Malformed public key or signature")
        return False

    return True
