"""
Custom exception classes for the zkcensus system.

This module defines the exception hierarchy used across the census pipeline.
Each exception carries a message, a context dictionary and an error code so
that failures can be logged as structured events and mapped onto the ledger
error kinds returned to clients.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ZkCensusError(Exception):
    """
    Base exception class for all zkcensus errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    context : dict, optional
        Additional context information about the error.
    error_code : str, optional
        Unique error code for programmatic handling.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.error_code = error_code
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return a formatted string representation of the error."""
        parts = [self.message]

        if self.error_code:
            parts.append(f"[Error Code: {self.error_code}]")

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[Context: {context_str}]")

        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the exception to a dictionary for structured logging.

        Returns
        -------
        dict
            Dictionary representation of the exception.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


# =============================================================================
# Classification
# =============================================================================


class ClassificationFailure(str, Enum):
    """Reasons an identity attribute set cannot be classified."""

    BELOW_MINIMUM_AGE = "below_minimum_age"
    AGE_OUT_OF_RANGE = "age_out_of_range"
    BIRTH_DATE_IN_FUTURE = "birth_date_in_future"
    UNKNOWN_CONTINENT_REJECTED = "unknown_continent_rejected"
    MISSING_ATTRIBUTE = "missing_attribute"
    MALFORMED_ATTRIBUTE = "malformed_attribute"
    DOCUMENT_EXPIRED = "document_expired"
    CENSUS_INACTIVE = "census_inactive"


class ClassificationError(ZkCensusError):
    """
    Exception raised when attributes are unmappable or ineligible.

    The flow fails immediately; no default bucket is ever assigned.
    """

    def __init__(
        self,
        message: str,
        reason: ClassificationFailure,
        attribute: Optional[str] = None,
        **kwargs,
    ) -> None:
        self.reason = reason
        context = kwargs.get("context", {})
        context["reason"] = reason.value
        if attribute:
            context["attribute"] = attribute

        super().__init__(message, context, kwargs.get("error_code", "CLASSIFY_001"))


# =============================================================================
# Cryptography
# =============================================================================


class CryptographyError(ZkCensusError):
    """
    Exception raised for errors in cryptographic operations.

    This includes nullifier derivation, secret storage and ZK-proof
    operations.
    """

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if operation:
            context["cryptographic_operation"] = operation

        super().__init__(message, context, kwargs.get("error_code"))


class NullifierError(CryptographyError):
    """Exception raised when a nullifier hash cannot be derived."""

    def __init__(self, message: str, **kwargs) -> None:
        super().__init__(
            message, operation="nullifier_derivation", error_code="CRYPTO_001"
        )


class SecretStoreError(CryptographyError):
    """
    Exception raised when the nullifier secret store cannot be read.

    An existing secret that cannot be read is never replaced by a new one.
    """

    def __init__(self, message: str, store_path: Optional[str] = None, **kwargs) -> None:
        context = {"store_path": store_path} if store_path else {}
        super().__init__(
            message,
            operation="secret_storage",
            context=context,
            error_code="CRYPTO_002",
        )


class ProofFailure(str, Enum):
    """Reasons a proving session can fail."""

    UNSATISFIED_CONSTRAINTS = "unsatisfied_constraints"
    INTERNAL_PROOF_INVALID = "internal_proof_invalid"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    BUSY = "busy"
    INVALID_PARAMETERS = "invalid_parameters"
    INTERNAL_ERROR = "internal_error"


class ProofGenerationError(CryptographyError):
    """Exception raised during ZK-proof generation."""

    def __init__(
        self,
        message: str,
        reason: ProofFailure = ProofFailure.INTERNAL_ERROR,
        proof_system: str = "groth16",
        **kwargs,
    ) -> None:
        self.reason = reason
        context = kwargs.get("context", {})
        context.update({"reason": reason.value, "proof_system": proof_system})
        super().__init__(
            message,
            operation="proof_generation",
            context=context,
            error_code=kwargs.get("error_code", "CRYPTO_003"),
        )


class ProofEngineBusyError(ProofGenerationError):
    """Exception raised when a proving session is already in flight."""

    def __init__(self, message: str = "A proving session is already active") -> None:
        super().__init__(message, reason=ProofFailure.BUSY, error_code="CRYPTO_004")


class ProofCancelledError(ProofGenerationError):
    """Exception raised when a proving session was cancelled."""

    def __init__(self, message: str = "Proving session was cancelled") -> None:
        super().__init__(
            message, reason=ProofFailure.CANCELLED, error_code="CRYPTO_005"
        )


class ProofVerificationError(CryptographyError):
    """Exception raised when a proof is structurally malformed."""

    def __init__(self, message: str, **kwargs) -> None:
        super().__init__(
            message, operation="proof_verification", error_code="CRYPTO_006"
        )


# =============================================================================
# Signing and submission
# =============================================================================


class SigningError(ZkCensusError):
    """
    Exception raised by the external signing capability.

    The signer's own message is surfaced verbatim.
    """

    def __init__(self, message: str, signer: Optional[str] = None, **kwargs) -> None:
        context = {"signer": signer} if signer else {}
        super().__init__(message, context, kwargs.get("error_code", "SIGN_001"))


class SubmissionError(ZkCensusError):
    """
    Exception raised when a proof submission does not succeed.

    Parameters
    ----------
    message : str
        Human-readable error message.
    error_kind : ErrorKind-compatible str
        One of the ledger error kinds (``InvalidProof``, ``Transient`` ...).
    """

    def __init__(
        self,
        message: str,
        error_kind: str,
        census_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        self.error_kind = error_kind
        context = kwargs.get("context", {})
        context["error_kind"] = error_kind
        if census_id:
            context["census_id"] = census_id

        super().__init__(message, context, kwargs.get("error_code", "SUBMIT_001"))


class TransientSubmissionError(SubmissionError):
    """Retryable submission failure (network or ledger congestion)."""

    def __init__(self, message: str, census_id: Optional[str] = None) -> None:
        super().__init__(
            message, error_kind="Transient", census_id=census_id, error_code="SUBMIT_002"
        )


class SubmissionRejectedError(SubmissionError):
    """Terminal rejection returned by the ledger."""

    def __init__(
        self, message: str, error_kind: str, census_id: Optional[str] = None
    ) -> None:
        super().__init__(
            message, error_kind=error_kind, census_id=census_id, error_code="SUBMIT_003"
        )


class SubmissionRetriesExhaustedError(SubmissionError):
    """Transient failures persisted past the retry bound."""

    def __init__(
        self, message: str, attempts: int, census_id: Optional[str] = None
    ) -> None:
        self.attempts = attempts
        super().__init__(
            message,
            error_kind="Transient",
            census_id=census_id,
            context={"attempts": attempts},
            error_code="SUBMIT_004",
        )


# =============================================================================
# Ledger, authentication and configuration
# =============================================================================


class LedgerError(ZkCensusError):
    """
    Exception raised for aggregator-side invariant violations.

    These imply a broken uniqueness or sum invariant and must halt the
    operation rather than be absorbed.
    """

    def __init__(self, message: str, census_id: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if census_id:
            context["census_id"] = census_id

        super().__init__(message, context, kwargs.get("error_code", "LEDGER_001"))


class CensusNotFoundError(LedgerError):
    """Exception raised when a census id is not known to the ledger."""

    def __init__(self, census_id: str) -> None:
        super().__init__(
            f"Census not found: {census_id}", census_id=census_id, error_code="LEDGER_002"
        )


class AuthenticationError(ZkCensusError):
    """Exception raised when a wallet cannot be authenticated."""

    def __init__(self, message: str, **kwargs) -> None:
        super().__init__(message, kwargs.get("context"), kwargs.get("error_code", "AUTH_001"))


class ResultPersistenceError(ZkCensusError):
    """Exception raised when statistics snapshots cannot be written."""

    def __init__(self, message: str, output_path: Optional[str] = None) -> None:
        context = {"output_path": output_path} if output_path else {}
        super().__init__(message, context, "RESULTS_001")


class ConfigurationError(ZkCensusError):
    """
    Exception raised for configuration-related errors.

    This includes invalid configuration values, missing required
    environment variables, or configuration conflicts.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key
        if config_value:
            context["config_value"] = config_value

        super().__init__(message, context, kwargs.get("error_code", "CONFIG_001"))
