"""
Configuration management for the zkcensus system.

This module handles all configuration loading from environment variables
and .env files, ensuring consistent configuration across different
deployment environments.
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

# =============================================================================
# Base Paths
# =============================================================================
# Define the base directory for the project
BASE_DIR: Path = Path(__file__).resolve().parent.parent

# Project root directory (parent of src/)
PROJECT_ROOT: Path = BASE_DIR.parent

# Results output directory
RESULTS_PATH: Path = Path(os.getenv("RESULTS_PATH", str(PROJECT_ROOT / "results")))

# =============================================================================
# Logging Configuration
# =============================================================================
# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Emit JSON log lines instead of console-formatted ones
STRUCTURED_LOGGING: bool = os.getenv("STRUCTURED_LOGGING", "true").lower() == "true"

# =============================================================================
# Proving Configuration
# =============================================================================
# Proof system used for census circuits
PROOF_SYSTEM: str = os.getenv("PROOF_SYSTEM", "groth16").lower()

# Security level in bits (128 or 256)
SECURITY_LEVEL: int = int(os.getenv("SECURITY_LEVEL", "128"))

# Number of proving work rounds per proof
PROVING_ROUNDS: int = int(os.getenv("PROVING_ROUNDS", "20000"))

# Upper bound on a single proving session in seconds (0 means unlimited)
PROOF_TIMEOUT_SECONDS: float = float(os.getenv("PROOF_TIMEOUT_SECONDS", "120"))

# =============================================================================
# Submission Configuration
# =============================================================================
# Maximum number of attempts for one submission (first try included)
SUBMISSION_MAX_ATTEMPTS: int = int(os.getenv("SUBMISSION_MAX_ATTEMPTS", "4"))

# Delay before the first retry in seconds
SUBMISSION_INITIAL_BACKOFF_SECONDS: float = float(
    os.getenv("SUBMISSION_INITIAL_BACKOFF_SECONDS", "0.5")
)

# Multiplier applied to the delay after each retry
SUBMISSION_BACKOFF_MULTIPLIER: float = float(
    os.getenv("SUBMISSION_BACKOFF_MULTIPLIER", "2.0")
)

# Ceiling on the delay between two attempts in seconds
SUBMISSION_MAX_BACKOFF_SECONDS: float = float(
    os.getenv("SUBMISSION_MAX_BACKOFF_SECONDS", "8.0")
)

# =============================================================================
# Secret Store Configuration
# =============================================================================
# Location of the encrypted nullifier secret
SECRET_STORE_PATH: Path = Path(
    os.getenv("SECRET_STORE_PATH", str(Path.home() / ".zkcensus" / "nullifier.secret"))
)

# Passphrase protecting the nullifier secret at rest
SECRET_STORE_PASSPHRASE: Optional[str] = os.getenv("SECRET_STORE_PASSPHRASE")

# =============================================================================
# Eligibility Policy
# =============================================================================
# Refuse passports whose expiry date precedes the reference date
REJECT_EXPIRED_DOCUMENTS: bool = (
    os.getenv("REJECT_EXPIRED_DOCUMENTS", "true").lower() == "true"
)

# =============================================================================
# Development and Debugging Configuration
# =============================================================================
# Enable debug mode (more verbose output, additional checks)
DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"

# Allow the wallet authentication bypass. Only honoured with DEBUG_MODE.
ALLOW_DEV_AUTH_BYPASS: bool = (
    os.getenv("ALLOW_DEV_AUTH_BYPASS", "false").lower() == "true"
)


# =============================================================================
# Configuration Validation
# =============================================================================
def validate_configuration() -> bool:
    """
    Validate the current configuration settings.

    Returns
    -------
    bool
        True if configuration is valid.

    Raises
    ------
    ValueError
        If critical configuration parameters are invalid.
    """
    errors = []

    if PROOF_SYSTEM not in ("groth16", "plonk"):
        errors.append("PROOF_SYSTEM must be one of ['groth16', 'plonk']")

    if SECURITY_LEVEL not in (128, 256):
        errors.append("SECURITY_LEVEL must be 128 or 256")

    if PROVING_ROUNDS < 1:
        errors.append("PROVING_ROUNDS must be at least 1")

    if PROOF_TIMEOUT_SECONDS < 0:
        errors.append("PROOF_TIMEOUT_SECONDS cannot be negative")

    if SUBMISSION_MAX_ATTEMPTS < 1:
        errors.append("SUBMISSION_MAX_ATTEMPTS must be at least 1")

    if SUBMISSION_INITIAL_BACKOFF_SECONDS < 0:
        errors.append("SUBMISSION_INITIAL_BACKOFF_SECONDS cannot be negative")

    if SUBMISSION_BACKOFF_MULTIPLIER < 1:
        errors.append("SUBMISSION_BACKOFF_MULTIPLIER must be at least 1")

    if SUBMISSION_MAX_BACKOFF_SECONDS < SUBMISSION_INITIAL_BACKOFF_SECONDS:
        errors.append(
            "SUBMISSION_MAX_BACKOFF_SECONDS must not be below the initial backoff"
        )

    if ALLOW_DEV_AUTH_BYPASS and not DEBUG_MODE:
        errors.append("ALLOW_DEV_AUTH_BYPASS requires DEBUG_MODE")

    # Validate log level
    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if LOG_LEVEL not in valid_log_levels:
        errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"- {error}" for error in errors)
        )

    return True


def get_config_summary() -> dict:
    """
    Get a summary of the current configuration.

    Secrets are reported only as present or absent.

    Returns
    -------
    dict
        Dictionary containing key configuration parameters.
    """
    return {
        "proving": {
            "proof_system": PROOF_SYSTEM,
            "security_level": SECURITY_LEVEL,
            "proving_rounds": PROVING_ROUNDS,
            "timeout_seconds": PROOF_TIMEOUT_SECONDS,
        },
        "submission": {
            "max_attempts": SUBMISSION_MAX_ATTEMPTS,
            "initial_backoff_seconds": SUBMISSION_INITIAL_BACKOFF_SECONDS,
            "backoff_multiplier": SUBMISSION_BACKOFF_MULTIPLIER,
            "max_backoff_seconds": SUBMISSION_MAX_BACKOFF_SECONDS,
        },
        "secret_store": {
            "path": str(SECRET_STORE_PATH),
            "passphrase_configured": SECRET_STORE_PASSPHRASE is not None,
        },
        "policy": {
            "reject_expired_documents": REJECT_EXPIRED_DOCUMENTS,
        },
        "development": {
            "debug_mode": DEBUG_MODE,
            "allow_dev_auth_bypass": ALLOW_DEV_AUTH_BYPASS,
        },
        "logging": {
            "level": LOG_LEVEL,
            "structured": STRUCTURED_LOGGING,
        },
        "output": {
            "results": str(RESULTS_PATH),
        },
    }


# Validate configuration on import
if not DEBUG_MODE:
    validate_configuration()
