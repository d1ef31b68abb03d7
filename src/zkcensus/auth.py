"""
Wallet authentication for the zkcensus system.

A wallet proves control of its key by signing a one-time random challenge.
Challenges are consumed on first use, whether the signature verifies or not.

A development bypass exists for local testing only. It is refused unless
both ``DEBUG_MODE`` and ``ALLOW_DEV_AUTH_BYPASS`` are enabled, and every
bypassed session is flagged and logged.
"""

import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

import structlog

from . import config
from .constants import AUTH_CHALLENGE_DOMAIN, AUTH_CHALLENGE_LENGTH
from .exceptions import AuthenticationError
from .signing import verify_signature

# Initialize structured logger
logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedSession:
    """Result of a successful wallet authentication."""

    public_key: str
    user_type: str = "participant"
    authenticated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    bypassed: bool = False


def build_challenge_message(public_key: str, challenge: str) -> bytes:
    return f"{AUTH_CHALLENGE_DOMAIN}:{public_key}:{challenge}".encode("utf-8")


class WalletAuthenticator:
    """
    Challenge-response authenticator for wallet keys.

    Parameters
    ----------
    debug_mode : bool, default=config.DEBUG_MODE
        Whether the process runs in debug mode.
    allow_dev_bypass : bool, default=config.ALLOW_DEV_AUTH_BYPASS
        Whether the development bypass is requested.

    Examples
    --------
    >>> authenticator = WalletAuthenticator()
    >>> message = authenticator.issue_challenge(signer.public_key)
    >>> session = authenticator.authenticate(signer.public_key, signer.sign(message))
    """

    def __init__(
        self,
        debug_mode: Optional[bool] = None,
        allow_dev_bypass: Optional[bool] = None,
    ) -> None:
        self.debug_mode = config.DEBUG_MODE if debug_mode is None else debug_mode
        self.allow_dev_bypass = (
            config.ALLOW_DEV_AUTH_BYPASS if allow_dev_bypass is None else allow_dev_bypass
        )
        self._lock = threading.Lock()
        self._challenges: Dict[str, str] = {}

    @property
    def bypass_enabled(self) -> bool:
        return self.debug_mode and self.allow_dev_bypass

    def issue_challenge(self, public_key: str) -> bytes:
        """
        Issue a fresh challenge for ``public_key``.

        Returns
        -------
        bytes
            Message the wallet must sign. Replaces any pending challenge.
        """
        challenge = secrets.token_hex(AUTH_CHALLENGE_LENGTH)
        with self._lock:
            self._challenges[public_key] = challenge
        return build_challenge_message(public_key, challenge)

    def authenticate(
        self, public_key: str, signature: bytes, user_type: str = "participant"
    ) -> AuthenticatedSession:
        """
        Consume the pending challenge and check the wallet signature.

        Raises
        ------
        AuthenticationError
            If no challenge is pending or the signature does not verify.
        """
        with self._lock:
            challenge = self._challenges.pop(public_key, None)

        if challenge is None:
            raise AuthenticationError("No pending challenge for this wallet")

        message = build_challenge_message(public_key, challenge)
        if not verify_signature(public_key, message, signature):
            logger.warning("Wallet authentication failed", public_key=public_key[:16])
            raise AuthenticationError("Challenge signature is invalid")

        logger.info(
            "Wallet authenticated", public_key=public_key[:16], user_type=user_type
        )
        return AuthenticatedSession(public_key=public_key, user_type=user_type)

    def dev_bypass(
        self, public_key: str, user_type: str = "participant"
    ) -> AuthenticatedSession:
        """
        Create a session without a signature. Development only.

        Raises
        ------
        AuthenticationError
            Unless both debug mode and the bypass flag are enabled.
        """
        if not self.bypass_enabled:
            raise AuthenticationError(
                "Development authentication bypass is disabled",
                context={
                    "debug_mode": self.debug_mode,
                    "allow_dev_bypass": self.allow_dev_bypass,
                },
            )

        logger.warning(
            "Development authentication bypass used",
            public_key=public_key[:16],
            user_type=user_type,
        )
        return AuthenticatedSession(
            public_key=public_key, user_type=user_type, bypassed=True
        )
