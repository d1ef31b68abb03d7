import pytest

from zkcensus.auth import WalletAuthenticator
from zkcensus.exceptions import AuthenticationError
from zkcensus.signing import Ed25519Signer


@pytest.fixture
def authenticator():
    return WalletAuthenticator(debug_mode=False, allow_dev_bypass=False)


def test_signed_challenge_authenticates(authenticator, signer):
    message = authenticator.issue_challenge(signer.public_key)
    session = authenticator.authenticate(signer.public_key, signer.sign(message), "creator")

    assert session.public_key == signer.public_key
    assert session.user_type == "creator"
    assert not session.bypassed


def test_challenge_is_single_use(authenticator, signer):
    message = authenticator.issue_challenge(signer.public_key)
    signature = signer.sign(message)
    authenticator.authenticate(signer.public_key, signature)

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(signer.public_key, signature)


def test_failed_attempt_consumes_challenge(authenticator, signer):
    message = authenticator.issue_challenge(signer.public_key)

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(signer.public_key, b"\x00" * 64)
    with pytest.raises(AuthenticationError):
        authenticator.authenticate(signer.public_key, signer.sign(message))


def test_signature_from_other_wallet_rejected(authenticator, signer):
    message = authenticator.issue_challenge(signer.public_key)
    with pytest.raises(AuthenticationError):
        authenticator.authenticate(signer.public_key, Ed25519Signer.generate().sign(message))


def test_challenges_are_fresh(authenticator, signer):
    assert authenticator.issue_challenge(signer.public_key) != authenticator.issue_challenge(
        signer.public_key
    )


def test_no_pending_challenge(authenticator, signer):
    with pytest.raises(AuthenticationError):
        authenticator.authenticate(signer.public_key, b"\x00" * 64)


@pytest.mark.parametrize(
    "debug_mode,allow_dev_bypass",
    [(False, False), (False, True), (True, False)],
)
def test_dev_bypass_refused(debug_mode, allow_dev_bypass, signer):
    authenticator = WalletAuthenticator(debug_mode=debug_mode, allow_dev_bypass=allow_dev_bypass)
    assert not authenticator.bypass_enabled
    with pytest.raises(AuthenticationError):
        authenticator.dev_bypass(signer.public_key)


def test_dev_bypass_flags_session(signer):
    authenticator = WalletAuthenticator(debug_mode=True, allow_dev_bypass=True)
    session = authenticator.dev_bypass(signer.public_key)
    assert session.bypassed
