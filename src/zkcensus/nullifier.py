"""
Nullifier derivation and secret storage for the zkcensus system.

A nullifier hash is a public tag derived from the device's private nullifier
secret and a census id. The same identity always derives the same tag for the
same census, which lets the ledger reject duplicate registrations, while tags
for different censuses cannot be linked to each other or to the identity.

The secret is generated exactly once per device and then reused forever.
Generating a second secret would let one identity register twice, so stores
refuse to regenerate a secret that exists but cannot be read.
"""

import contextlib
import hashlib
import hmac
import json
import os
import secrets
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

import structlog
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from . import config
from .constants import (
    AES_GCM_NONCE_LENGTH,
    ARGON2_KEY_LENGTH,
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_SALT_LENGTH,
    ARGON2_TIME_COST,
    NULLIFIER_DOMAIN_TAG,
    NULLIFIER_SECRET_LENGTH,
    SECRET_STORE_FORMAT_VERSION,
)
from .data_models import NullifierSecret
from .exceptions import ConfigurationError, NullifierError, SecretStoreError
from .utils import truncate_hex

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Associated data binding ciphertexts to their purpose
_SECRET_AAD = b"zkcensus/nullifier-secret"


def derive_nullifier(secret: NullifierSecret, census_id: str) -> bytes:
    """
    Derive the nullifier hash of ``secret`` for ``census_id``.

    ``HMAC-SHA256(key=secret, msg=tag || u32be(len(id)) || id)``. The census
    id is length-prefixed so that no two ids share an encoding.

    Parameters
    ----------
    secret : NullifierSecret
        Device nullifier secret.
    census_id : str
        Census the tag is derived for.

    Returns
    -------
    bytes
        32-byte nullifier hash.

    Raises
    ------
    NullifierError
        If the census id is empty.
    """
    if not isinstance(census_id, str) or not census_id:
        raise NullifierError("census_id must be a non-empty string")

    census_bytes = census_id.encode("utf-8")
    message = NULLIFIER_DOMAIN_TAG + len(census_bytes).to_bytes(4, "big") + census_bytes
    return hmac.new(secret.value, message, hashlib.sha256).digest()


@runtime_checkable
class SecretStore(Protocol):
    """Secure local store holding the device nullifier secret.

    ``get_or_create_secret`` is a single atomic operation: concurrent callers
    always observe the same secret.
    """

    def get_or_create_secret(self) -> NullifierSecret:
        ...


class InMemorySecretStore:
    """
    Process-local secret store.

    Parameters
    ----------
    initial_secret : bytes, optional
        Pre-existing secret to serve instead of generating one.
    """

    def __init__(self, initial_secret: Optional[bytes] = None) -> None:
        self._lock = threading.Lock()
        self._value: Optional[bytes] = None
        if initial_secret is not None:
            self._value = NullifierSecret(initial_secret).value

    def get_or_create_secret(self) -> NullifierSecret:
        with self._lock:
            if self._value is None:
                self._value = secrets.token_bytes(NULLIFIER_SECRET_LENGTH)
                logger.info("Nullifier secret generated", store="memory")
            return NullifierSecret(self._value)

    @property
    def has_secret(self) -> bool:
        with self._lock:
            return self._value is not None


class FileSecretStore:
    """
    File-backed secret store encrypted at rest.

    The secret is sealed with AES-GCM under a key derived from a passphrase
    with Argon2id. Read-or-create is serialized inside the process by a lock
    and across processes by publishing the file with ``os.link``, which fails
    if another writer got there first.

    Parameters
    ----------
    path : Path or str
        Location of the sealed secret.
    passphrase : str or bytes
        Passphrase the sealing key is derived from.
    time_cost : int, default=ARGON2_TIME_COST
        Argon2 iterations for newly sealed secrets.
    memory_cost : int, default=ARGON2_MEMORY_COST
        Argon2 memory in KiB for newly sealed secrets.
    parallelism : int, default=ARGON2_PARALLELISM
        Argon2 lanes for newly sealed secrets.

    Examples
    --------
    >>> store = FileSecretStore(Path("~/.zkcensus/nullifier.secret"), "passphrase")
    >>> secret = store.get_or_create_secret()
    """

    def __init__(
        self,
        path: Union[Path, str],
        passphrase: Union[str, bytes],
        time_cost: int = ARGON2_TIME_COST,
        memory_cost: int = ARGON2_MEMORY_COST,
        parallelism: int = ARGON2_PARALLELISM,
    ) -> None:
        if not passphrase:
            raise ConfigurationError(
                "A passphrase is required for the file secret store",
                config_key="SECRET_STORE_PASSPHRASE",
            )

        self.path = Path(path)
        self._passphrase = (
            passphrase.encode("utf-8") if isinstance(passphrase, str) else passphrase
        )
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self._lock = threading.Lock()

        logger.info(
            "FileSecretStore initialized",
            path=str(self.path),
            time_cost=time_cost,
            memory_cost=memory_cost,
        )

    @classmethod
    def from_config(cls, **kdf_options: int) -> "FileSecretStore":
        """
        Build the store from ``SECRET_STORE_PATH`` and ``SECRET_STORE_PASSPHRASE``.

        Raises
        ------
        ConfigurationError
            If no passphrase is configured.
        """
        return cls(
            config.SECRET_STORE_PATH,
            config.SECRET_STORE_PASSPHRASE or "",
            **kdf_options,
        )

    @property
    def has_secret(self) -> bool:
        return self.path.exists()

    def get_or_create_secret(self) -> NullifierSecret:
        with self._lock:
            if self.path.exists():
                return NullifierSecret(self._read())
            return self._create()

    def _derive_key(
        self, salt: bytes, time_cost: int, memory_cost: int, parallelism: int
    ) -> bytes:
        return hash_secret_raw(
            secret=self._passphrase,
            salt=salt,
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=ARGON2_KEY_LENGTH,
            type=Type.ID,
        )

    def _seal(self, value: bytes) -> Dict[str, Any]:
        salt = secrets.token_bytes(ARGON2_SALT_LENGTH)
        nonce = secrets.token_bytes(AES_GCM_NONCE_LENGTH)
        key = self._derive_key(salt, self.time_cost, self.memory_cost, self.parallelism)
        ciphertext = AESGCM(key).encrypt(nonce, value, _SECRET_AAD)

        return {
            "version": SECRET_STORE_FORMAT_VERSION,
            "kdf": {
                "algorithm": "argon2id",
                "salt": salt.hex(),
                "time_cost": self.time_cost,
                "memory_cost": self.memory_cost,
                "parallelism": self.parallelism,
            },
            "cipher": "aes-256-gcm",
            "nonce": nonce.hex(),
            "ciphertext": ciphertext.hex(),
        }

    def _read(self) -> bytes:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if payload.get("version") != SECRET_STORE_FORMAT_VERSION:
                raise SecretStoreError(
                    f"Unsupported secret store version: {payload.get('version')}",
                    store_path=str(self.path),
                )
            kdf = payload["kdf"]
            key = self._derive_key(
                bytes.fromhex(kdf["salt"]),
                int(kdf["time_cost"]),
                int(kdf["memory_cost"]),
                int(kdf["parallelism"]),
            )
            value = AESGCM(key).decrypt(
                bytes.fromhex(payload["nonce"]),
                bytes.fromhex(payload["ciphertext"]),
                _SECRET_AAD,
            )
        except SecretStoreError:
            raise
        except InvalidTag:
            raise SecretStoreError(
                "Nullifier secret cannot be decrypted; refusing to generate a new one",
                store_path=str(self.path),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise SecretStoreError(
                f"Nullifier secret store is unreadable: {e}", store_path=str(self.path)
            ) from e

        if len(value) != NULLIFIER_SECRET_LENGTH:
            raise SecretStoreError(
                "Stored nullifier secret has an unexpected length",
                store_path=str(self.path),
            )
        return value

    def _create(self) -> NullifierSecret:
        value = secrets.token_bytes(NULLIFIER_SECRET_LENGTH)
        payload = self._seal(value)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".nullifier-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())

            try:
                os.link(tmp_name, self.path)
            except FileExistsError:
                logger.info(
                    "Nullifier secret created concurrently; reusing stored secret",
                    path=str(self.path),
                )
                return NullifierSecret(self._read())
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)

        logger.info("Nullifier secret generated", store="file", path=str(self.path))
        return NullifierSecret(value)


class NullifierDeriver:
    """
    Derives per-census nullifier hashes from the device secret.

    Parameters
    ----------
    secret_store : SecretStore
        Store serving the device nullifier secret.

    Examples
    --------
    >>> deriver = NullifierDeriver(InMemorySecretStore())
    >>> deriver.derive("census-1") == deriver.derive("census-1")
    True
    """

    def __init__(self, secret_store: SecretStore) -> None:
        self.secret_store = secret_store

    def load_secret(self) -> NullifierSecret:
        """Return the device secret, creating it on first use."""
        return self.secret_store.get_or_create_secret()

    def derive(self, census_id: str) -> bytes:
        secret = self.load_secret()
        try:
            nullifier_hash = derive_nullifier(secret, census_id)
        finally:
            secret.zeroize()

        logger.debug(
            "Nullifier hash derived",
            census_id=census_id,
            nullifier_prefix=truncate_hex(nullifier_hash),
        )
        return nullifier_hash
