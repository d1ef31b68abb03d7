import json
import threading

import numpy as np
import pytest

from zkcensus import config
from zkcensus.data_models import NullifierSecret
from zkcensus.exceptions import ConfigurationError, NullifierError, SecretStoreError
from zkcensus.nullifier import (
    FileSecretStore,
    InMemorySecretStore,
    NullifierDeriver,
    SecretStore,
    derive_nullifier,
)

# Argon2 parameters small enough for unit tests
FAST_KDF = {"time_cost": 1, "memory_cost": 8, "parallelism": 1}


def as_bits(values):
    """One row of bits per 32-byte value."""
    matrix = np.frombuffer(b"".join(values), dtype=np.uint8).reshape(len(values), -1)
    return np.unpackbits(matrix, axis=1)


@pytest.fixture
def secret() -> NullifierSecret:
    return NullifierSecret(bytes(range(32)))


class TestDeriveNullifier:
    def test_same_identity_same_census_is_stable(self, secret):
        assert derive_nullifier(secret, "census-a") == derive_nullifier(secret, "census-a")

    def test_different_censuses_are_unlinkable(self, secret):
        assert derive_nullifier(secret, "census-a") != derive_nullifier(secret, "census-b")

    def test_nullifiers_look_independent_across_censuses(self, secret):
        census_ids = [f"census-{index:04d}" for index in range(256)]
        other = NullifierSecret(bytes(range(32, 64)))

        first = [derive_nullifier(secret, census_id) for census_id in census_ids]
        second = [derive_nullifier(other, census_id) for census_id in census_ids]
        bits = as_bits(first)
        other_bits = as_bits(second)

        # Pairwise Hamming distances between one identity's nullifiers
        distances = (bits[:, None, :] != bits[None, :, :]).sum(axis=2)
        pairs = distances[np.triu_indices(256, k=1)]
        assert 120 <= pairs.mean() <= 136
        assert pairs.min() >= 64

        # Same census, different identities
        across = (bits != other_bits).sum(axis=1)
        assert 120 <= across.mean() <= 136

        for matrix in (bits, other_bits):
            ones_rate = matrix.mean(axis=0)
            assert ones_rate.min() > 0.3
            assert ones_rate.max() < 0.7

        assert len({value[:4] for value in first + second}) == 512

        windows = {secret.value[i:i + 8] for i in range(len(secret.value) - 7)}
        for value in first:
            assert not any(window in value for window in windows)

    def test_different_identities_differ(self, secret):
        other = NullifierSecret(bytes(32))
        assert derive_nullifier(secret, "census-a") != derive_nullifier(other, "census-a")

    def test_output_is_32_bytes(self, secret):
        assert len(derive_nullifier(secret, "census-a")) == 32

    def test_empty_census_id_rejected(self, secret):
        with pytest.raises(NullifierError):
            derive_nullifier(secret, "")


class TestNullifierSecret:
    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            NullifierSecret(b"short")

    def test_wrong_type_rejected(self):
        with pytest.raises(TypeError):
            NullifierSecret("0" * 32)

    def test_zeroize(self, secret):
        secret.zeroize()
        assert secret.value == bytes(32)

    def test_repr_is_redacted(self, secret):
        assert "redacted" in repr(secret)
        assert bytes(range(32)).hex() not in repr(secret)


class TestInMemorySecretStore:
    def test_created_once(self):
        store = InMemorySecretStore()
        assert not store.has_secret
        first = store.get_or_create_secret()
        second = store.get_or_create_secret()
        assert first == second
        assert store.has_secret

    def test_satisfies_protocol(self):
        assert isinstance(InMemorySecretStore(), SecretStore)

    def test_concurrent_callers_observe_same_secret(self):
        store = InMemorySecretStore()
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(store.get_or_create_secret().value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(results)) == 1

    def test_zeroizing_a_copy_keeps_the_store_intact(self):
        store = InMemorySecretStore(initial_secret=b"\x01" * 32)
        store.get_or_create_secret().zeroize()
        assert store.get_or_create_secret().value == b"\x01" * 32


class TestFileSecretStore:
    def test_passphrase_required(self, tmp_path):
        with pytest.raises(ConfigurationError):
            FileSecretStore(tmp_path / "secret", "")

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "nullifier.secret"
        first = FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret()
        second = FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret()
        assert first == second

    def test_secret_is_encrypted_at_rest(self, tmp_path):
        path = tmp_path / "nullifier.secret"
        secret = FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret()

        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["kdf"]["algorithm"] == "argon2id"
        assert secret.value.hex() not in path.read_text(encoding="utf-8")

    def test_wrong_passphrase_never_regenerates(self, tmp_path):
        path = tmp_path / "nullifier.secret"
        FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret()
        original = path.read_bytes()

        with pytest.raises(SecretStoreError):
            FileSecretStore(path, "other", **FAST_KDF).get_or_create_secret()

        assert path.read_bytes() == original

    def test_corrupted_file_raises(self, tmp_path):
        path = tmp_path / "nullifier.secret"
        path.write_text("not json", encoding="utf-8")

        with pytest.raises(SecretStoreError):
            FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret()

    def test_no_temporary_files_left_behind(self, tmp_path):
        path = tmp_path / "nullifier.secret"
        FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret()
        assert [p.name for p in tmp_path.iterdir()] == ["nullifier.secret"]

    def test_from_config(self, tmp_path, monkeypatch):
        path = tmp_path / "configured.secret"
        monkeypatch.setattr(config, "SECRET_STORE_PATH", path)
        monkeypatch.setattr(config, "SECRET_STORE_PASSPHRASE", "passphrase")

        store = FileSecretStore.from_config(**FAST_KDF)
        secret = store.get_or_create_secret()

        assert store.path == path
        assert FileSecretStore(path, "passphrase", **FAST_KDF).get_or_create_secret() == secret

    def test_from_config_without_passphrase(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "SECRET_STORE_PATH", tmp_path / "configured.secret")
        monkeypatch.setattr(config, "SECRET_STORE_PASSPHRASE", None)

        with pytest.raises(ConfigurationError) as exc_info:
            FileSecretStore.from_config()
        assert exc_info.value.context["config_key"] == "SECRET_STORE_PASSPHRASE"


class TestNullifierDeriver:
    def test_derive_is_stable_per_census(self):
        deriver = NullifierDeriver(InMemorySecretStore())
        assert deriver.derive("census-1") == deriver.derive("census-1")
        assert deriver.derive("census-1") != deriver.derive("census-2")

    def test_matches_derive_nullifier(self):
        store = InMemorySecretStore(initial_secret=b"\x07" * 32)
        deriver = NullifierDeriver(store)
        expected = derive_nullifier(NullifierSecret(b"\x07" * 32), "census-1")
        assert deriver.derive("census-1") == expected
