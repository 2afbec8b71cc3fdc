"""Unit tests for credential generation."""

import string

import pytest

from tenant_stack.services.credentials import generate_credentials


def _is_hex(value: str) -> bool:
    return all(ch in string.hexdigits for ch in value)


@pytest.mark.unit
class TestGenerateCredentials:

    def test_lengths_and_alphabet(self):
        creds = generate_credentials()

        assert len(creds.postgres_password) == 32
        assert len(creds.minio_access_key) == 32
        assert len(creds.minio_secret_key) == 64
        assert _is_hex(creds.postgres_password)
        assert _is_hex(creds.minio_access_key)
        assert _is_hex(creds.minio_secret_key)

    def test_no_collisions_across_many_generations(self):
        generated = [generate_credentials() for _ in range(10_000)]

        for attr in ("postgres_password", "minio_access_key", "minio_secret_key"):
            assert len({getattr(c, attr) for c in generated}) == len(generated)

    def test_fields_are_independent(self):
        creds = generate_credentials()

        assert creds.postgres_password != creds.minio_access_key

    def test_repr_masks_secrets(self):
        creds = generate_credentials()

        text = repr(creds)
        assert creds.postgres_password not in text
        assert creds.minio_secret_key not in text
        assert "***" in text
