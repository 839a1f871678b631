"""Tests for connector secret encryption."""

import pytest
from cryptography.fernet import Fernet, InvalidToken

from agentbox.core.encryption import decrypt_data, decrypt_json, encrypt_data, encrypt_json


@pytest.fixture
def fernet_key():
    """Generate a valid encryption key for testing."""
    return Fernet.generate_key().decode()


def test_encrypt_decrypt_client_secret(fernet_key):
    """Test that an OAuth client secret survives encryption."""
    secret = "oauth-client-secret-value"

    encrypted = encrypt_data(secret, fernet_key)

    assert encrypted != secret
    assert decrypt_data(encrypted, fernet_key) == secret


def test_encrypt_json_env_mapping(fernet_key):
    """Test that a connector env map is stored as one encrypted JSON blob."""
    env = {"API_TOKEN": "abc123", "REGION": "eu-west-1"}

    encrypted = encrypt_json(env, fernet_key)

    assert "abc123" not in encrypted
    assert decrypt_json(encrypted, fernet_key) == env


def test_decrypt_json_rejects_non_object(fernet_key):
    """Test that a JSON payload other than an object is rejected."""
    encrypted = encrypt_data('["not", "a", "mapping"]', fernet_key)

    with pytest.raises(ValueError, match="not a JSON object"):
        decrypt_json(encrypted, fernet_key)


@pytest.mark.parametrize("key", ["", None])
def test_missing_key(key):
    """Test that a missing key raises ValueError both ways."""
    with pytest.raises(ValueError, match="Encryption key is required"):
        encrypt_data("some data", key)
    with pytest.raises(ValueError, match="Encryption key is required"):
        decrypt_data("some data", key)


def test_invalid_key_format():
    """Test that a malformed Fernet key is rejected."""
    with pytest.raises(ValueError):
        encrypt_data("some data", "not-a-valid-fernet-key")


def test_decrypt_with_wrong_key(fernet_key):
    """Test decryption with a different key raises InvalidToken."""
    encrypted = encrypt_data("my-secret-data", fernet_key)

    with pytest.raises(InvalidToken):
        decrypt_data(encrypted, Fernet.generate_key().decode())


def test_decrypt_corrupted_data(fernet_key):
    """Test decryption of corrupted data raises InvalidToken."""
    with pytest.raises(InvalidToken):
        decrypt_data("this-is-not-encrypted-data", fernet_key)


def test_encrypt_unicode(fernet_key):
    """Test encryption of unicode data."""
    plaintext = "unicode-data-日本語-🔐"

    assert decrypt_data(encrypt_data(plaintext, fernet_key), fernet_key) == plaintext
