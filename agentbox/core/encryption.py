"""Encryption of connector secrets at rest."""

import json

from cryptography.fernet import Fernet


def _fernet(key: str | None) -> Fernet:
    if not key:
        raise ValueError("Encryption key is required")
    return Fernet(key.encode())


def encrypt_data(data: str, key: str | None) -> str:
    """Encrypt data using Fernet symmetric encryption.

    Args:
        data: The plaintext string to encrypt
        key: Base64-encoded 32-byte encryption key

    Returns:
        Base64-encoded encrypted string

    Raises:
        ValueError: If the key is missing or invalid
    """
    return _fernet(key).encrypt(data.encode()).decode()


def decrypt_data(encrypted_data: str, key: str | None) -> str:
    """Decrypt data using Fernet symmetric encryption.

    Raises:
        ValueError: If the key is missing or invalid
        cryptography.fernet.InvalidToken: If decryption fails
    """
    return _fernet(key).decrypt(encrypted_data.encode()).decode()


def encrypt_json(value: dict[str, str], key: str | None) -> str:
    """Serialize a mapping to JSON and encrypt it."""
    return encrypt_data(json.dumps(value), key)


def decrypt_json(encrypted_data: str, key: str | None) -> dict[str, str]:
    """Decrypt a value produced by encrypt_json."""
    value = json.loads(decrypt_data(encrypted_data, key))
    if not isinstance(value, dict):
        raise ValueError("Encrypted payload is not a JSON object")
    return value
