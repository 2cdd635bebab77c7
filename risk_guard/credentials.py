"""
Risk Guard - Stored Credential Decryption.

Broker access tokens are stored by the settings layer as
base64(salt[64] | iv[16] | tag[16] | ciphertext), AES-256-GCM,
with the key derived as SHA-256 of ENCRYPTION_KEY. The salt is
random padding; key derivation does not use it.
"""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.exceptions import ConfigurationError


SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
TAG_POSITION = SALT_LENGTH + IV_LENGTH
ENCRYPTED_POSITION = TAG_POSITION + TAG_LENGTH


class CredentialDecryptionError(ConfigurationError):
    """Stored credential cannot be decrypted with the configured key."""


def _derive_key(key: str) -> bytes:
    return hashlib.sha256(key.encode("utf-8")).digest()


def encrypt_credential(plaintext: str, key: str) -> str:
    """Encrypt a token in the stored format."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(key)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt_credential(encrypted: str, key: str) -> str:
    """
    Decrypt a stored token.

    Raises:
        CredentialDecryptionError: malformed payload or wrong key
    """
    try:
        data = base64.b64decode(encrypted, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CredentialDecryptionError("Stored credential is not valid base64") from e

    if len(data) < ENCRYPTED_POSITION:
        raise CredentialDecryptionError("Stored credential is truncated")

    iv = data[SALT_LENGTH:TAG_POSITION]
    tag = data[TAG_POSITION:ENCRYPTED_POSITION]
    ciphertext = data[ENCRYPTED_POSITION:]

    try:
        plaintext = AESGCM(_derive_key(key)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise CredentialDecryptionError("Stored credential failed authentication") from e

    return plaintext.decode("utf-8")


__all__ = [
    "CredentialDecryptionError",
    "encrypt_credential",
    "decrypt_credential",
]
