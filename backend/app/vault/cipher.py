"""Authenticated encryption of private keys at rest."""
from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import VaultConfig, load_vault_config
from .exceptions import AuthenticationError, MalformedInputError

logger = logging.getLogger("vault")

SALT_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + AUTH_TAG_LENGTH


class KeyVault:
    """Encrypts private keys with a key derived per record from the master secret.

    The encoded form is ``base64(salt || iv || auth_tag || ciphertext)``. AES-GCM
    is used with a 16 byte nonce and a 16 byte tag, and keys come from
    PBKDF2-HMAC-SHA256. Any service holding the same master secret and
    iteration count can read the stored blobs.
    """

    def __init__(self, config: VaultConfig) -> None:
        config.validate()
        self._secret = config.master_secret.encode("utf-8")
        self._iterations = config.kdf_iterations

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "KeyVault":
        return cls(load_vault_config(env))

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` and return the transportable encoded secret."""

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = self._derive_key(salt)

        # AESGCM appends the tag to the ciphertext; the wire format stores it first.
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, auth_tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]

        combined = salt + iv + auth_tag + ciphertext
        return base64.b64encode(combined).decode("ascii")

    def decrypt(self, encoded: str) -> str:
        """Decrypt an encoded secret, failing closed on any integrity error."""

        try:
            combined = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedInputError("Encoded secret is not valid base64") from exc

        if len(combined) < HEADER_LENGTH:
            raise MalformedInputError(
                f"Encoded secret is {len(combined)} bytes, expected at least {HEADER_LENGTH}"
            )

        salt = combined[:SALT_LENGTH]
        iv = combined[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        auth_tag = combined[SALT_LENGTH + IV_LENGTH:HEADER_LENGTH]
        ciphertext = combined[HEADER_LENGTH:]

        key = self._derive_key(salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
        except InvalidTag as exc:
            logger.warning("Encrypted secret failed authentication; possible tampering or wrong master secret")
            raise AuthenticationError("Encrypted secret failed authentication") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedInputError("Decrypted secret is not valid UTF-8") from exc


__all__ = [
    "AUTH_TAG_LENGTH",
    "HEADER_LENGTH",
    "IV_LENGTH",
    "KeyVault",
    "SALT_LENGTH",
]
