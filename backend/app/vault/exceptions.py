"""Errors raised by the key vault."""
from __future__ import annotations


class VaultError(Exception):
    """Base class for key vault failures."""


class ConfigurationError(VaultError):
    """The master secret is missing or the vault settings are unusable.

    Raised while the process is starting up. It is never retried and never
    replaced by a default key.
    """


class MalformedInputError(VaultError):
    """The encoded secret is not structurally valid."""


class AuthenticationError(VaultError):
    """The authentication tag did not verify.

    Either the blob was tampered with or the master secret is wrong. The
    message never includes key material, plaintext or the encoded blob.
    """
