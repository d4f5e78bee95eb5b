"""Key vault for custodial private key material."""

from .cipher import AUTH_TAG_LENGTH, HEADER_LENGTH, IV_LENGTH, SALT_LENGTH, KeyVault
from .config import MIN_KDF_ITERATIONS, VaultConfig, load_vault_config
from .exceptions import AuthenticationError, ConfigurationError, MalformedInputError, VaultError

__all__ = [
    "AUTH_TAG_LENGTH",
    "HEADER_LENGTH",
    "IV_LENGTH",
    "SALT_LENGTH",
    "MIN_KDF_ITERATIONS",
    "AuthenticationError",
    "ConfigurationError",
    "KeyVault",
    "MalformedInputError",
    "VaultConfig",
    "VaultError",
    "load_vault_config",
]
