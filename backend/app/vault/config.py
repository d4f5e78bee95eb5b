"""Key vault configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional
import os

from .exceptions import ConfigurationError

MIN_KDF_ITERATIONS = 100_000


@dataclass(frozen=True)
class VaultConfig:
    """Configuration for encrypting custodial private keys."""

    master_secret: str = field(repr=False)
    kdf_iterations: int = MIN_KDF_ITERATIONS

    def validate(self) -> None:
        if not self.master_secret:
            raise ConfigurationError("BETTER_AUTH_SECRET or ENCRYPTION_SECRET must be set for key encryption")
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ConfigurationError(
                f"VAULT_KDF_ITERATIONS must be at least {MIN_KDF_ITERATIONS}, got {self.kdf_iterations}"
            )


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected integer value, got {value!r}") from exc


def load_vault_config(env: Optional[Mapping[str, str]] = None) -> VaultConfig:
    """Load and validate :class:`VaultConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    # Used verbatim: whitespace is part of the PBKDF2 input.
    master_secret = env_mapping.get("BETTER_AUTH_SECRET") or env_mapping.get("ENCRYPTION_SECRET") or ""
    kdf_iterations = _to_int(env_mapping.get("VAULT_KDF_ITERATIONS"), default=MIN_KDF_ITERATIONS)

    config = VaultConfig(master_secret=master_secret, kdf_iterations=kdf_iterations)
    config.validate()
    return config
