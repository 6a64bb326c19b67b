"""
Vault configuration, validated and loaded from the environment.

Reads settings from environment variables:
    VAULT_SESSION_TTL = <seconds an unlocked session stays valid>
    VAULT_PBKDF2_ITERATIONS = <key derivation work factor>
    VAULT_CIPHER_BACKEND = aesgcm | chacha20
    VAULT_PIN_MIN_LENGTH / VAULT_PIN_MAX_LENGTH = <digits>
    VAULT_CREDENTIAL_PATH = <local file holding the PIN hash>
    VAULT_COLLECTION = <collection template, must contain {owner_id}>

Security Note:
    Never log PINs or key material. Only log owner and item ids.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("navigator.vault")

DEFAULT_SESSION_TTL = 15 * 60
DEFAULT_PBKDF2_ITERATIONS = 600_000
DEFAULT_COLLECTION = "vault/{owner_id}/items"


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    session_ttl: int = Field(default=DEFAULT_SESSION_TTL, ge=1)
    pbkdf2_iterations: int = Field(default=DEFAULT_PBKDF2_ITERATIONS, ge=1000)
    cipher_backend: str = Field(default="aesgcm")
    pin_min_length: int = Field(default=4, ge=1)
    pin_max_length: int = Field(default=8, ge=1)
    credential_path: Optional[str] = None
    collection_template: str = Field(default=DEFAULT_COLLECTION)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("collection_template")
    @classmethod
    def validate_collection(cls, v: str) -> str:
        if "{owner_id}" not in v:
            raise ValueError(
                "collection_template must contain an {owner_id} placeholder"
            )
        return v

    @model_validator(mode="after")
    def validate_pin_range(self) -> "VaultConfig":
        """Ensure the PIN length range is not empty."""
        if self.pin_min_length > self.pin_max_length:
            raise ValueError(
                f"pin_min_length ({self.pin_min_length}) cannot exceed "
                f"pin_max_length ({self.pin_max_length})"
            )
        return self

    def collection_for(self, owner_id: str) -> str:
        """Return the collection path holding an owner's items."""
        return self.collection_template.format(owner_id=owner_id)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables fall back to the field defaults.

        Returns:
            Populated VaultConfig instance.
        """
        env_map = {
            "session_ttl": "VAULT_SESSION_TTL",
            "pbkdf2_iterations": "VAULT_PBKDF2_ITERATIONS",
            "cipher_backend": "VAULT_CIPHER_BACKEND",
            "pin_min_length": "VAULT_PIN_MIN_LENGTH",
            "pin_max_length": "VAULT_PIN_MAX_LENGTH",
            "credential_path": "VAULT_CREDENTIAL_PATH",
            "collection_template": "VAULT_COLLECTION",
        }
        values = {
            field: os.environ[name]
            for field, name in env_map.items()
            if name in os.environ
        }
        config = cls(**values)
        logger.debug(
            "Vault config loaded: cipher=%s session_ttl=%ds",
            config.cipher_backend, config.session_ttl,
        )
        return config
