"""
PIN credential storage and verification.

The PIN hash stays on the device; it is never written to the document
store. Confidentiality is rooted in the device holding the PIN plus the
remote ciphertext, not in a server-held secret.

Security Note:
    Never log the PIN or its hash.
"""
import os
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from datetime import datetime, timezone

import orjson

from .conf import VaultConfig
from .crypto import hash_pin, verify_pin_hash
from .exceptions import AuthenticationFailed, ValidationError
from .session import SessionState, VaultSession

logger = logging.getLogger("navigator.vault")


# ---------------------------------------------------------------------------
# Credential stores
# ---------------------------------------------------------------------------

class CredentialStore(ABC):
    """Local persistence for the encoded PIN hash."""

    @abstractmethod
    def load(self) -> Optional[str]:
        """Return the stored PIN hash, or None."""

    @abstractmethod
    def save(self, pin_hash: str) -> None:
        """Persist the PIN hash, replacing any previous one."""

    @abstractmethod
    def clear(self) -> None:
        """Forget the stored PIN hash."""


class MemoryCredentialStore(CredentialStore):
    """Credential kept in process memory only."""

    def __init__(self, pin_hash: Optional[str] = None):
        self._pin_hash = pin_hash

    def load(self) -> Optional[str]:
        return self._pin_hash

    def save(self, pin_hash: str) -> None:
        self._pin_hash = pin_hash

    def clear(self) -> None:
        self._pin_hash = None


class FileCredentialStore(CredentialStore):
    """Credential kept in a local JSON file readable only by its owner."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = orjson.loads(self.path.read_bytes())
        except orjson.JSONDecodeError:
            logger.error("Vault credential file %s is corrupted", self.path)
            raise
        return data.get("pin_hash")

    def save(self, pin_hash: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = orjson.dumps({
            "pin_hash": pin_hash,
            "updated_at": datetime.now(timezone.utc),
        })
        tmp = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# PIN manager
# ---------------------------------------------------------------------------

class PinManager:
    """Sets up, verifies and replaces the vault PIN.

    Successful setup and unlock start the session; the PIN itself is
    never kept.
    """

    def __init__(
        self,
        store: CredentialStore,
        session: VaultSession,
        config: Optional[VaultConfig] = None,
    ):
        self._store = store
        self._session = session
        self._config = config or VaultConfig()

    @property
    def session(self) -> VaultSession:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state(self.has_credential())

    def has_credential(self) -> bool:
        return self._store.load() is not None

    def validate_pin(self, pin: str) -> None:
        """Check PIN shape before hashing.

        Raises:
            ValidationError: If the PIN is not all digits or its length
                is outside the configured range.
        """
        low, high = self._config.pin_min_length, self._config.pin_max_length
        if not isinstance(pin, str) or not pin:
            raise ValidationError("PIN is required")
        if not (pin.isascii() and pin.isdigit()):
            raise ValidationError("PIN must contain only numbers")
        if not low <= len(pin) <= high:
            raise ValidationError(f"PIN must be {low} to {high} digits long")

    def setup(self, pin: str) -> None:
        """Create the PIN credential and unlock the vault."""
        if self.has_credential():
            raise ValidationError(
                "A vault PIN is already set up; unlock or change it instead"
            )
        self.validate_pin(pin)
        self._store.save(hash_pin(pin))
        self._session.start()
        logger.info("Vault PIN set up")

    def verify(self, pin: str) -> bool:
        """Compare a PIN with the stored hash in constant time."""
        stored = self._store.load()
        if stored is None or not isinstance(pin, str):
            return False
        return verify_pin_hash(pin, stored)

    def unlock(self, pin: str) -> None:
        """Start a session when the PIN matches.

        Raises:
            AuthenticationFailed: On a mismatch or when no PIN exists.
        """
        if not self.verify(pin):
            logger.warning("Vault unlock failed: incorrect PIN")
            raise AuthenticationFailed()
        self._session.start()
        logger.info("Vault unlocked")

    def lock(self) -> None:
        self._session.lock()

    def replace(self, new_pin: str) -> None:
        """Store a new PIN hash. Items must already be re-encrypted."""
        self.validate_pin(new_pin)
        self._store.save(hash_pin(new_pin))
        logger.info("Vault PIN replaced")

    def reset(self) -> None:
        """Forget the PIN credential and lock the vault."""
        self._store.clear()
        self._session.lock()
        logger.info("Vault PIN credential cleared")
