"""VaultSession.

Time-boxed unlock state for one vault client. The session carries no key
material; it only decides whether vault operations may run without
challenging the user for the PIN again.
"""
import time
import logging
from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from collections.abc import Callable
from .exceptions import SessionExpired
from .conf import DEFAULT_SESSION_TTL

logger = logging.getLogger("navigator.vault")


class SessionState(str, Enum):
    NO_CREDENTIAL = 'no_credential'
    LOCKED = 'locked'
    UNLOCKED = 'unlocked'


class VaultSession:
    """Sliding-expiration vault session.

    Expiry is re-evaluated on every check; an expired session is cleared
    the first time it is observed. Sessions are never persisted, so a
    process restart always starts Locked.
    """

    def __init__(
        self,
        ttl: int = DEFAULT_SESSION_TTL,
        clock: Optional[Callable[[], float]] = None
    ) -> None:
        if ttl <= 0:
            raise ValueError("Session ttl must be a positive number of seconds")
        self._ttl = ttl
        self._clock = clock or time.time
        self._expires_at: Optional[float] = None
        self._started_at: Optional[float] = None

    def __repr__(self) -> str:
        return (
            f'<Vault-Session [unlocked:{self.is_valid}, '
            f'expires_at:{self._expires_at}]>'
        )

    # --- Properties ---

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def expires_at(self) -> Optional[float]:
        """Absolute expiry timestamp, None while locked."""
        return self._expires_at if self.is_valid else None

    @property
    def expires_at_datetime(self) -> Optional[datetime]:
        expires = self.expires_at
        if expires is None:
            return None
        return datetime.fromtimestamp(expires, tz=timezone.utc)

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at if self.is_valid else None

    @property
    def is_valid(self) -> bool:
        if self._expires_at is None:
            return False
        if self._clock() >= self._expires_at:
            logger.info("Vault session expired")
            self._clear()
            return False
        return True

    @property
    def unlocked(self) -> bool:
        return self.is_valid

    @property
    def remaining(self) -> float:
        """Seconds left before expiry, 0 while locked."""
        if not self.is_valid:
            return 0.0
        return max(0.0, self._expires_at - self._clock())

    # --- Lifecycle ---

    def _clear(self) -> None:
        self._expires_at = None
        self._started_at = None

    def start(self) -> None:
        """Unlock the session for a full ttl."""
        now = self._clock()
        self._started_at = now
        self._expires_at = now + self._ttl

    def extend(self) -> None:
        """Push expiry forward, only while the session is still valid."""
        if self.is_valid:
            self._expires_at = self._clock() + self._ttl

    def lock(self) -> None:
        """Explicitly lock the vault."""
        if self._expires_at is not None:
            logger.info("Vault session locked")
        self._clear()

    def ensure_valid(self) -> None:
        """Raise SessionExpired unless the session is unlocked."""
        if not self.is_valid:
            raise SessionExpired()

    def state(self, has_credential: bool) -> SessionState:
        if not has_credential:
            return SessionState.NO_CREDENTIAL
        if self.is_valid:
            return SessionState.UNLOCKED
        return SessionState.LOCKED
