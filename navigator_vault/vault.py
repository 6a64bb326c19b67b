"""
One client's PIN gate, session and item store wired together.
"""
import logging
from typing import Optional

from .conf import VaultConfig
from .credentials import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    PinManager,
)
from .items import VaultItemStore
from .key_rotation import change_pin
from .session import SessionState, VaultSession
from .storages.abstract import DocumentStore

logger = logging.getLogger("navigator.vault")


class Vault:
    """Client-side vault.

    The session is owned by this instance; two vaults never share
    unlock state.
    """

    def __init__(
        self,
        store: DocumentStore,
        credentials: CredentialStore,
        config: Optional[VaultConfig] = None,
        session: Optional[VaultSession] = None,
    ):
        self.config = config or VaultConfig()
        self.session = session or VaultSession(ttl=self.config.session_ttl)
        self.pins = PinManager(credentials, self.session, self.config)
        self.items = VaultItemStore(store, self.session, self.config)

    @property
    def state(self) -> SessionState:
        return self.pins.state

    def setup_pin(self, pin: str) -> None:
        self.pins.setup(pin)

    def unlock(self, pin: str) -> None:
        self.pins.unlock(pin)

    def lock(self) -> None:
        self.pins.lock()

    async def change_pin(self, owner_id: str, old_pin: str, new_pin: str) -> dict:
        return await change_pin(self.items, self.pins, owner_id, old_pin, new_pin)

    @classmethod
    def from_config(
        cls,
        store: DocumentStore,
        config: Optional[VaultConfig] = None,
    ) -> "Vault":
        """Build a vault from configuration.

        The PIN hash is kept in ``config.credential_path`` when set,
        otherwise in memory for the life of the process.
        """
        config = config or VaultConfig.from_env()
        if config.credential_path:
            credentials = FileCredentialStore(config.credential_path)
        else:
            logger.warning(
                "No VAULT_CREDENTIAL_PATH configured; the PIN credential "
                "will not survive a restart"
            )
            credentials = MemoryCredentialStore()
        return cls(store, credentials, config=config)
