"""Navigator Vault: client-side encrypted vault items behind a PIN session.

Security Note (Threat Model):
    Plaintext and derived keys exist in process memory only for the
    duration of a single encrypt/decrypt call. The PIN is never stored;
    a scrypt hash of it is kept locally and never sent to the document
    store. A memory dump taken during a call could expose that call's key.
"""
from .version import __version__
from .conf import VaultConfig
from .exceptions import (
    VaultError,
    AuthenticationFailed,
    SessionExpired,
    EncryptionError,
    DecryptionError,
    StorageError,
    ValidationError,
    ItemNotFound,
    KeyRotationError,
)
from .models import (
    VaultItem,
    VaultItemType,
    VaultMetadata,
    FileReference,
    MetadataUpdate,
    ItemUpdate,
)
from .session import VaultSession, SessionState
from .credentials import (
    CredentialStore,
    MemoryCredentialStore,
    FileCredentialStore,
    PinManager,
)
from .items import VaultItemStore
from .key_rotation import change_pin
from .vault import Vault

__all__ = (
    "__version__",
    "VaultConfig",
    "VaultError",
    "AuthenticationFailed",
    "SessionExpired",
    "EncryptionError",
    "DecryptionError",
    "StorageError",
    "ValidationError",
    "ItemNotFound",
    "KeyRotationError",
    "VaultItem",
    "VaultItemType",
    "VaultMetadata",
    "FileReference",
    "MetadataUpdate",
    "ItemUpdate",
    "VaultSession",
    "SessionState",
    "CredentialStore",
    "MemoryCredentialStore",
    "FileCredentialStore",
    "PinManager",
    "VaultItemStore",
    "change_pin",
    "Vault",
)
