"""Vault exceptions.

Cryptographic and session errors are kept apart from storage errors so
callers can tell "wrong PIN" from "the network failed".
"""


class VaultError(Exception):
    """Base exception for vault operations."""

    def __init__(self, message: str = "Vault operation failed."):
        super().__init__(message)


class AuthenticationFailed(VaultError):
    """Raised when a PIN does not match the stored credential."""

    def __init__(self, message: str = "Incorrect PIN. Please try again."):
        super().__init__(message)


class SessionExpired(VaultError):
    """Raised when an operation is attempted outside an active session."""

    def __init__(
        self,
        message: str = "Vault session expired. Please authenticate again."
    ):
        super().__init__(message)


class EncryptionError(VaultError):
    """Raised when the underlying cipher fails to encrypt."""

    def __init__(self, message: str = "Failed to encrypt vault content."):
        super().__init__(message)


class DecryptionError(VaultError):
    """Raised when ciphertext cannot be authenticated or decoded."""

    def __init__(
        self,
        message: str = (
            "Unable to decrypt vault content. "
            "Check your PIN and unlock the vault again."
        )
    ):
        super().__init__(message)


class StorageError(VaultError):
    """Raised when the document store fails."""

    def __init__(self, message: str = "Vault storage failure."):
        super().__init__(message)


class ValidationError(VaultError, ValueError):
    """Raised on malformed PINs or missing item fields."""

    def __init__(self, message: str = "Invalid vault input."):
        super().__init__(message)


class ItemNotFound(VaultError):
    """Raised when a vault item does not exist for the owner."""

    def __init__(self, item_id: str = ""):
        message = (
            f"Vault item not found: {item_id}" if item_id
            else "Vault item not found."
        )
        super().__init__(message)
        self.item_id = item_id


class KeyRotationError(VaultError):
    """Raised when a PIN change could not re-encrypt every item."""

    def __init__(self, stats: dict, message: str = ""):
        super().__init__(
            message or f"PIN change incomplete, old PIN kept: {stats}"
        )
        self.stats = stats
