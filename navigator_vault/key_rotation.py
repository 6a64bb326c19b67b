"""
Vault Key Rotation — Re-encryption of every item when the PIN changes.

Each item key is derived from the PIN, so a new PIN means re-encrypting
all items. Every item is decrypted before any is rewritten, so an item
that opens with neither PIN aborts the change with the vault untouched.
Rotated items get a fresh salt and a fresh iv. The operation is
resumable: items that already open with the new PIN are skipped, and
the stored PIN credential is only replaced once every item has been
rotated.

Security Note:
    The plaintext of every item is held in memory until the change
    completes.
    Never log plaintext, ciphertext or PINs.
"""
import logging

from .credentials import PinManager
from .exceptions import AuthenticationFailed, KeyRotationError, ValidationError
from .items import VaultItemStore

logger = logging.getLogger("navigator.vault")


async def change_pin(
    items: VaultItemStore,
    pins: PinManager,
    owner_id: str,
    old_pin: str,
    new_pin: str,
) -> dict:
    """Re-encrypt all of an owner's items from old_pin to new_pin.

    Args:
        items: Item store bound to the active session.
        pins: PIN manager holding the current credential.
        owner_id: Owner whose items are rotated.
        old_pin: Current PIN.
        new_pin: Replacement PIN.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.

    Raises:
        ValidationError: If new_pin is malformed or equals old_pin.
        AuthenticationFailed: If old_pin does not match the credential.
        SessionExpired: If the session is not unlocked.
        KeyRotationError: If some items open with neither PIN. No item
            is rewritten and the old PIN stays active.
    """
    pins.validate_pin(new_pin)
    if new_pin == old_pin:
        raise ValidationError("The new PIN must differ from the current one")
    if not pins.verify(old_pin):
        logger.warning("PIN change refused: incorrect current PIN")
        raise AuthenticationFailed()

    logger.info("Starting PIN change for owner=%s", owner_id)
    stats = await items.reencrypt_all(owner_id, old_pin, new_pin)
    if stats["errors"]:
        logger.error("PIN change incomplete for owner=%s: %s", owner_id, stats)
        raise KeyRotationError(stats)

    pins.replace(new_pin)
    logger.info("PIN change complete for owner=%s: %s", owner_id, stats)
    return stats
