"""
VaultItemStore — Encrypted vault items on top of a document store.

Provides the public API for vault items:
- ``create(...)`` — encrypt content under a new salt and persist the item
- ``list(owner_id)`` / ``search(owner_id, ...)`` — list items, no decryption
- ``read(owner_id, item_id)`` — fetch one item and stamp ``accessedAt``
- ``decrypt_content(item, pin)`` — explicit reveal of an item's content
- ``update(...)`` — plaintext deltas, or re-encryption under the same salt
  with a brand-new iv
- ``delete(owner_id, item_id)`` — hard delete

Every operation checks the session before touching the store and extends
it on success. Writes to a single item are serialized.

Security Note:
    Never log PINs, keys, plaintext, ciphertext, salts or ivs. Only log
    owner ids, item ids and operations.
"""
import asyncio
import logging
import functools
import contextlib
from typing import Any, Optional, Union
from collections import Counter
from collections.abc import Callable

from pydantic import ValidationError as ModelValidationError

from .conf import VaultConfig
from .crypto import (
    decode_bytes,
    decrypt,
    derive_key,
    encode_bytes,
    encrypt,
    generate_salt,
    get_cipher_cls,
)
from .exceptions import (
    DecryptionError,
    ItemNotFound,
    StorageError,
    ValidationError,
    VaultError,
)
from .models import (
    ItemUpdate,
    VaultItem,
    VaultItemType,
    VaultMetadata,
    isoformat,
    utcnow,
)
from .session import VaultSession
from .storages.abstract import DocumentStore

logger = logging.getLogger("navigator.vault")

_ORDER_FIELD = "updatedAt"

ItemList = list[VaultItem]


class VaultItemStore:
    """Encrypted vault item CRUD bound to a vault session.

    The PIN is supplied on every call that needs a key and is never
    cached; keys are derived per call from ``(pin, item salt)``.
    """

    def __init__(
        self,
        store: DocumentStore,
        session: VaultSession,
        config: Optional[VaultConfig] = None,
    ):
        self._store = store
        self._session = session
        self._config = config or VaultConfig()
        self._cipher_cls = get_cipher_cls(self._config.cipher_backend)
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Counter = Counter()

    @property
    def session(self) -> VaultSession:
        return self._session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _collection(self, owner_id: str) -> str:
        if not owner_id:
            raise ValidationError("owner_id is required")
        return self._config.collection_for(owner_id)

    @contextlib.asynccontextmanager
    async def _item_lock(self, owner_id: str, item_id: str):
        """Serialize writes to one item; the lock is dropped once unused."""
        key = (owner_id, item_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _run_crypto(self, fn: Callable, *args) -> Any:
        """Run CPU-bound crypto work off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _call_store(self, method: str, *args) -> Any:
        """Call the document store, surfacing failures as StorageError."""
        try:
            return await getattr(self._store, method)(*args)
        except VaultError:
            raise
        except KeyError as err:
            raise ItemNotFound(str(err.args[0]) if err.args else "") from err
        except Exception as err:
            raise StorageError(
                f"Document store {method} failed: {err}"
            ) from err

    async def _encrypt_content(
        self,
        content: str,
        pin: str,
        salt: bytes
    ) -> tuple[str, str]:
        """Return base64 (ciphertext, iv); empty content stays empty."""
        if content == "":
            return "", ""
        key = await self._run_crypto(
            derive_key, pin, salt, self._config.pbkdf2_iterations,
        )
        ciphertext, iv = await self._run_crypto(
            encrypt, content, key, self._cipher_cls,
        )
        return encode_bytes(ciphertext), encode_bytes(iv)

    async def _decrypt_fields(
        self,
        ciphertext: str,
        salt: str,
        iv: str,
        pin: str
    ) -> str:
        if not ciphertext:
            return ""
        if not salt or not iv:
            raise DecryptionError("Missing encryption parameters")
        if not isinstance(pin, str) or not pin:
            raise DecryptionError("A PIN is required to decrypt vault content")
        try:
            raw_ct = decode_bytes(ciphertext)
            raw_salt = decode_bytes(salt)
            raw_iv = decode_bytes(iv)
        except ValueError as err:
            raise DecryptionError(
                "Stored encryption parameters are corrupted"
            ) from err
        key = await self._run_crypto(
            derive_key, pin, raw_salt, self._config.pbkdf2_iterations,
        )
        plaintext = await self._run_crypto(
            decrypt, raw_ct, key, raw_iv, self._cipher_cls,
        )
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionError("Decrypted content is not valid text") from err

    async def _fetch(self, owner_id: str, item_id: str) -> dict:
        fields = await self._call_store(
            "get_document", self._collection(owner_id), item_id,
        )
        if fields is None or fields.get("ownerId", owner_id) != owner_id:
            raise ItemNotFound(item_id)
        return fields

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        type: Union[VaultItemType, str],
        title: str,
        content: str = "",
        metadata: Union[VaultMetadata, dict, None] = None,
        pin: Optional[str] = None,
    ) -> VaultItem:
        """Encrypt content under a fresh salt and persist a new item.

        Args:
            owner_id: Owning user.
            type: Item type (informational).
            title: Plaintext title, must not be empty.
            content: Secret content; empty string stores no ciphertext.
            metadata: Tags, favorite flag, file reference.
            pin: PIN the item key is derived from.

        Returns:
            The stored VaultItem.

        Raises:
            SessionExpired: If the session is not unlocked.
            ValidationError: On missing or malformed fields.
        """
        self._session.ensure_valid()
        collection = self._collection(owner_id)
        if not title or not title.strip():
            raise ValidationError("title is required")
        if content is None:
            content = ""
        if not isinstance(pin, str) or not pin:
            raise ValidationError("A PIN is required to create a vault item")
        try:
            item_type = VaultItemType(type)
            if not isinstance(metadata, VaultMetadata):
                metadata = VaultMetadata.model_validate(metadata or {})
        except (ValueError, ModelValidationError) as err:
            raise ValidationError(f"Invalid vault item: {err}") from err

        salt = generate_salt()
        ciphertext, iv = await self._encrypt_content(content, pin, salt)
        now = utcnow()
        item = VaultItem(
            id="",
            owner_id=owner_id,
            type=item_type,
            title=title,
            ciphertext=ciphertext,
            salt=encode_bytes(salt),
            iv=iv,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        self._session.ensure_valid()
        item_id = await self._call_store(
            "put_document", collection, None, item.to_document(),
        )
        item.id = item_id
        self._session.extend()
        logger.debug("Vault create: owner=%s item=%s", owner_id, item_id)
        return item

    async def list(self, owner_id: str) -> ItemList:
        """Return the owner's items, most recently updated first."""
        self._session.ensure_valid()
        documents = await self._call_store(
            "list_documents", self._collection(owner_id), _ORDER_FIELD, "desc",
        )
        items = [
            VaultItem.from_document(doc_id, fields)
            for doc_id, fields in documents
        ]
        self._session.extend()
        logger.debug("Vault list: owner=%s items=%d", owner_id, len(items))
        return items

    async def search(
        self,
        owner_id: str,
        query: Optional[str] = None,
        item_type: Union[VaultItemType, str, None] = None,
        favorites_only: bool = False,
    ) -> ItemList:
        """Filter the owner's items by title/tag text, type and favorite.

        Matching only uses plaintext fields; nothing is decrypted.
        """
        if item_type is not None:
            try:
                item_type = VaultItemType(item_type)
            except ValueError as err:
                raise ValidationError(f"Invalid item type: {item_type}") from err
        needle = (query or "").strip().lower()
        results = []
        for item in await self.list(owner_id):
            if item_type is not None and item.type != item_type:
                continue
            if favorites_only and not item.metadata.favorite:
                continue
            if needle and needle not in item.title.lower() and not any(
                needle in tag.lower() for tag in item.metadata.tags
            ):
                continue
            results.append(item)
        return results

    async def read(self, owner_id: str, item_id: str) -> VaultItem:
        """Fetch one item and record the access. Content stays encrypted."""
        self._session.ensure_valid()
        fields = await self._fetch(owner_id, item_id)
        accessed_at = utcnow()
        await self._call_store(
            "update_fields",
            self._collection(owner_id),
            item_id,
            {"accessedAt": isoformat(accessed_at)},
        )
        item = VaultItem.from_document(item_id, fields)
        item.accessed_at = accessed_at
        self._session.extend()
        logger.debug("Vault read: owner=%s item=%s", owner_id, item_id)
        return item

    async def decrypt_content(self, item: VaultItem, pin: str) -> str:
        """Reveal an item's content.

        Returns an empty string for items without ciphertext.

        Raises:
            SessionExpired: If the session is not unlocked.
            DecryptionError: On a wrong PIN or missing/corrupt parameters.
        """
        self._session.ensure_valid()
        plaintext = await self._decrypt_fields(
            item.ciphertext, item.salt, item.iv, pin,
        )
        self._session.extend()
        return plaintext

    async def update(
        self,
        owner_id: str,
        item_id: str,
        changes: Union[ItemUpdate, dict],
        pin: Optional[str] = None,
    ) -> None:
        """Apply title, content and metadata changes to an item.

        Content changes keep the item's salt and always write a new
        ciphertext together with a new iv. Metadata changes merge into
        the stored map; a field given as None is removed.

        Raises:
            SessionExpired: If the session is not unlocked.
            ValidationError: On malformed changes, or content without a PIN.
            DecryptionError: If the PIN cannot decrypt the current content.
            ItemNotFound: If the item does not exist.
        """
        self._session.ensure_valid()
        collection = self._collection(owner_id)
        if not isinstance(changes, ItemUpdate):
            try:
                changes = ItemUpdate.model_validate(changes or {})
            except ModelValidationError as err:
                raise ValidationError(f"Invalid vault update: {err}") from err
        if changes.content is not None and (not isinstance(pin, str) or not pin):
            raise ValidationError("A PIN is required to update vault content")
        if changes.is_empty:
            self._session.extend()
            return

        async with self._item_lock(owner_id, item_id):
            self._session.ensure_valid()
            fields = await self._fetch(owner_id, item_id)
            update: dict[str, Any] = {}
            if changes.title is not None:
                update["title"] = changes.title
            if changes.content is not None:
                salt = fields.get("salt")
                if not salt:
                    raise DecryptionError("Missing encryption parameters")
                # the PIN must open the current content before it is replaced
                await self._decrypt_fields(
                    fields.get("ciphertext") or "", salt,
                    fields.get("iv") or "", pin,
                )
                try:
                    raw_salt = decode_bytes(salt)
                except ValueError as err:
                    raise DecryptionError(
                        "Stored encryption parameters are corrupted"
                    ) from err
                ciphertext, iv = await self._encrypt_content(
                    changes.content, pin, raw_salt,
                )
                update["ciphertext"] = ciphertext
                update["iv"] = iv
            if changes.metadata is not None and changes.metadata.model_fields_set:
                update["metadata"] = changes.metadata.apply(
                    fields.get("metadata") or {}
                )
            update["updatedAt"] = isoformat(utcnow())
            self._session.ensure_valid()
            await self._call_store("update_fields", collection, item_id, update)
        self._session.extend()
        logger.debug(
            "Vault update: owner=%s item=%s fields=%s",
            owner_id, item_id, sorted(k for k in update if k != "iv"),
        )

    async def delete(self, owner_id: str, item_id: str) -> None:
        """Remove an item. Deleting a missing item is a no-op."""
        self._session.ensure_valid()
        collection = self._collection(owner_id)
        async with self._item_lock(owner_id, item_id):
            await self._call_store("delete_document", collection, item_id)
        self._session.extend()
        logger.debug("Vault delete: owner=%s item=%s", owner_id, item_id)

    # ------------------------------------------------------------------
    # PIN change support
    # ------------------------------------------------------------------

    async def _try_decrypt(self, fields: dict, pin: str) -> Optional[str]:
        """Decrypt stored fields, or None when the PIN does not open them."""
        try:
            return await self._decrypt_fields(
                fields.get("ciphertext") or "",
                fields.get("salt") or "",
                fields.get("iv") or "",
                pin,
            )
        except DecryptionError:
            return None

    async def reencrypt_all(
        self,
        owner_id: str,
        old_pin: str,
        new_pin: str
    ) -> dict:
        """Re-encrypt every item of an owner from old_pin to new_pin.

        Every item is decrypted before anything is written. When any item
        opens with neither PIN, nothing is re-encrypted and the stats carry
        the errors, so old_pin still opens the whole vault. Items that
        already open with new_pin, items without content and items deleted
        meanwhile are skipped, so an interrupted run can be repeated.
        Each rotated item gets a fresh salt and a fresh iv.

        Returns:
            Stats dict with keys: total, rotated, errors, skipped.
        """
        self._session.ensure_valid()
        collection = self._collection(owner_id)
        documents = await self._call_store(
            "list_documents", collection, _ORDER_FIELD, "desc",
        )
        stats = {"total": len(documents), "rotated": 0, "errors": 0, "skipped": 0}

        # decrypt everything first
        pending: list[tuple[str, str, str]] = []
        for item_id, _ in documents:
            self._session.ensure_valid()
            try:
                fields = await self._fetch(owner_id, item_id)
            except ItemNotFound:
                stats["skipped"] += 1
                continue
            ciphertext = fields.get("ciphertext") or ""
            if not ciphertext:
                stats["skipped"] += 1
                continue
            content = await self._try_decrypt(fields, old_pin)
            if content is not None:
                pending.append((item_id, ciphertext, content))
            elif await self._try_decrypt(fields, new_pin) is not None:
                stats["skipped"] += 1
            else:
                logger.error(
                    "Vault item owner=%s item=%s opens with neither PIN",
                    owner_id, item_id,
                )
                stats["errors"] += 1
        if stats["errors"]:
            logger.error(
                "PIN change aborted for owner=%s, no item re-encrypted: %s",
                owner_id, stats,
            )
            return stats

        for item_id, ciphertext, content in pending:
            async with self._item_lock(owner_id, item_id):
                self._session.ensure_valid()
                try:
                    fields = await self._fetch(owner_id, item_id)
                except ItemNotFound:
                    stats["skipped"] += 1
                    continue
                current = fields.get("ciphertext") or ""
                if current != ciphertext:
                    # content was updated after the first pass
                    if not current:
                        stats["skipped"] += 1
                        continue
                    content = await self._try_decrypt(fields, old_pin)
                    if content is None:
                        if await self._try_decrypt(fields, new_pin) is not None:
                            stats["skipped"] += 1
                        else:
                            logger.error(
                                "Error rotating vault item owner=%s item=%s",
                                owner_id, item_id,
                            )
                            stats["errors"] += 1
                        continue
                new_salt = generate_salt()
                new_ct, new_iv = await self._encrypt_content(
                    content, new_pin, new_salt,
                )
                await self._call_store(
                    "update_fields",
                    collection,
                    item_id,
                    {
                        "ciphertext": new_ct,
                        "salt": encode_bytes(new_salt),
                        "iv": new_iv,
                    },
                )
                stats["rotated"] += 1
        self._session.extend()
        return stats
