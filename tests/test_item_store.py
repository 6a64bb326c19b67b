"""
Tests for VaultItemStore.

Tests cover:
- Create/list/read/decrypt/update/delete against a memory store
- Salt immutability and iv freshness across content updates
- Wrong-PIN rejection and empty-content items
- Tri-state metadata merge
- Session gating with no store access
- Serialized concurrent updates on one item, with locks released after use
- Storage failures surfaced as StorageError
"""
import asyncio

import pytest

from navigator_vault import (
    DecryptionError,
    ItemNotFound,
    SessionExpired,
    StorageError,
    ValidationError,
    VaultItem,
    VaultItemStore,
    VaultItemType,
)
from navigator_vault.storages import MemoryDocumentStore

PIN = "1234"
OWNER = "user-1"


async def _stored(doc_store, items, item_id):
    return await doc_store.get_document(items._collection(OWNER), item_id)


class TestCreate:
    """Tests for item creation."""

    async def test_create_returns_item(self, items):
        item = await items.create(
            OWNER, "note", "Wi-Fi", "hunter2",
            metadata={"tags": ["home"]}, pin=PIN,
        )
        assert isinstance(item, VaultItem)
        assert item.id
        assert item.owner_id == OWNER
        assert item.type == VaultItemType.NOTE
        assert item.metadata.tags == ["home"]
        assert item.ciphertext and item.salt and item.iv

    async def test_document_layout(self, items, doc_store):
        """Crypto parameters are top-level fields, never metadata."""
        item = await items.create(
            OWNER, "password", "Bank", "s3cret",
            metadata={"favorite": True}, pin=PIN,
        )
        stored = await _stored(doc_store, items, item.id)
        assert set(stored) == {
            "ownerId", "type", "title", "ciphertext", "salt", "iv",
            "metadata", "createdAt", "updatedAt", "accessedAt",
        }
        assert "salt" not in stored["metadata"]
        assert "iv" not in stored["metadata"]
        assert "s3cret" not in str(stored)
        assert stored["title"] == "Bank"

    async def test_round_trip(self, items):
        item = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        assert await items.decrypt_content(item, PIN) == "hunter2"

    async def test_each_item_gets_own_salt(self, items):
        first = await items.create(OWNER, "note", "a", "same", pin=PIN)
        second = await items.create(OWNER, "note", "b", "same", pin=PIN)
        assert first.salt != second.salt
        assert first.ciphertext != second.ciphertext

    async def test_empty_content_with_file(self, items, doc_store):
        """Document items carry only a file reference and no ciphertext."""
        item = await items.create(
            OWNER, "document", "Passport scan", "",
            metadata={"file": {
                "url": "https://files.example/abc",
                "name": "passport.jpg",
                "contentType": "image/jpeg",
            }},
            pin=PIN,
        )
        stored = await _stored(doc_store, items, item.id)
        assert stored["ciphertext"] == ""
        assert stored["metadata"]["file"]["name"] == "passport.jpg"
        assert item.metadata.file.content_type == "image/jpeg"
        assert await items.decrypt_content(item, PIN) == ""
        assert await items.decrypt_content(item, "9999") == ""

    @pytest.mark.parametrize("kwargs", [
        {"type": "note", "title": "", "content": "x", "pin": PIN},
        {"type": "note", "title": "   ", "content": "x", "pin": PIN},
        {"type": "secret", "title": "t", "content": "x", "pin": PIN},
        {"type": "note", "title": "t", "content": "x", "pin": None},
        {"type": "note", "title": "t", "content": "x", "pin": PIN,
         "metadata": {"favorite": "not-a-bool"}},
    ])
    async def test_validation(self, items, doc_store, kwargs):
        """Malformed input is rejected before anything is written."""
        with pytest.raises(ValidationError):
            await items.create(OWNER, **kwargs)
        assert doc_store.calls == []

    async def test_owner_required(self, items):
        with pytest.raises(ValidationError):
            await items.create("", "note", "t", "x", pin=PIN)


class TestReadAndList:
    """Tests for list/search/read."""

    async def test_list_most_recent_first(self, items):
        first = await items.create(OWNER, "note", "first", "1", pin=PIN)
        await asyncio.sleep(0.01)
        second = await items.create(OWNER, "note", "second", "2", pin=PIN)
        await asyncio.sleep(0.01)
        await items.update(OWNER, first.id, {"title": "first again"})
        listed = await items.list(OWNER)
        assert [i.id for i in listed] == [first.id, second.id]
        assert listed[0].title == "first again"

    async def test_list_is_owner_scoped(self, items):
        await items.create(OWNER, "note", "mine", "1", pin=PIN)
        await items.create("user-2", "note", "theirs", "2", pin=PIN)
        assert [i.title for i in await items.list(OWNER)] == ["mine"]

    async def test_list_does_not_decrypt(self, items):
        await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        (item,) = await items.list(OWNER)
        assert "hunter2" not in item.model_dump_json()

    async def test_read_updates_accessed_at(self, items, doc_store):
        created = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        assert created.accessed_at is None
        item = await items.read(OWNER, created.id)
        assert item.accessed_at is not None
        stored = await _stored(doc_store, items, created.id)
        assert stored["accessedAt"] is not None
        assert stored["updatedAt"] == created.to_document()["updatedAt"]

    async def test_read_missing(self, items):
        with pytest.raises(ItemNotFound):
            await items.read(OWNER, "nope")

    async def test_read_other_owner(self, items):
        item = await items.create("user-2", "note", "theirs", "2", pin=PIN)
        with pytest.raises(ItemNotFound):
            await items.read(OWNER, item.id)

    async def test_search(self, items):
        await items.create(
            OWNER, "password", "Gmail", "a",
            metadata={"tags": ["email"], "favorite": True}, pin=PIN,
        )
        await items.create(
            OWNER, "note", "Router", "b", metadata={"tags": ["Home"]}, pin=PIN,
        )
        await items.create(OWNER, "card", "Visa", "c", pin=PIN)
        assert [i.title for i in await items.search(OWNER, "gma")] == ["Gmail"]
        assert [i.title for i in await items.search(OWNER, "home")] == ["Router"]
        assert [i.title for i in await items.search(OWNER, item_type="card")] == ["Visa"]
        favorites = await items.search(OWNER, favorites_only=True)
        assert [i.title for i in favorites] == ["Gmail"]
        assert len(await items.search(OWNER)) == 3

    async def test_search_invalid_type(self, items):
        with pytest.raises(ValidationError):
            await items.search(OWNER, item_type="spaceship")


class TestDecrypt:
    """Tests for decrypt_content failures."""

    async def test_wrong_pin(self, items):
        """Any other PIN fails loudly instead of returning garbage."""
        item = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        for wrong in ("4321", "12345", "0000"):
            with pytest.raises(DecryptionError):
                await items.decrypt_content(item, wrong)

    async def test_missing_iv(self, items):
        item = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        broken = item.model_copy(update={"iv": ""})
        with pytest.raises(DecryptionError):
            await items.decrypt_content(broken, PIN)

    async def test_corrupted_salt(self, items):
        item = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        broken = item.model_copy(update={"salt": "%%%"})
        with pytest.raises(DecryptionError):
            await items.decrypt_content(broken, PIN)

    async def test_decrypt_after_read(self, items):
        created = await items.create(OWNER, "card", "Visa", "4111 1111", pin=PIN)
        item = await items.read(OWNER, created.id)
        assert await items.decrypt_content(item, PIN) == "4111 1111"


class TestUpdate:
    """Tests for update semantics."""

    async def test_content_update_keeps_salt_changes_iv(self, items, doc_store):
        """Content updates reuse the salt and always write a new iv."""
        item = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        await items.update(OWNER, item.id, {"content": "correct horse"}, PIN)
        stored = await _stored(doc_store, items, item.id)
        assert stored["salt"] == item.salt
        assert stored["iv"] != item.iv
        assert stored["ciphertext"] != item.ciphertext
        updated = await items.read(OWNER, item.id)
        assert await items.decrypt_content(updated, PIN) == "correct horse"

    async def test_ivs_never_repeat(self, items, doc_store):
        item = await items.create(OWNER, "note", "n", "v0", pin=PIN)
        seen = {item.iv}
        for n in range(1, 20):
            await items.update(OWNER, item.id, {"content": f"v{n}"}, PIN)
            seen.add((await _stored(doc_store, items, item.id))["iv"])
        assert len(seen) == 20

    async def test_title_only(self, items, doc_store):
        item = await items.create(OWNER, "note", "Wi-Fi", "hunter2", pin=PIN)
        await items.update(OWNER, item.id, {"title": "Home Wi-Fi"})
        stored = await _stored(doc_store, items, item.id)
        assert stored["title"] == "Home Wi-Fi"
        assert (stored["ciphertext"], stored["salt"], stored["iv"]) == (
            item.ciphertext, item.salt, item.iv,
        )

    async def test_metadata_merge(self, items, doc_store):
        """Setting favorite leaves existing tags untouched."""
        item = await items.create(
            OWNER, "note", "n", "v", metadata={"tags": ["a", "b"]}, pin=PIN,
        )
        await items.update(OWNER, item.id, {"metadata": {"favorite": True}})
        stored = await _stored(doc_store, items, item.id)
        assert stored["metadata"] == {"tags": ["a", "b"], "favorite": True}
        assert stored["salt"] == item.salt and stored["iv"] == item.iv

    async def test_metadata_clear(self, items, doc_store):
        """Explicit None removes the field without touching the others."""
        item = await items.create(
            OWNER, "note", "n", "v",
            metadata={"tags": ["a"], "favorite": True, "category": "home"},
            pin=PIN,
        )
        await items.update(OWNER, item.id, {"metadata": {"tags": None}})
        stored = await _stored(doc_store, items, item.id)
        assert "tags" not in stored["metadata"]
        assert stored["metadata"]["favorite"] is True
        assert stored["metadata"]["category"] == "home"
        assert (await items.read(OWNER, item.id)).metadata.tags == []

    async def test_metadata_clear_file(self, items, doc_store):
        item = await items.create(
            OWNER, "document", "scan", "",
            metadata={"file": {"url": "https://files.example/x"}}, pin=PIN,
        )
        await items.update(OWNER, item.id, {"metadata": {"file": None}})
        stored = await _stored(doc_store, items, item.id)
        assert "file" not in stored["metadata"]

    async def test_metadata_rejects_crypto_fields(self, items):
        """salt and iv cannot be smuggled in through metadata."""
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        with pytest.raises(ValidationError):
            await items.update(OWNER, item.id, {"metadata": {"salt": "x"}})

    async def test_content_requires_pin(self, items):
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        with pytest.raises(ValidationError):
            await items.update(OWNER, item.id, {"content": "new"})

    async def test_content_wrong_pin(self, items, doc_store):
        """A wrong PIN cannot overwrite content under a foreign key."""
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        with pytest.raises(DecryptionError):
            await items.update(OWNER, item.id, {"content": "new"}, "9999")
        stored = await _stored(doc_store, items, item.id)
        assert stored["ciphertext"] == item.ciphertext
        assert stored["iv"] == item.iv

    async def test_empty_title_rejected(self, items):
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        with pytest.raises(ValidationError):
            await items.update(OWNER, item.id, {"title": " "})

    async def test_update_missing(self, items):
        with pytest.raises(ItemNotFound):
            await items.update(OWNER, "nope", {"title": "x"})

    async def test_no_changes(self, items, doc_store):
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        doc_store.calls.clear()
        await items.update(OWNER, item.id, {})
        assert "update_fields" not in doc_store.calls

    async def test_content_to_empty(self, items):
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        await items.update(OWNER, item.id, {"content": ""}, PIN)
        updated = await items.read(OWNER, item.id)
        assert updated.ciphertext == ""
        assert updated.salt == item.salt
        assert await items.decrypt_content(updated, PIN) == ""

    async def test_concurrent_content_updates(self, items, doc_store):
        """Rapid updates on one item never leave a mismatched iv/ciphertext."""
        item = await items.create(OWNER, "note", "n", "v0", pin=PIN)
        await asyncio.gather(*[
            items.update(OWNER, item.id, {"content": f"value-{n}"}, PIN)
            for n in range(5)
        ] + [
            items.update(OWNER, item.id, {"metadata": {"favorite": n % 2 == 0}})
            for n in range(5)
        ])
        final = await items.read(OWNER, item.id)
        plaintext = await items.decrypt_content(final, PIN)
        assert plaintext in {f"value-{n}" for n in range(5)}
        assert final.salt == item.salt
        assert items._locks == {}

    async def test_item_locks_do_not_accumulate(self, items):
        """Per-item locks are dropped once no writer holds or awaits them."""
        created = [
            await items.create(OWNER, "note", f"n{n}", "v", pin=PIN)
            for n in range(10)
        ]
        for item in created:
            await items.update(OWNER, item.id, {"title": "renamed"})
            await items.update(OWNER, item.id, {"content": "w"}, PIN)
        assert items._locks == {}
        assert not items._lock_users

    async def test_lock_released_on_error(self, items):
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        with pytest.raises(DecryptionError):
            await items.update(OWNER, item.id, {"content": "w"}, "9999")
        assert items._locks == {}


class TestDelete:
    """Tests for delete."""

    async def test_delete(self, items):
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        await items.delete(OWNER, item.id)
        with pytest.raises(ItemNotFound):
            await items.read(OWNER, item.id)
        assert await items.list(OWNER) == []

    async def test_delete_missing_is_noop(self, items):
        await items.delete(OWNER, "nope")


@pytest.fixture
async def expired(items, doc_store, clock):
    """An item created before the session ran out."""
    item = await items.create(OWNER, "note", "n", "v", pin=PIN)
    clock.advance(items.session.ttl)
    doc_store.calls.clear()
    return item


class TestSessionGating:
    """Operations outside a session fail without touching the store."""

    async def test_create(self, items, doc_store, expired):
        with pytest.raises(SessionExpired):
            await items.create(OWNER, "note", "n", "v", pin=PIN)
        assert doc_store.calls == []

    async def test_list(self, items, doc_store, expired):
        with pytest.raises(SessionExpired):
            await items.list(OWNER)
        assert doc_store.calls == []

    async def test_read(self, items, doc_store, expired):
        with pytest.raises(SessionExpired):
            await items.read(OWNER, expired.id)
        assert doc_store.calls == []

    async def test_decrypt(self, items, doc_store, expired):
        with pytest.raises(SessionExpired):
            await items.decrypt_content(expired, PIN)

    async def test_update(self, items, doc_store, expired):
        with pytest.raises(SessionExpired):
            await items.update(OWNER, expired.id, {"content": "x"}, PIN)
        assert doc_store.calls == []

    async def test_delete(self, items, doc_store, expired):
        with pytest.raises(SessionExpired):
            await items.delete(OWNER, expired.id)
        assert doc_store.calls == []

    async def test_locked(self, items, doc_store):
        items.session.lock()
        with pytest.raises(SessionExpired):
            await items.list(OWNER)
        assert doc_store.calls == []

    async def test_operations_extend_session(self, items, clock):
        """Each successful operation slides the expiry forward."""
        ttl = items.session.ttl
        clock.advance(ttl - 10)
        await items.list(OWNER)
        clock.advance(ttl - 10)
        await items.list(OWNER)
        assert items.session.is_valid is True


class TestStorageFailures:
    """Store failures surface as StorageError, distinct from crypto errors."""

    async def test_create_storage_error(self, failing_store, unlocked_session, config):
        items = VaultItemStore(failing_store, unlocked_session, config)
        with pytest.raises(StorageError) as exc:
            await items.create(OWNER, "note", "n", "v", pin=PIN)
        assert isinstance(exc.value.__cause__, ConnectionError)
        assert not isinstance(exc.value, DecryptionError)

    async def test_update_storage_error(self, unlocked_session, config):
        items = VaultItemStore(
            _FlakyStore(), unlocked_session, config,
        )
        item = await items.create(OWNER, "note", "n", "v", pin=PIN)
        items._store.fail = True
        with pytest.raises(StorageError):
            await items.update(OWNER, item.id, {"title": "x"})


class _FlakyStore:
    """Wraps a memory store and fails writes on demand."""

    def __init__(self):
        self._inner = MemoryDocumentStore()
        self.fail = False

    def __getattr__(self, name):
        method = getattr(self._inner, name)

        async def call(*args):
            if self.fail and name != "get_document":
                raise TimeoutError("store timed out")
            return await method(*args)
        return call
