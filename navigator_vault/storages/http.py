"""
JSON REST client for a remote document store.

Routes (``base_url`` + collection path):
    POST   /{collection}                      -> {"id": "..."}
    PUT    /{collection}/{id}                 overwrite
    GET    /{collection}/{id}                 fields, 404 when missing
    PATCH  /{collection}/{id}                 partial fields
    DELETE /{collection}/{id}
    GET    /{collection}?orderBy=f&direction=d -> {"documents": [{"id", "fields"}]}

Any transport failure or unexpected status raises ``StorageError``.
No request is retried.
"""
import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import orjson
import aiohttp

from ..exceptions import StorageError
from .abstract import DocumentStore

logger = logging.getLogger("navigator.vault")

_JSON_HEADERS = {"Content-Type": "application/json"}
_MISSING = object()


class HTTPDocumentStore(DocumentStore):
    """Document store speaking JSON over HTTP with aiohttp."""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._headers = dict(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _url(self, collection: str, document_id: Optional[str] = None) -> str:
        url = f"{self._base_url}/{quote(collection.strip('/'), safe='/')}"
        if document_id is not None:
            url = f"{url}/{quote(document_id, safe='')}"
        return url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers, timeout=self._timeout,
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        payload: Any = None,
        params: Optional[dict] = None,
        allow_missing: bool = False,
    ) -> Any:
        """Send a request and decode the JSON body.

        Returns None for an empty body, or ``_MISSING`` for a 404 when
        ``allow_missing`` is set.
        """
        logger.debug("Document store request: %s %s", method, url)
        data = orjson.dumps(payload) if payload is not None else None
        headers = _JSON_HEADERS if data is not None else None
        try:
            async with self._get_session().request(
                method, url, data=data, params=params, headers=headers,
            ) as response:
                if response.status == 404 and allow_missing:
                    return _MISSING
                body = await response.read()
                if response.status >= 400:
                    raise StorageError(
                        f"Document store {method} {url} failed: "
                        f"HTTP {response.status}"
                    )
        except aiohttp.ClientError as err:
            raise StorageError(
                f"Document store {method} {url} failed: {err}"
            ) from err
        except asyncio.TimeoutError as err:
            raise StorageError(
                f"Document store {method} {url} timed out"
            ) from err
        if not body:
            return None
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as err:
            raise StorageError(
                f"Document store returned invalid JSON for {method} {url}"
            ) from err

    # ------------------------------------------------------------------
    # DocumentStore API
    # ------------------------------------------------------------------

    async def put_document(
        self,
        collection: str,
        document_id: Optional[str],
        fields: dict
    ) -> str:
        if document_id is None:
            result = await self._request("POST", self._url(collection), fields)
            if not isinstance(result, dict) or not result.get("id"):
                raise StorageError("Document store did not return a document id")
            return result["id"]
        await self._request("PUT", self._url(collection, document_id), fields)
        return document_id

    async def get_document(
        self,
        collection: str,
        document_id: str
    ) -> Optional[dict]:
        result = await self._request(
            "GET", self._url(collection, document_id), allow_missing=True,
        )
        return None if result is _MISSING else result

    async def list_documents(
        self,
        collection: str,
        order_by: str,
        direction: str = "desc"
    ) -> list[tuple[str, dict]]:
        self.check_order_field(order_by, direction)
        result = await self._request(
            "GET",
            self._url(collection),
            params={"orderBy": order_by, "direction": direction},
        )
        documents = (result or {}).get("documents", [])
        return [(doc["id"], doc.get("fields", {})) for doc in documents]

    async def delete_document(self, collection: str, document_id: str) -> None:
        await self._request(
            "DELETE", self._url(collection, document_id), allow_missing=True,
        )

    async def update_fields(
        self,
        collection: str,
        document_id: str,
        fields: dict
    ) -> None:
        result = await self._request(
            "PATCH",
            self._url(collection, document_id),
            fields,
            allow_missing=True,
        )
        if result is _MISSING:
            raise KeyError(document_id)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
