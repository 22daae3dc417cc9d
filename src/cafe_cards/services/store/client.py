"""Client contract for the hosted document store and its Appwrite HTTP implementation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence
from uuid import uuid4

import httpx
from loguru import logger

from cafe_cards.core.settings import Settings, settings

STATUS_PERMISSION_DENIED = 401
STATUS_NOT_FOUND = 404
STATUS_INVALID_DOCUMENT = 400


class StoreError(RuntimeError):
    """Failure reported by (or while reaching) the document store.

    ``code`` is the store's status code, or ``None`` when no response was
    received at all.
    """

    def __init__(self, message: str, *, code: int | None = None, error_type: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.error_type = error_type

    @property
    def is_not_found(self) -> bool:
        return self.code == STATUS_NOT_FOUND

    @property
    def is_permission_denied(self) -> bool:
        return self.code == STATUS_PERMISSION_DENIED

    @property
    def is_unreachable(self) -> bool:
        return self.code is None

    def __repr__(self) -> str:
        return f"StoreError(code={self.code!r}, message={self.message!r})"


@dataclass(frozen=True, slots=True)
class QueryFilter:
    """One query clause in the store's JSON query syntax."""

    method: str
    attribute: str | None = None
    values: tuple[Any, ...] = field(default_factory=tuple)

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "QueryFilter":
        return cls("equal", attribute, (value,))

    @classmethod
    def order_desc(cls, attribute: str) -> "QueryFilter":
        return cls("orderDesc", attribute)

    @classmethod
    def limit(cls, count: int) -> "QueryFilter":
        return cls("limit", None, (count,))

    def to_wire(self) -> str:
        body: dict[str, Any] = {"method": self.method}
        if self.attribute is not None:
            body["attribute"] = self.attribute
        if self.values:
            body["values"] = list(self.values)
        return json.dumps(body, separators=(",", ":"))


def owner_permissions(user_id: str) -> list[str]:
    """Read, update and delete rights restricted to a single account."""

    role = f"user:{user_id}"
    return [f'read("{role}")', f'update("{role}")', f'delete("{role}")']


def new_document_id() -> str:
    return uuid4().hex[:20]


class DocumentStore(Protocol):
    """The subset of the hosted database API the loyalty core relies on."""

    async def list(self, collection: str, filters: Sequence[QueryFilter] = ()) -> list[dict[str, Any]]:
        ...

    async def get(self, collection: str, document_id: str) -> dict[str, Any]:
        ...

    async def create(
        self,
        collection: str,
        document_id: str,
        fields: Mapping[str, Any],
        permissions: Sequence[str] = (),
    ) -> dict[str, Any]:
        ...

    async def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def delete(self, collection: str, document_id: str) -> None:
        ...


class AppwriteDocumentStore:
    """Document store backed by the Appwrite databases REST API."""

    def __init__(
        self,
        *,
        endpoint: str,
        project_id: str,
        database_id: str,
        api_key: str | None = None,
        jwt: str | None = None,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoint:
            raise ValueError("Store endpoint must be configured")
        if not project_id:
            raise ValueError("Store project id must be configured")
        if not database_id:
            raise ValueError("Store database id must be configured")
        self._endpoint = endpoint.rstrip("/")
        self._database_id = database_id
        headers = {"X-Appwrite-Project": project_id, "Content-Type": "application/json"}
        if api_key:
            headers["X-Appwrite-Key"] = api_key
        if jwt:
            headers["X-Appwrite-JWT"] = jwt
        self._headers = headers
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, config: Settings | None = None, **overrides: Any) -> "AppwriteDocumentStore":
        config = config or settings
        options: dict[str, Any] = {
            "endpoint": config.store_endpoint,
            "project_id": config.store_project_id,
            "database_id": config.store_database_id,
            "api_key": config.store_api_key,
            "timeout_seconds": config.store_timeout_seconds,
        }
        options.update(overrides)
        return cls(**options)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AppwriteDocumentStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def list(self, collection: str, filters: Sequence[QueryFilter] = ()) -> list[dict[str, Any]]:
        params = [("queries[]", clause.to_wire()) for clause in filters]
        body = await self._request("GET", self._documents_path(collection), params=params)
        documents = body.get("documents") if isinstance(body, Mapping) else None
        return list(documents or [])

    async def get(self, collection: str, document_id: str) -> dict[str, Any]:
        return await self._request("GET", self._documents_path(collection, document_id))

    async def create(
        self,
        collection: str,
        document_id: str,
        fields: Mapping[str, Any],
        permissions: Sequence[str] = (),
    ) -> dict[str, Any]:
        payload = {"documentId": document_id, "data": dict(fields), "permissions": list(permissions)}
        return await self._request("POST", self._documents_path(collection), json_body=payload)

    async def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        payload = {"data": dict(fields)}
        return await self._request("PATCH", self._documents_path(collection, document_id), json_body=payload)

    async def delete(self, collection: str, document_id: str) -> None:
        await self._request("DELETE", self._documents_path(collection, document_id))

    def _documents_path(self, collection: str, document_id: str | None = None) -> str:
        path = f"{self._endpoint}/databases/{self._database_id}/collections/{collection}/documents"
        if document_id is not None:
            path = f"{path}/{document_id}"
        return path

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Sequence[tuple[str, str]] | None = None,
        json_body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            logger.error("Document store request failed", method=method, url=url, error=str(exc))
            raise StoreError(f"Document store unreachable: {exc}") from exc

        if response.status_code == 204 or not response.content:
            if response.is_success:
                return {}
            raise StoreError(
                f"Document store responded with status {response.status_code}",
                code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError(
                f"Document store returned an unreadable response (status {response.status_code})",
                code=None if response.is_success else response.status_code,
            ) from exc

        if response.is_success:
            return body if isinstance(body, dict) else {"data": body}

        message = body.get("message") if isinstance(body, dict) else None
        error_type = body.get("type") if isinstance(body, dict) else None
        raise StoreError(
            message or f"Document store responded with status {response.status_code}",
            code=response.status_code,
            error_type=error_type,
        )


__all__ = [
    "AppwriteDocumentStore",
    "DocumentStore",
    "QueryFilter",
    "StoreError",
    "new_document_id",
    "owner_permissions",
]
