from __future__ import annotations

import json

import httpx
import pytest

from cafe_cards.core.settings import Settings
from cafe_cards.services.store.client import AppwriteDocumentStore, QueryFilter, StoreError, owner_permissions

ENDPOINT = "https://store.example.test/v1"
DOCUMENTS_PATH = "/v1/databases/db-main/collections/cards/documents"


def _store(client: httpx.AsyncClient) -> AppwriteDocumentStore:
    return AppwriteDocumentStore(
        endpoint=ENDPOINT,
        project_id="proj-1",
        database_id="db-main",
        api_key="secret-key",
        http_client=client,
    )


@pytest.mark.asyncio
async def test_list_sends_json_queries_and_auth_headers() -> None:
    captured: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"total": 1, "documents": [{"$id": "doc-1", "customerId": "cust-1"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        documents = await _store(client).list(
            "cards",
            [QueryFilter.equal("customerId", "cust-1"), QueryFilter.limit(5)],
        )

    assert documents == [{"$id": "doc-1", "customerId": "cust-1"}]
    request = captured[0]
    assert request.method == "GET"
    assert request.url.path == DOCUMENTS_PATH
    assert request.headers["X-Appwrite-Project"] == "proj-1"
    assert request.headers["X-Appwrite-Key"] == "secret-key"
    queries = [json.loads(item) for item in request.url.params.get_list("queries[]")]
    assert queries == [
        {"method": "equal", "attribute": "customerId", "values": ["cust-1"]},
        {"method": "limit", "values": [5]},
    ]


@pytest.mark.asyncio
async def test_create_posts_document_with_permissions() -> None:
    captured: list[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        captured.append(body)
        return httpx.Response(201, json={"$id": body["documentId"], **body["data"]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        document = await _store(client).create(
            "cards",
            "doc-9",
            {"customerId": "cust-1", "totalStamps": 1},
            owner_permissions("cafe-1"),
        )

    assert document["$id"] == "doc-9"
    assert captured[0]["permissions"] == ['read("user:cafe-1")', 'update("user:cafe-1")', 'delete("user:cafe-1")']
    assert captured[0]["data"] == {"customerId": "cust-1", "totalStamps": 1}


@pytest.mark.asyncio
async def test_update_patches_only_given_fields() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == f"{DOCUMENTS_PATH}/doc-1"
        body = json.loads(request.content)
        return httpx.Response(200, json={"$id": "doc-1", **body["data"]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        document = await _store(client).update("cards", "doc-1", {"isPinned": True})

    assert document == {"$id": "doc-1", "isPinned": True}


@pytest.mark.asyncio
async def test_error_responses_carry_status_code_and_message() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404,
            json={"message": "Document with the requested ID could not be found.", "code": 404, "type": "document_not_found"},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(StoreError) as excinfo:
            await _store(client).get("cards", "missing")

    assert excinfo.value.code == 404
    assert excinfo.value.is_not_found
    assert excinfo.value.error_type == "document_not_found"
    assert "could not be found" in excinfo.value.message


@pytest.mark.asyncio
async def test_unreachable_store_has_no_status_code() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(StoreError) as excinfo:
            await _store(client).list("cards")

    assert excinfo.value.code is None
    assert excinfo.value.is_unreachable


@pytest.mark.asyncio
async def test_delete_accepts_empty_response() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await _store(client).delete("cards", "doc-1") is None


@pytest.mark.asyncio
async def test_from_settings_uses_configured_project() -> None:
    captured: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"documents": []})

    config = Settings(store_endpoint=ENDPOINT, store_project_id="proj-2", store_database_id="db-main")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        store = AppwriteDocumentStore.from_settings(config, http_client=client)
        assert await store.list("cards") == []

    assert captured[0].headers["X-Appwrite-Project"] == "proj-2"
    assert "X-Appwrite-Key" not in captured[0].headers


def test_store_requires_project_and_database() -> None:
    with pytest.raises(ValueError):
        AppwriteDocumentStore(endpoint=ENDPOINT, project_id="", database_id="db")
    with pytest.raises(ValueError):
        AppwriteDocumentStore(endpoint=ENDPOINT, project_id="p", database_id="")
