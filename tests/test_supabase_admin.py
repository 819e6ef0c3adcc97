from __future__ import annotations

from typing import Any

import httpx
import pytest

from lovelink.services.supabase_admin import SupabaseAdminClient, SupabaseAdminError
from lovelink.settings import Settings

BASE_URL = "https://demo.supabase.co"


class DummyAsyncClient:
    """Replays queued httpx responses and records outgoing requests."""

    responses: list[Any] = []
    requests: list[dict[str, Any]] = []

    def __init__(self, *args, **kwargs):
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def _reply(self, method: str, url: str, **kwargs) -> httpx.Response:
        DummyAsyncClient.requests.append({"method": method, "url": url, **kwargs})
        outcome = DummyAsyncClient.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        status, payload, headers = outcome
        request = httpx.Request(method, url)
        if payload is None:
            return httpx.Response(status, headers=headers, request=request)
        return httpx.Response(status, json=payload, headers=headers, request=request)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return self._reply("GET", url, **kwargs)

    async def patch(self, url: str, **kwargs) -> httpx.Response:
        return self._reply("PATCH", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return self._reply("POST", url, **kwargs)


def queue(status: int, payload: Any = None, headers: dict[str, str] | None = None) -> None:
    DummyAsyncClient.responses.append((status, payload, headers or {}))


@pytest.fixture
def client(monkeypatch) -> SupabaseAdminClient:
    DummyAsyncClient.responses = []
    DummyAsyncClient.requests = []
    monkeypatch.setattr("lovelink.services.supabase_admin.httpx.AsyncClient", DummyAsyncClient)
    settings = Settings(_env_file=None, supabase_url=BASE_URL, supabase_service_role_key="service-key")
    return SupabaseAdminClient(settings)


def test_requires_service_role_key() -> None:
    settings = Settings(_env_file=None, supabase_project_id="demo")

    with pytest.raises(SupabaseAdminError) as exc_info:
        SupabaseAdminClient(settings)

    assert exc_info.value.code == "supabase_service_role_key_missing"


def test_requires_project_location() -> None:
    settings = Settings(_env_file=None, supabase_service_role_key="service-key")

    with pytest.raises(SupabaseAdminError) as exc_info:
        SupabaseAdminClient(settings)

    assert exc_info.value.code == "supabase_not_configured"


@pytest.mark.asyncio
async def test_project_id_builds_base_url(monkeypatch) -> None:
    DummyAsyncClient.responses = []
    DummyAsyncClient.requests = []
    monkeypatch.setattr("lovelink.services.supabase_admin.httpx.AsyncClient", DummyAsyncClient)
    admin = SupabaseAdminClient(
        Settings(_env_file=None, supabase_project_id="abc123", supabase_service_role_key="service-key")
    )
    queue(200, [])

    assert await admin.fetch_one(table="profiles", filters={"id": "eq.u1"}) is None
    assert DummyAsyncClient.requests[0]["url"] == "https://abc123.supabase.co/rest/v1/profiles"


@pytest.mark.asyncio
async def test_fetch_one_sends_postgrest_filters(client) -> None:
    queue(200, [{"id": "u1", "is_premium": True}])

    row = await client.fetch_one(table="profiles", filters={"id": "eq.u1"}, select="id, is_premium")

    assert row == {"id": "u1", "is_premium": True}
    [request] = DummyAsyncClient.requests
    assert request["url"] == f"{BASE_URL}/rest/v1/profiles"
    assert request["params"] == {"select": "id, is_premium", "limit": 1, "offset": 0, "id": "eq.u1"}
    assert request["headers"]["apikey"] == "service-key"
    assert request["headers"]["Authorization"] == "Bearer service-key"


@pytest.mark.asyncio
async def test_count_rows_reads_content_range(client) -> None:
    queue(200, [{"id": "m1"}], {"content-range": "0-0/42"})

    total = await client.count_rows(table="moments", filters={"partnership_id": "eq.p1"})

    assert total == 42
    [request] = DummyAsyncClient.requests
    assert request["headers"]["Prefer"] == "count=exact"
    assert request["params"]["partnership_id"] == "eq.p1"


@pytest.mark.asyncio
async def test_missing_column_is_mapped(client) -> None:
    queue(400, {"code": "42703", "message": "column profiles.trial_access_bypass does not exist"})

    with pytest.raises(SupabaseAdminError) as exc_info:
        await client.fetch_one(table="profiles", filters={"id": "eq.u1"}, select="created_at, trial_access_bypass")

    error = exc_info.value
    assert error.code == "supabase_column_missing"
    assert error.status_code == 400
    assert error.postgrest_code == "42703"
    assert "trial_access_bypass" in (error.hint or "")


@pytest.mark.asyncio
async def test_missing_function_is_mapped(client) -> None:
    queue(404, {"code": "PGRST202", "message": "Could not find the function"})

    with pytest.raises(SupabaseAdminError) as exc_info:
        await client.call_rpc("grant_premium_from_iap", {"p_user_id": "u1"})

    assert exc_info.value.code == "supabase_function_missing"
    assert DummyAsyncClient.requests[0]["url"] == f"{BASE_URL}/rest/v1/rpc/grant_premium_from_iap"
    assert DummyAsyncClient.requests[0]["json"] == {"p_user_id": "u1"}


@pytest.mark.asyncio
async def test_unmapped_status_keeps_action_code(client) -> None:
    queue(503, {"message": "upstream unavailable"})

    with pytest.raises(SupabaseAdminError) as exc_info:
        await client.update_rows(table="profiles", filters={"id": "eq.u1"}, values={"is_premium": True})

    assert exc_info.value.code == "supabase_update_failed"
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_error_is_bad_gateway(client) -> None:
    DummyAsyncClient.responses.append(
        httpx.ConnectError("connection refused", request=httpx.Request("GET", BASE_URL))
    )

    with pytest.raises(SupabaseAdminError) as exc_info:
        await client.fetch_list(table="partnerships")

    assert exc_info.value.code == "supabase_request_error"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_non_list_response_is_invalid(client) -> None:
    queue(200, {"id": "u1"})

    with pytest.raises(SupabaseAdminError) as exc_info:
        await client.fetch_list(table="profiles")

    assert exc_info.value.code == "supabase_response_invalid"


@pytest.mark.asyncio
async def test_update_returns_first_row(client) -> None:
    queue(200, [{"id": "u1", "is_premium": True}])

    row = await client.update_rows(
        table="profiles", filters={"id": "eq.u1"}, values={"is_premium": True}, select="id, is_premium"
    )

    assert row == {"id": "u1", "is_premium": True}
    [request] = DummyAsyncClient.requests
    assert request["method"] == "PATCH"
    assert request["headers"]["Prefer"] == "return=representation"
    assert request["json"] == {"is_premium": True}


@pytest.mark.asyncio
async def test_update_without_filters_is_refused(client) -> None:
    with pytest.raises(SupabaseAdminError) as exc_info:
        await client.update_rows(table="profiles", filters={}, values={"is_premium": True})

    assert exc_info.value.code == "supabase_update_unfiltered"
    assert DummyAsyncClient.requests == []


@pytest.mark.asyncio
async def test_rpc_empty_body(client) -> None:
    queue(204)

    assert await client.call_rpc("grant_premium_from_iap", {}) is None
