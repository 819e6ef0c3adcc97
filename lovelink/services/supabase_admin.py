"""Supabase admin client (service role) for PostgREST reads, writes and RPCs."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from lovelink.settings import Settings

logger = logging.getLogger(__name__)

# PostgREST / PostgreSQL codes that map to a stable engine error code.
_POSTGREST_CODE_MAP: dict[str, tuple[str, Optional[str]]] = {
    "PGRST205": ("supabase_table_missing", "Table is missing or not exposed through PostgREST"),
    "PGRST204": ("supabase_column_missing", "Column is missing from the schema cache; run pending migrations"),
    "42703": ("supabase_column_missing", "Column does not exist; run pending migrations"),
    "PGRST202": ("supabase_function_missing", "RPC function is not deployed"),
    "42883": ("supabase_function_missing", "RPC function is not deployed"),
    "23503": ("supabase_foreign_key_violation", "Referenced account does not exist or was deleted"),
}


def _extract_postgrest_error_hint(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except Exception:
        return None

    if not isinstance(data, dict):
        return None

    parts: list[str] = []
    for key in ("message", "hint", "details", "error_description", "error"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            parts.append(value.strip())

    code = data.get("code")
    if isinstance(code, str) and code.strip():
        parts.append(f"code={code.strip()}")

    if not parts:
        return None

    text = "; ".join(dict.fromkeys(parts))  # preserve order + dedupe
    return text[:240]


def _extract_postgrest_error_code(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except Exception:
        return None

    if not isinstance(data, dict):
        return None

    code = data.get("code")
    if isinstance(code, str) and code.strip():
        return code.strip()
    return None


def _merge_hints(primary: Optional[str], extra: Optional[str]) -> Optional[str]:
    primary_text = (primary or "").strip()
    extra_text = (extra or "").strip()
    if not primary_text:
        return extra_text or None
    if not extra_text:
        return primary_text or None
    return f"{primary_text}; {extra_text}"[:240]


def _fallback_hint_for_status(status_code: int, *, table: Optional[str] = None) -> Optional[str]:
    if status_code in (401, 403):
        return "Check that SUPABASE_SERVICE_ROLE_KEY is valid and carries the service_role claim"
    if status_code == 404 and table:
        return f"Check that {table} exists and is exposed through PostgREST"
    return None


def _map_postgrest_code_to_error(postgrest_code: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Map PostgREST/PG error codes to a stable engine error code + hint."""
    if not postgrest_code:
        return None, None
    return _POSTGREST_CODE_MAP.get(str(postgrest_code).strip(), (None, None))


class SupabaseAdminError(RuntimeError):
    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int = 500,
        hint: Optional[str] = None,
        postgrest_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.hint = hint
        self.postgrest_code = postgrest_code


def _error_from_status(exc: httpx.HTTPStatusError, *, target: str, action: str) -> SupabaseAdminError:
    status = int(getattr(exc.response, "status_code", 0) or 0) or 502
    logger.warning("Supabase admin %s failed target=%s status=%s", action, target, status)
    postgrest_code = _extract_postgrest_error_code(exc.response)
    extracted_hint = _extract_postgrest_error_hint(exc.response)
    hint = extracted_hint or _fallback_hint_for_status(status, table=target)
    mapped_code, mapped_hint = _map_postgrest_code_to_error(postgrest_code)
    if mapped_code:
        return SupabaseAdminError(
            code=mapped_code,
            message=f"Supabase {action} failed",
            status_code=status,
            hint=_merge_hints(hint, mapped_hint),
            postgrest_code=postgrest_code,
        )
    return SupabaseAdminError(
        code=f"supabase_{action}_failed",
        message=f"Supabase {action} failed",
        status_code=status,
        hint=hint,
        postgrest_code=postgrest_code,
    )


def _error_from_transport(exc: httpx.HTTPError, *, target: str, action: str) -> SupabaseAdminError:
    logger.warning("Supabase admin %s error target=%s error=%s", action, target, type(exc).__name__)
    return SupabaseAdminError(
        code=f"supabase_{action}_error",
        message=f"Supabase {action} error",
        status_code=502,
    )


def _first_row(data: Any) -> Optional[dict[str, Any]]:
    if isinstance(data, dict):
        return data
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return None


class SupabaseAdminClient:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._base_url = self._resolve_base_url(settings)
        self._service_role_key = settings.supabase_service_role_key
        if not self._service_role_key:
            raise SupabaseAdminError(
                code="supabase_service_role_key_missing",
                message="Supabase service role key is not configured",
                status_code=500,
                hint="Set SUPABASE_SERVICE_ROLE_KEY",
            )
        self._timeout = settings.http_timeout_seconds

    @staticmethod
    def _resolve_base_url(settings: Settings) -> str:
        if settings.supabase_url:
            return str(settings.supabase_url).rstrip("/")
        if settings.supabase_project_id:
            return f"https://{settings.supabase_project_id}.supabase.co"
        raise SupabaseAdminError(
            code="supabase_not_configured",
            message="Supabase is not configured",
            status_code=500,
            hint="Set SUPABASE_URL or SUPABASE_PROJECT_ID",
        )

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update({k: str(v) for k, v in extra.items()})
        return headers

    @staticmethod
    def _parse_content_range_total(value: Optional[str]) -> Optional[int]:
        """Parse PostgREST Content-Range total like "0-0/123"."""
        if not value:
            return None
        if "/" not in value:
            return None
        total_text = value.split("/", 1)[-1].strip()
        try:
            return int(total_text)
        except Exception:
            return None

    async def fetch_one(
        self,
        *,
        table: str,
        filters: dict[str, Any],
        select: str = "*",
    ) -> Optional[dict[str, Any]]:
        """Fetch a single row matching PostgREST filters.

        Returns None when the row is missing.
        """
        rows, _ = await self.fetch_list(table=table, filters=filters, select=select, limit=1)
        if not rows:
            return None
        return rows[0]

    async def fetch_list(
        self,
        *,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        select: str = "*",
        order: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        with_count: bool = False,
    ) -> tuple[list[dict[str, Any]], Optional[int]]:
        """Fetch rows from a table with optional exact count.

        Notes:
        - Filters are raw PostgREST operators, e.g. {"id": "eq.abc", "or": "(a.eq.1,b.eq.1)"}.
        - PostgREST count is returned in Content-Range when Prefer: count=exact is set.
        """
        url = f"{self._base_url}/rest/v1/{table}"

        params: dict[str, Any] = {"select": select, "limit": int(limit), "offset": int(offset)}
        if order:
            params["order"] = str(order)
        if filters:
            params.update({k: str(v) for k, v in filters.items() if v is not None})

        headers = self._headers({"Prefer": "count=exact"} if with_count else None)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, headers=headers, params=params)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _error_from_status(exc, target=table, action="request") from exc
        except httpx.HTTPError as exc:
            raise _error_from_transport(exc, target=table, action="request") from exc

        total: Optional[int] = None
        if with_count:
            total = self._parse_content_range_total(response.headers.get("content-range"))

        try:
            data = response.json()
        except ValueError as exc:
            raise SupabaseAdminError(
                code="supabase_response_invalid",
                message="Supabase response is not valid JSON",
                status_code=502,
            ) from exc

        if not isinstance(data, list):
            raise SupabaseAdminError(
                code="supabase_response_invalid",
                message="Supabase response is not a list",
                status_code=502,
            )

        items: list[dict[str, Any]] = [row for row in data if isinstance(row, dict)]
        return items, total

    async def count_rows(
        self,
        *,
        table: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> int:
        """Count rows using Prefer: count=exact."""
        _, total = await self.fetch_list(
            table=table,
            filters=filters,
            select="id",
            limit=1,
            offset=0,
            with_count=True,
        )
        return int(total or 0)

    async def update_rows(
        self,
        *,
        table: str,
        filters: dict[str, Any],
        values: dict[str, Any],
        select: str = "*",
    ) -> Optional[dict[str, Any]]:
        """PATCH rows matching filters and return the first updated row (best-effort)."""
        if not filters:
            raise SupabaseAdminError(
                code="supabase_update_unfiltered",
                message="Refusing to update without filters",
                status_code=400,
            )
        url = f"{self._base_url}/rest/v1/{table}"
        params: dict[str, Any] = {k: str(v) for k, v in filters.items() if v is not None}
        params["select"] = select
        headers = self._headers({"Prefer": "return=representation"})

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.patch(url, headers=headers, params=params, json=values)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _error_from_status(exc, target=table, action="update") from exc
        except httpx.HTTPError as exc:
            raise _error_from_transport(exc, target=table, action="update") from exc

        try:
            data = response.json()
        except ValueError:
            return None
        return _first_row(data)

    async def call_rpc(self, function: str, params: dict[str, Any]) -> Any:
        """Invoke a Postgres function through /rest/v1/rpc and return its JSON result."""
        url = f"{self._base_url}/rest/v1/rpc/{function}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, headers=self._headers(), json=params)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _error_from_status(exc, target=f"rpc/{function}", action="rpc") from exc
        except httpx.HTTPError as exc:
            raise _error_from_transport(exc, target=f"rpc/{function}", action="rpc") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None
