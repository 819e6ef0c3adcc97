from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest

# keep tests away from a local .env and real Supabase credentials
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_PROJECT_ID"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""

from lovelink.engine import EntitlementEngine
from lovelink.services.supabase_admin import SupabaseAdminError
from lovelink.settings import Settings, get_settings

get_settings.cache_clear()

NOW = datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock pinned to one instant; tests move it with `set`."""

    def __init__(self, instant: datetime) -> None:
        self._instant = instant.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant.astimezone(timezone.utc)


@dataclass
class FakeCall:
    op: str
    table: str
    filters: dict[str, Any] = field(default_factory=dict)
    select: str = "*"
    values: Optional[dict[str, Any]] = None


def column_missing_error(column: str = "trial_access_bypass") -> SupabaseAdminError:
    return SupabaseAdminError(
        code="supabase_column_missing",
        message="Supabase request failed",
        status_code=400,
        hint=f"column profiles.{column} does not exist",
        postgrest_code="42703",
    )


def function_missing_error() -> SupabaseAdminError:
    return SupabaseAdminError(
        code="supabase_function_missing",
        message="Supabase rpc failed",
        status_code=404,
        postgrest_code="PGRST202",
    )


def backend_error(message: str = "db unavailable") -> SupabaseAdminError:
    return SupabaseAdminError(code="supabase_request_failed", message=message, status_code=503)


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    for key, raw in filters.items():
        expr = str(raw)
        if key == "or":
            options = expr.strip("()").split(",")
            if not any(_matches(row, {opt.split(".", 1)[0]: opt.split(".", 1)[1]}) for opt in options):
                return False
            continue
        op, _, value = expr.partition(".")
        assert op == "eq", f"unsupported filter operator {op}"
        if str(row.get(key)) != value:
            return False
    return True


def _project(row: dict[str, Any], select: str) -> dict[str, Any]:
    columns = [c.strip() for c in select.split(",") if c.strip()]
    if columns == ["*"]:
        return dict(row)
    return {c: row.get(c) for c in columns}


class FakeSupabase:
    """In-memory stand-in for SupabaseAdminClient with PostgREST-like semantics."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {"profiles": [], "partnerships": [], "moments": []}
        self.missing_columns: dict[str, set[str]] = {}
        self.failures: list[Callable[[FakeCall], Optional[BaseException]]] = []
        self.rpc_handler: Optional[Callable[[str, dict[str, Any]], Any]] = None
        self.calls: list[FakeCall] = []

    # -- seeding helpers
    def add_profile(self, account_id: str, **fields: Any) -> dict[str, Any]:
        row = {
            "id": account_id,
            "name": None,
            "partner_id": None,
            "is_premium": False,
            "premium_plan": None,
            "premium_since": None,
            "premium_expires": None,
            "iap_transaction_id": None,
            "iap_product_id": None,
            "created_at": "2026-02-27T00:00:00+00:00",
            "trial_access_bypass": False,
        }
        row.update(fields)
        self.tables["profiles"].append(row)
        return row

    def add_partnership(self, partnership_id: str, user1: str, user2: str, **fields: Any) -> dict[str, Any]:
        row = {
            "id": partnership_id,
            "user1_id": user1,
            "user2_id": user2,
            "status": "active",
            "created_at": "2026-01-01T00:00:00+00:00",
        }
        row.update(fields)
        self.tables["partnerships"].append(row)
        return row

    def add_moments(self, partnership_id: str, count: int) -> None:
        start = len(self.tables["moments"])
        for i in range(count):
            self.tables["moments"].append({"id": f"m-{start + i}", "partnership_id": partnership_id})

    def profile(self, account_id: str) -> dict[str, Any]:
        return next(row for row in self.tables["profiles"] if row["id"] == account_id)

    def fail_when(self, predicate: Callable[[FakeCall], bool], error: BaseException) -> None:
        self.failures.append(lambda call: error if predicate(call) else None)

    def calls_for(self, op: str, table: Optional[str] = None) -> list[FakeCall]:
        return [c for c in self.calls if c.op == op and (table is None or c.table == table)]

    # -- client surface
    def _record(self, call: FakeCall) -> None:
        self.calls.append(call)
        for check in self.failures:
            error = check(call)
            if error is not None:
                raise error
        missing = self.missing_columns.get(call.table, set())
        requested = {c.strip() for c in call.select.split(",")}
        if call.op == "fetch" and missing & requested:
            raise column_missing_error(sorted(missing & requested)[0])

    async def fetch_one(self, *, table: str, filters: dict[str, Any], select: str = "*") -> Optional[dict[str, Any]]:
        rows, _ = await self.fetch_list(table=table, filters=filters, select=select, limit=1)
        return rows[0] if rows else None

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
        self._record(FakeCall("fetch", table, dict(filters or {}), select))
        rows = [r for r in self.tables.get(table, []) if _matches(r, filters or {})]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
        total = len(rows) if with_count else None
        page = rows[offset : offset + limit]
        return [_project(copy.deepcopy(r), select) for r in page], total

    async def count_rows(self, *, table: str, filters: Optional[dict[str, Any]] = None) -> int:
        self._record(FakeCall("count", table, dict(filters or {}), "id"))
        return len([r for r in self.tables.get(table, []) if _matches(r, filters or {})])

    async def update_rows(
        self,
        *,
        table: str,
        filters: dict[str, Any],
        values: dict[str, Any],
        select: str = "*",
    ) -> Optional[dict[str, Any]]:
        self._record(FakeCall("update", table, dict(filters), select, dict(values)))
        updated = None
        for row in self.tables.get(table, []):
            if _matches(row, filters):
                row.update(values)
                updated = updated or _project(copy.deepcopy(row), select)
        return updated

    async def call_rpc(self, function: str, params: dict[str, Any]) -> Any:
        self._record(FakeCall("rpc", function, {}, "*", dict(params)))
        if self.rpc_handler is None:
            raise function_missing_error()
        return self.rpc_handler(function, params)


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def engine(fake_supabase: FakeSupabase, settings: Settings, clock: FixedClock) -> EntitlementEngine:
    return EntitlementEngine(fake_supabase, settings, clock=clock)
