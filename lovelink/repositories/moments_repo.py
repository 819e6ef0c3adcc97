from __future__ import annotations

from lovelink.services.supabase_admin import SupabaseAdminClient


class MomentsRepository:
    def __init__(self, supabase: SupabaseAdminClient, *, table: str = "moments") -> None:
        self._supabase = supabase
        self._table = table

    async def count_for_partnership(self, partnership_id: str) -> int:
        return await self._supabase.count_rows(
            table=self._table,
            filters={"partnership_id": f"eq.{partnership_id}"},
        )
