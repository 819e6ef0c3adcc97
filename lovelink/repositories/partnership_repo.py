"""Read-only access to active partnerships."""

from __future__ import annotations

from typing import Any, Optional

from lovelink.services.supabase_admin import SupabaseAdminClient


class PartnershipRepository:
    def __init__(self, supabase: SupabaseAdminClient, *, table: str = "partnerships") -> None:
        self._supabase = supabase
        self._table = table

    async def latest_active(self, account_id: str) -> Optional[dict[str, Any]]:
        """Most recent active partnership where the account is on either side."""
        rows, _ = await self._supabase.fetch_list(
            table=self._table,
            filters={
                "or": f"(user1_id.eq.{account_id},user2_id.eq.{account_id})",
                "status": "eq.active",
            },
            select="id, user1_id, user2_id, status, created_at",
            order="created_at.desc",
            limit=1,
        )
        return rows[0] if rows else None
