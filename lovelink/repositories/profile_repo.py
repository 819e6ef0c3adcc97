"""Account entitlement records backed by the Supabase `profiles` table."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from lovelink.core.clock import isoformat, parse_timestamp
from lovelink.services.models import EntitlementRecord, PremiumPlan, TrialProfile
from lovelink.services.supabase_admin import SupabaseAdminClient

PREMIUM_COLUMNS = "id, name, partner_id, is_premium, premium_plan, premium_since, premium_expires"
PURCHASE_MARKER_COLUMNS = "id, partner_id, iap_transaction_id, iap_product_id"
TRIAL_COLUMNS = "created_at, trial_access_bypass"
TRIAL_FALLBACK_COLUMNS = "created_at"


class ProfileRepository:
    def __init__(
        self,
        supabase: SupabaseAdminClient,
        *,
        table: str = "profiles",
        grant_rpc: str = "grant_premium_from_iap",
    ) -> None:
        self._supabase = supabase
        self._table = table
        self._grant_rpc = grant_rpc

    async def _fetch(self, account_id: str, select: str) -> Optional[dict[str, Any]]:
        return await self._supabase.fetch_one(
            table=self._table,
            filters={"id": f"eq.{account_id}"},
            select=select,
        )

    async def get_entitlement_record(self, account_id: str) -> EntitlementRecord:
        """Premium fields of an account; a missing row reads as not premium."""
        row = await self._fetch(account_id, PREMIUM_COLUMNS)
        return EntitlementRecord.from_row(account_id, row)

    async def get_purchase_marker(self, account_id: str) -> Optional[EntitlementRecord]:
        row = await self._fetch(account_id, PURCHASE_MARKER_COLUMNS)
        if row is None:
            return None
        return EntitlementRecord.from_row(account_id, row)

    async def get_trial_profile(self, account_id: str, *, include_bypass: bool = True) -> TrialProfile:
        """Trial anchor for an account.

        With include_bypass=False only `created_at` is requested, for schemas that
        predate the `trial_access_bypass` column.
        """
        row = await self._fetch(account_id, TRIAL_COLUMNS if include_bypass else TRIAL_FALLBACK_COLUMNS)
        if row is None:
            return TrialProfile(created_at=None, trial_access_bypass=False)
        return TrialProfile(
            created_at=parse_timestamp(row.get("created_at")),
            trial_access_bypass=include_bypass and row.get("trial_access_bypass") is True,
        )

    async def write_premium(
        self,
        account_id: str,
        *,
        plan: PremiumPlan,
        granted_at: Optional[datetime],
        expires_at: Optional[datetime],
        transaction_id: Optional[str] = None,
        product_id: Optional[str] = None,
        granted_by: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        values: dict[str, Any] = {
            "is_premium": True,
            "premium_plan": plan.value,
            "premium_since": isoformat(granted_at),
            "premium_expires": isoformat(expires_at),
        }
        if product_id is not None:
            values["iap_transaction_id"] = transaction_id
            values["iap_product_id"] = product_id
        if granted_by is not None:
            values["premium_granted_by"] = granted_by
        return await self._supabase.update_rows(
            table=self._table,
            filters={"id": f"eq.{account_id}"},
            values=values,
            select=PREMIUM_COLUMNS,
        )

    async def grant_premium_atomically(
        self,
        account_id: str,
        *,
        product_id: str,
        transaction_id: Optional[str],
        plan: PremiumPlan,
        granted_at: datetime,
        expires_at: datetime,
    ) -> Any:
        """Purchaser and partner grant in one server-side transaction."""
        return await self._supabase.call_rpc(
            self._grant_rpc,
            {
                "p_user_id": account_id,
                "p_product_id": product_id,
                "p_transaction_id": transaction_id,
                "p_plan": plan.value,
                "p_premium_since": isoformat(granted_at),
                "p_premium_expires": isoformat(expires_at),
            },
        )
