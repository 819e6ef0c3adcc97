"""Reconcile store purchase receipts into durable premium entitlements.

The purchaser's grant is the primary phase and must succeed. Copying the grant to
the linked partner is a secondary phase: when it fails the purchase still counts,
the failure is logged and reported, and `resync_partner` can re-drive it later.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from lovelink.core.clock import Clock, SystemClock
from lovelink.repositories.profile_repo import ProfileRepository
from lovelink.services.models import PartnerSyncState, PremiumPlan, PurchaseReceipt, PurchaseResult
from lovelink.services.partner_resolver import PartnerResolver
from lovelink.services.purchase_client import PurchaseClient, is_supported_product_id, plan_for_product_id
from lovelink.services.supabase_admin import SupabaseAdminError

logger = logging.getLogger(__name__)


def is_missing_function_error(exc: BaseException) -> bool:
    """True when the grant procedure is simply not deployed on this database."""
    return isinstance(exc, SupabaseAdminError) and exc.code == "supabase_function_missing"


def calculate_premium_expiry(plan: PremiumPlan, granted_at: datetime) -> datetime:
    """Calendar-aware expiry; month ends clamp (Jan 31 + 1 month -> Feb 28/29)."""
    if plan is PremiumPlan.YEARLY:
        return granted_at + relativedelta(years=1)
    return granted_at + relativedelta(months=1)


class PurchaseReconciler:
    def __init__(
        self,
        profiles: ProfileRepository,
        partners: PartnerResolver,
        *,
        clock: Optional[Clock] = None,
        purchase_client: Optional[PurchaseClient] = None,
    ) -> None:
        self._profiles = profiles
        self._partners = partners
        self._clock = clock or SystemClock()
        self._purchase_client = purchase_client

    async def save_purchase(
        self,
        account_id: str,
        receipt: PurchaseReceipt,
        plan: Union[PremiumPlan, str],
    ) -> PurchaseResult:
        if not account_id:
            return PurchaseResult.failure("Missing user id")
        if receipt is None or not receipt.product_id:
            return PurchaseResult.failure("Missing purchase product id")
        if not is_supported_product_id(receipt.product_id):
            return PurchaseResult.failure("Unsupported subscription product id")
        parsed_plan = PremiumPlan.parse(plan)
        if parsed_plan is None:
            return PurchaseResult.failure("Invalid premium plan")

        try:
            marker = await self._profiles.get_purchase_marker(account_id)
        except SupabaseAdminError as exc:
            logger.error("Purchase marker read failed account=%s code=%s", account_id, exc.code)
            return PurchaseResult.failure(str(exc) or "Failed to save purchase")
        if marker is None:
            return PurchaseResult.failure("Account profile not found")

        # purchase listeners may redeliver the same transaction
        if receipt.transaction_id and marker.last_purchase_transaction_id == receipt.transaction_id:
            logger.info(
                "Purchase already applied account=%s transaction=%s", account_id, receipt.transaction_id
            )
            return PurchaseResult(success=True, already_applied=True, plan=parsed_plan)

        granted_at = self._clock.now()
        expires_at = calculate_premium_expiry(parsed_plan, granted_at)

        try:
            rpc_data = await self._profiles.grant_premium_atomically(
                account_id,
                product_id=receipt.product_id,
                transaction_id=receipt.transaction_id,
                plan=parsed_plan,
                granted_at=granted_at,
                expires_at=expires_at,
            )
        except SupabaseAdminError as exc:
            if not is_missing_function_error(exc):
                logger.error("Premium grant procedure failed account=%s code=%s", account_id, exc.code)
                return PurchaseResult.failure(str(exc) or "Failed to save purchase")
            logger.warning("Premium grant procedure not deployed, using two-step grant account=%s", account_id)
            return await self._grant_in_two_phases(
                account_id,
                receipt,
                parsed_plan,
                granted_at=granted_at,
                expires_at=expires_at,
                marker_partner=marker.linked_partner_id,
            )

        if isinstance(rpc_data, dict) and rpc_data.get("success") is False:
            return PurchaseResult.failure(str(rpc_data.get("error") or "Failed to save purchase"))

        partner_id = rpc_data.get("partner_id") if isinstance(rpc_data, dict) else None
        return PurchaseResult(
            success=True,
            plan=parsed_plan,
            granted_at=granted_at,
            expires_at=expires_at,
            partner_sync=PartnerSyncState.ATOMIC,
            partner_id=str(partner_id) if partner_id else None,
        )

    async def _grant_in_two_phases(
        self,
        account_id: str,
        receipt: PurchaseReceipt,
        plan: PremiumPlan,
        *,
        granted_at: datetime,
        expires_at: datetime,
        marker_partner: Optional[str],
    ) -> PurchaseResult:
        try:
            await self._profiles.write_premium(
                account_id,
                plan=plan,
                granted_at=granted_at,
                expires_at=expires_at,
                transaction_id=receipt.transaction_id,
                product_id=receipt.product_id,
            )
        except SupabaseAdminError as exc:
            logger.error("Premium grant write failed account=%s code=%s", account_id, exc.code)
            return PurchaseResult.failure(str(exc) or "Failed to save purchase")

        partner_sync, partner_id = await self._sync_partner(
            account_id, plan, granted_at=granted_at, expires_at=expires_at, linked_partner_id=marker_partner
        )
        return PurchaseResult(
            success=True,
            plan=plan,
            granted_at=granted_at,
            expires_at=expires_at,
            partner_sync=partner_sync,
            partner_id=partner_id,
        )

    async def _sync_partner(
        self,
        account_id: str,
        plan: PremiumPlan,
        *,
        granted_at: Optional[datetime],
        expires_at: Optional[datetime],
        linked_partner_id: Optional[str] = None,
    ) -> tuple[PartnerSyncState, Optional[str]]:
        partner_id = linked_partner_id
        try:
            if partner_id is None:
                partner_id = await self._partners.resolve_partner_id(account_id)
            if not partner_id:
                return PartnerSyncState.NO_PARTNER, None
            updated = await self._profiles.write_premium(
                partner_id,
                plan=plan,
                granted_at=granted_at,
                expires_at=expires_at,
                granted_by=account_id,
            )
        except SupabaseAdminError as exc:
            logger.error(
                "Partner premium sync failed account=%s partner=%s code=%s",
                account_id,
                partner_id,
                exc.code,
            )
            return PartnerSyncState.FAILED, partner_id
        if updated is None:
            # stale pointer or deleted profile: nothing was written
            logger.error("Partner premium sync matched no profile account=%s partner=%s", account_id, partner_id)
            return PartnerSyncState.FAILED, partner_id
        return PartnerSyncState.SYNCED, partner_id

    async def resync_partner(self, account_id: str) -> PartnerSyncState:
        """Re-drive the partner phase from the purchaser's stored entitlement."""
        record = await self._profiles.get_entitlement_record(account_id)
        if not record.is_currently_valid(self._clock.now()) or record.premium_plan is None:
            return PartnerSyncState.SKIPPED
        state, _ = await self._sync_partner(
            account_id,
            record.premium_plan,
            granted_at=record.premium_granted_at,
            expires_at=record.premium_expires_at,
            linked_partner_id=record.linked_partner_id,
        )
        return state

    async def restore_purchases(self, account_id: str) -> PurchaseResult:
        if self._purchase_client is None:
            return PurchaseResult.failure("Purchase client is not configured")
        try:
            receipt = await self._purchase_client.check_active_subscription()
        except Exception as exc:
            logger.warning(
                "Restore purchases failed account=%s error=%s",
                account_id,
                getattr(exc, "code", type(exc).__name__),
            )
            return PurchaseResult.failure("Failed to restore purchases")
        if receipt is None:
            return PurchaseResult.failure("No active subscription to restore")
        plan = plan_for_product_id(receipt.product_id)
        return await self.save_purchase(account_id, receipt, plan)
