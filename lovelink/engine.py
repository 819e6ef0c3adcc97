"""Entitlement engine: the surface gated screens and purchase flows call into."""

from __future__ import annotations

from typing import Optional, Union

from lovelink.core.clock import Clock, SystemClock
from lovelink.log import Loggin, account_context
from lovelink.repositories.moments_repo import MomentsRepository
from lovelink.repositories.partnership_repo import PartnershipRepository
from lovelink.repositories.profile_repo import ProfileRepository
from lovelink.services.feature_gate import FeatureGate
from lovelink.services.models import (
    FeatureLimits,
    MomentsLimitCheck,
    PartnerSyncState,
    PremiumPlan,
    PremiumStatus,
    PurchaseReceipt,
    PurchaseResult,
    TrialAccessStatus,
)
from lovelink.services.partner_resolver import PartnerResolver
from lovelink.services.premium_service import PremiumStatusResolver
from lovelink.services.purchase_client import PurchaseClient
from lovelink.services.purchase_service import PurchaseReconciler
from lovelink.services.supabase_admin import SupabaseAdminClient
from lovelink.services.trial_service import GatedFeature, TrialAccessResolver
from lovelink.settings import Settings, get_settings


class EntitlementEngine:
    def __init__(
        self,
        supabase: SupabaseAdminClient,
        settings: Settings,
        *,
        clock: Optional[Clock] = None,
        purchase_client: Optional[PurchaseClient] = None,
    ) -> None:
        clock = clock or SystemClock()
        profiles = ProfileRepository(
            supabase,
            table=settings.profiles_table,
            grant_rpc=settings.grant_premium_rpc,
        )
        partnerships = PartnershipRepository(supabase, table=settings.partnerships_table)
        moments = MomentsRepository(supabase, table=settings.moments_table)

        self.partners = PartnerResolver(profiles, partnerships)
        self.premium = PremiumStatusResolver(profiles, self.partners, clock=clock)
        self.trial = TrialAccessResolver(self.premium, profiles, clock=clock, trial_days=settings.trial_days)
        self.features = FeatureGate(
            self.premium,
            self.partners,
            moments,
            free_moments_limit=settings.free_moments_limit,
        )
        self.purchases = PurchaseReconciler(
            profiles,
            self.partners,
            clock=clock,
            purchase_client=purchase_client,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Clock] = None,
        purchase_client: Optional[PurchaseClient] = None,
        configure_logging: bool = False,
    ) -> "EntitlementEngine":
        settings = settings or get_settings()
        if configure_logging:
            Loggin(settings).setup_logger()
        return cls(SupabaseAdminClient(settings), settings, clock=clock, purchase_client=purchase_client)

    async def get_premium_status(self, account_id: str) -> PremiumStatus:
        with account_context(account_id):
            return await self.premium.get_premium_status(account_id)

    async def get_trial_access_status(self, account_id: str) -> TrialAccessStatus:
        with account_context(account_id):
            return await self.trial.get_trial_access_status(account_id)

    async def can_use_feature(self, account_id: str, feature: Union[GatedFeature, str]) -> bool:
        with account_context(account_id):
            return await self.trial.can_use_feature(account_id, feature)

    async def get_feature_limits(self, account_id: str) -> FeatureLimits:
        with account_context(account_id):
            return await self.features.get_feature_limits(account_id)

    async def check_moments_limit(self, account_id: str, partnership_id: Optional[str] = None) -> MomentsLimitCheck:
        with account_context(account_id):
            return await self.features.check_moments_limit(account_id, partnership_id)

    async def save_purchase(
        self,
        account_id: str,
        receipt: PurchaseReceipt,
        plan: Union[PremiumPlan, str],
    ) -> PurchaseResult:
        with account_context(account_id):
            return await self.purchases.save_purchase(account_id, receipt, plan)

    async def restore_purchases(self, account_id: str) -> PurchaseResult:
        with account_context(account_id):
            return await self.purchases.restore_purchases(account_id)

    async def resync_partner(self, account_id: str) -> PartnerSyncState:
        with account_context(account_id):
            return await self.purchases.resync_partner(account_id)
