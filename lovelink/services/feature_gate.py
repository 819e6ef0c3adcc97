"""Concrete feature limits derived from premium status."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from lovelink.repositories.moments_repo import MomentsRepository
from lovelink.services.models import FREE_MOMENTS_LIMIT, UNLIMITED, FeatureLimits, MomentsLimitCheck
from lovelink.services.partner_resolver import PartnerResolver
from lovelink.services.premium_service import PremiumStatusResolver

logger = logging.getLogger(__name__)

BASIC_PULSE_PATTERNS = ("heartbeat",)
PULSE_PATTERNS = ("heartbeat", "flutter", "steady", "excited", "calm")

FREE_LIMITS = FeatureLimits(
    moments_limit=FREE_MOMENTS_LIMIT,
    pulse_patterns=BASIC_PULSE_PATTERNS,
    plan_templates_enabled=False,
    bonus_session_packs_enabled=False,
    extended_moments_enabled=False,
    sessions_history_days=7,
    custom_pulse_patterns_enabled=False,
)

PREMIUM_LIMITS = FeatureLimits(
    moments_limit=UNLIMITED,
    pulse_patterns=PULSE_PATTERNS,
    plan_templates_enabled=True,
    bonus_session_packs_enabled=True,
    extended_moments_enabled=True,
    sessions_history_days=365,
    custom_pulse_patterns_enabled=True,
)


class FeatureGate:
    def __init__(
        self,
        premium: PremiumStatusResolver,
        partners: PartnerResolver,
        moments: MomentsRepository,
        *,
        free_moments_limit: int = FREE_MOMENTS_LIMIT,
    ) -> None:
        self._premium = premium
        self._partners = partners
        self._moments = moments
        self._free_limits = replace(FREE_LIMITS, moments_limit=free_moments_limit)

    def limits_for(self, is_premium: bool) -> FeatureLimits:
        return PREMIUM_LIMITS if is_premium else self._free_limits

    async def get_feature_limits(self, account_id: str) -> FeatureLimits:
        status = await self._premium.get_premium_status(account_id)
        return self.limits_for(status.is_premium)

    async def check_feature_access(self, account_id: str, feature_name: str) -> bool:
        limits = await self.get_feature_limits(account_id)
        return bool(getattr(limits, feature_name, False))

    async def get_available_pulse_patterns(self, account_id: str) -> tuple[str, ...]:
        limits = await self.get_feature_limits(account_id)
        return limits.pulse_patterns

    async def check_moments_limit(
        self,
        account_id: str,
        partnership_id: Optional[str] = None,
    ) -> MomentsLimitCheck:
        """Moment quota is shared by the couple, so it is counted per partnership."""
        status = await self._premium.get_premium_status(account_id)
        limits = self.limits_for(status.is_premium)
        free_limit = self._free_limits.moments_limit

        try:
            if partnership_id is None:
                partnership_id = await self._partners.active_partnership_id(account_id)
            if partnership_id is None:
                # nowhere to post yet
                return MomentsLimitCheck(allowed=True, current=0, limit=free_limit, is_premium=status.is_premium)
            current = await self._moments.count_for_partnership(partnership_id)
        except Exception as exc:
            logger.warning(
                "Moments count unavailable, blocking upload account=%s error=%s",
                account_id,
                getattr(exc, "code", type(exc).__name__),
            )
            return MomentsLimitCheck(allowed=False, current=0, limit=limits.moments_limit, is_premium=status.is_premium)

        allowed = limits.moments_limit is UNLIMITED or current < limits.moments_limit
        return MomentsLimitCheck(
            allowed=allowed,
            current=current,
            limit=limits.moments_limit,
            is_premium=status.is_premium,
        )
