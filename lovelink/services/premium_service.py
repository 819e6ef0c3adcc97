"""Premium status resolution: own subscription first, then the linked partner's.

One subscription covers the couple, so either partner's purchase unlocks both
accounts. Read failures resolve to "not premium" rather than raising.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from lovelink.core.clock import Clock, SystemClock
from lovelink.repositories.profile_repo import ProfileRepository
from lovelink.services.models import EntitlementRecord, FailurePolicy, PremiumSource, PremiumStatus
from lovelink.services.partner_resolver import PartnerResolver

logger = logging.getLogger(__name__)


class PremiumStatusResolver:
    FAILURE_POLICY = FailurePolicy.FAIL_CLOSED

    def __init__(
        self,
        profiles: ProfileRepository,
        partners: PartnerResolver,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._profiles = profiles
        self._partners = partners
        self._clock = clock or SystemClock()

    async def get_premium_status(self, account_id: str) -> PremiumStatus:
        try:
            return await self._resolve(account_id)
        except Exception as exc:
            logger.warning(
                "Premium status unavailable, failing closed account=%s error=%s",
                account_id,
                getattr(exc, "code", type(exc).__name__),
            )
            return PremiumStatus.not_premium()

    async def _resolve(self, account_id: str) -> PremiumStatus:
        now = self._clock.now()

        own = await self._profiles.get_entitlement_record(account_id)
        _warn_unreadable_expiry(own)
        if own.is_currently_valid(now):
            return PremiumStatus(
                is_premium=True,
                source=PremiumSource.SELF,
                plan=own.premium_plan,
                since=own.premium_granted_at,
                expires=own.premium_expires_at,
            )

        partner_id = await self._partners.resolve_partner_id(account_id, record=own)
        if not partner_id:
            return PremiumStatus.not_premium()

        partner = await self._profiles.get_entitlement_record(partner_id)
        _warn_unreadable_expiry(partner)
        if partner.is_currently_valid(now):
            return PremiumStatus(
                is_premium=True,
                source=PremiumSource.PARTNER,
                plan=partner.premium_plan,
                since=partner.premium_granted_at,
                expires=partner.premium_expires_at,
                partner_name=partner.display_name,
            )
        return PremiumStatus.not_premium()


def _warn_unreadable_expiry(record: EntitlementRecord) -> None:
    if record.expiry_unreadable:
        logger.warning("Unreadable premium_expires, treating as expired account=%s", record.account_id)


def format_premium_expiry(expires: Optional[datetime], now: datetime) -> str:
    """Human label for a subscription expiry relative to `now`."""
    if expires is None:
        return "Never"

    days_left = math.ceil((expires - now) / timedelta(days=1))
    if days_left < 0:
        return "Expired"
    if days_left == 0:
        return "Expires today"
    if days_left == 1:
        return "Expires tomorrow"
    if days_left <= 7:
        return f"Expires in {days_left} days"
    return f"Expires {expires.date().isoformat()}"
