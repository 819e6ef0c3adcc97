"""Free-trial access for accounts without premium."""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from enum import Enum
from typing import Optional, Union

from lovelink.core.clock import Clock, SystemClock
from lovelink.repositories.profile_repo import ProfileRepository
from lovelink.services.models import TRIAL_DAYS, AccessReason, FailurePolicy, TrialAccessStatus, TrialProfile
from lovelink.services.premium_service import PremiumStatusResolver
from lovelink.services.supabase_admin import SupabaseAdminError

logger = logging.getLogger(__name__)

class GatedFeature(str, Enum):
    DAILY_SESSION = "daily_session"
    MOMENTS = "moments"
    PULSE = "pulse"
    PLANS = "plans"


GATED_FEATURES = frozenset(GatedFeature)


def is_missing_column_error(exc: BaseException) -> bool:
    """True when a read failed only because a newer column is not migrated yet."""
    return isinstance(exc, SupabaseAdminError) and exc.code == "supabase_column_missing"


def _error_status() -> TrialAccessStatus:
    return TrialAccessStatus(
        has_access=False,
        is_premium=False,
        is_in_trial=False,
        days_remaining=0,
        trial_ends_at=None,
        reason=AccessReason.ERROR,
    )


class TrialAccessResolver:
    # errors deny access and are reported as AccessReason.ERROR, not EXPIRED
    FAILURE_POLICY = FailurePolicy.FAIL_CLOSED

    def __init__(
        self,
        premium: PremiumStatusResolver,
        profiles: ProfileRepository,
        *,
        clock: Optional[Clock] = None,
        trial_days: int = TRIAL_DAYS,
    ) -> None:
        self._premium = premium
        self._profiles = profiles
        self._clock = clock or SystemClock()
        self._trial_length = timedelta(days=trial_days)

    async def get_trial_access_status(self, account_id: str) -> TrialAccessStatus:
        status = await self._premium.get_premium_status(account_id)
        if status.is_premium:
            return TrialAccessStatus(
                has_access=True,
                is_premium=True,
                is_in_trial=False,
                days_remaining=None,
                trial_ends_at=None,
                reason=AccessReason.PREMIUM,
            )

        try:
            profile = await self._load_trial_profile(account_id)
        except Exception as exc:
            logger.warning(
                "Trial profile read failed, denying access account=%s error=%s",
                account_id,
                getattr(exc, "code", type(exc).__name__),
            )
            return _error_status()

        if profile.trial_access_bypass:
            return TrialAccessStatus(
                has_access=True,
                is_premium=False,
                is_in_trial=False,
                days_remaining=None,
                trial_ends_at=None,
                reason=AccessReason.BYPASS,
            )

        now = self._clock.now()
        # a missing creation timestamp starts a fresh trial rather than locking the account
        started_at = profile.created_at or now
        trial_ends_at = started_at + self._trial_length

        if now < trial_ends_at:
            return TrialAccessStatus(
                has_access=True,
                is_premium=False,
                is_in_trial=True,
                days_remaining=math.ceil((trial_ends_at - now) / timedelta(days=1)),
                trial_ends_at=trial_ends_at,
                reason=AccessReason.TRIAL,
            )
        return TrialAccessStatus(
            has_access=False,
            is_premium=False,
            is_in_trial=False,
            days_remaining=0,
            trial_ends_at=trial_ends_at,
            reason=AccessReason.EXPIRED,
        )

    async def _load_trial_profile(self, account_id: str) -> TrialProfile:
        try:
            return await self._profiles.get_trial_profile(account_id, include_bypass=True)
        except SupabaseAdminError as exc:
            if not is_missing_column_error(exc):
                raise
            logger.info("trial_access_bypass column missing, reading created_at only account=%s", account_id)
        return await self._profiles.get_trial_profile(account_id, include_bypass=False)

    async def can_use_feature(self, account_id: str, feature: Union[GatedFeature, str]) -> bool:
        """Features outside the gated set are always available."""
        try:
            GatedFeature(feature)
        except ValueError:
            return True
        status = await self.get_trial_access_status(account_id)
        return status.has_access
