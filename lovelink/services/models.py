"""Entitlement domain types shared by the resolvers and the purchase reconciler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from lovelink.core.clock import parse_timestamp


class PremiumPlan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: object) -> Optional["PremiumPlan"]:
        if isinstance(value, PremiumPlan):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


class PremiumSource(str, Enum):
    SELF = "self"
    PARTNER = "partner"


class AccessReason(str, Enum):
    PREMIUM = "premium"
    BYPASS = "bypass"
    TRIAL = "trial"
    EXPIRED = "expired"
    ERROR = "error"


class FailurePolicy(str, Enum):
    FAIL_CLOSED = "fail_closed"
    FAIL_OPEN = "fail_open"


class PartnerSyncState(str, Enum):
    """Outcome of the secondary (partner) phase of a purchase grant."""

    ATOMIC = "atomic"  # handled by the server-side procedure
    SYNCED = "synced"
    NO_PARTNER = "no_partner"
    FAILED = "failed"
    SKIPPED = "skipped"


class _Unlimited(Enum):
    UNLIMITED = "unlimited"

    def __repr__(self) -> str:
        return "UNLIMITED"


UNLIMITED = _Unlimited.UNLIMITED
MomentsLimit = Union[int, Literal[_Unlimited.UNLIMITED]]

TRIAL_DAYS = 7
FREE_MOMENTS_LIMIT = 10


def _is_present(value: object) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


@dataclass(frozen=True)
class EntitlementRecord:
    account_id: str
    is_premium_self: bool = False
    premium_plan: Optional[PremiumPlan] = None
    premium_granted_at: Optional[datetime] = None
    premium_expires_at: Optional[datetime] = None
    last_purchase_transaction_id: Optional[str] = None
    last_purchase_product_id: Optional[str] = None
    linked_partner_id: Optional[str] = None
    display_name: Optional[str] = None
    # premium_expires was present but not a timestamp
    expiry_unreadable: bool = False

    @classmethod
    def from_row(cls, account_id: str, row: Optional[dict[str, Any]]) -> "EntitlementRecord":
        if not isinstance(row, dict):
            return cls(account_id=account_id)
        partner_id = row.get("partner_id")
        raw_expires = row.get("premium_expires")
        expires_at = parse_timestamp(raw_expires)
        return cls(
            account_id=str(row.get("id") or account_id),
            is_premium_self=row.get("is_premium") is True,
            premium_plan=PremiumPlan.parse(row.get("premium_plan")),
            premium_granted_at=parse_timestamp(row.get("premium_since")),
            premium_expires_at=expires_at,
            last_purchase_transaction_id=row.get("iap_transaction_id") or None,
            last_purchase_product_id=row.get("iap_product_id") or None,
            linked_partner_id=str(partner_id) if partner_id else None,
            display_name=row.get("name") or None,
            expiry_unreadable=expires_at is None and _is_present(raw_expires),
        )

    def is_currently_valid(self, now: datetime) -> bool:
        """Own entitlement holds at `now`; expiry equal to `now` is already expired.

        An expiry that is present but unreadable never counts as valid.
        """
        if not self.is_premium_self or self.expiry_unreadable:
            return False
        if self.premium_expires_at is None:
            return True
        return self.premium_expires_at > now


@dataclass(frozen=True)
class TrialProfile:
    created_at: Optional[datetime]
    trial_access_bypass: bool = False


@dataclass(frozen=True)
class PremiumStatus:
    is_premium: bool
    source: Optional[PremiumSource] = None
    plan: Optional[PremiumPlan] = None
    since: Optional[datetime] = None
    expires: Optional[datetime] = None
    partner_name: Optional[str] = None

    @classmethod
    def not_premium(cls) -> "PremiumStatus":
        return cls(is_premium=False)


@dataclass(frozen=True)
class TrialAccessStatus:
    has_access: bool
    is_premium: bool
    is_in_trial: bool
    days_remaining: Optional[int]
    trial_ends_at: Optional[datetime]
    reason: AccessReason


@dataclass(frozen=True)
class FeatureLimits:
    moments_limit: MomentsLimit
    pulse_patterns: tuple[str, ...]
    plan_templates_enabled: bool
    bonus_session_packs_enabled: bool
    extended_moments_enabled: bool
    sessions_history_days: int
    custom_pulse_patterns_enabled: bool


@dataclass(frozen=True)
class MomentsLimitCheck:
    allowed: bool
    current: int
    limit: MomentsLimit
    is_premium: bool


@dataclass(frozen=True)
class PurchaseReceipt:
    product_id: str
    transaction_id: Optional[str] = None
    transaction_date: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseResult:
    success: bool
    error: Optional[str] = None
    already_applied: bool = False
    plan: Optional[PremiumPlan] = None
    granted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    partner_sync: PartnerSyncState = PartnerSyncState.SKIPPED
    partner_id: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "PurchaseResult":
        return cls(success=False, error=error)
