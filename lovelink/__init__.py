"""LoveLink entitlement resolution engine."""

from lovelink.engine import EntitlementEngine
from lovelink.services.models import (
    UNLIMITED,
    AccessReason,
    FeatureLimits,
    MomentsLimitCheck,
    PartnerSyncState,
    PremiumPlan,
    PremiumSource,
    PremiumStatus,
    PurchaseReceipt,
    PurchaseResult,
    TrialAccessStatus,
)

__all__ = [
    "UNLIMITED",
    "AccessReason",
    "EntitlementEngine",
    "FeatureLimits",
    "MomentsLimitCheck",
    "PartnerSyncState",
    "PremiumPlan",
    "PremiumSource",
    "PremiumStatus",
    "PurchaseReceipt",
    "PurchaseResult",
    "TrialAccessStatus",
]
