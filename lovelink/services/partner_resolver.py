"""Linked-partner lookup: cached profile pointer first, active partnerships second."""

from __future__ import annotations

import logging
from typing import Any, Optional

from lovelink.repositories.partnership_repo import PartnershipRepository
from lovelink.repositories.profile_repo import ProfileRepository
from lovelink.services.models import EntitlementRecord

logger = logging.getLogger(__name__)


def _other_side(partnership: dict[str, Any], account_id: str) -> Optional[str]:
    user1 = partnership.get("user1_id")
    user2 = partnership.get("user2_id")
    other = user2 if user1 == account_id else user1
    return str(other) if other else None


class PartnerResolver:
    """Storage errors propagate: a failed lookup is not the same as "no partner"."""

    def __init__(self, profiles: ProfileRepository, partnerships: PartnershipRepository) -> None:
        self._profiles = profiles
        self._partnerships = partnerships

    async def resolve_partner_id(
        self,
        account_id: str,
        *,
        record: Optional[EntitlementRecord] = None,
    ) -> Optional[str]:
        if record is None:
            record = await self._profiles.get_entitlement_record(account_id)
        if record.linked_partner_id:
            return record.linked_partner_id

        partnership = await self._partnerships.latest_active(account_id)
        if partnership is None:
            return None
        partner_id = _other_side(partnership, account_id)
        logger.debug("Partner resolved from partnership account=%s partner=%s", account_id, partner_id)
        return partner_id

    async def active_partnership_id(self, account_id: str) -> Optional[str]:
        partnership = await self._partnerships.latest_active(account_id)
        if partnership is None or not partnership.get("id"):
            return None
        return str(partnership["id"])
