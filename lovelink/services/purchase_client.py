"""Store purchase client with an explicit connect/disconnect lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Sequence

from lovelink.services.models import PremiumPlan, PurchaseReceipt

logger = logging.getLogger(__name__)

PRODUCT_IDS = {
    PremiumPlan.MONTHLY: "com.lovelinkcouples.premium.monthly",
    PremiumPlan.YEARLY: "com.lovelinkcouples.premium.yearly",
}

# product ids from earlier store configurations; purchases made under them stay valid
LEGACY_PRODUCT_IDS = {
    "com.lovelink.premium.monthly": PremiumPlan.MONTHLY,
    "com.lovelink.premium.yearly": PremiumPlan.YEARLY,
    "lovelink.premium.monthly": PremiumPlan.MONTHLY,
}

PLAN_BY_PRODUCT_ID: dict[str, PremiumPlan] = {
    **{product_id: plan for plan, product_id in PRODUCT_IDS.items()},
    **LEGACY_PRODUCT_IDS,
}


def is_supported_product_id(product_id: object) -> bool:
    return isinstance(product_id, str) and product_id in PLAN_BY_PRODUCT_ID


def plan_for_product_id(product_id: str) -> Optional[PremiumPlan]:
    return PLAN_BY_PRODUCT_ID.get(product_id)


class PurchaseClientError(RuntimeError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ReceiptSource(Protocol):
    """Platform store integration that yields completed purchase receipts."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def available_purchases(self) -> Sequence[PurchaseReceipt]: ...


class PurchaseClient:
    def __init__(self, source: ReceiptSource) -> None:
        self._source = source
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        async with self._lock:
            if self._connected:
                return
            await self._source.connect()
            self._connected = True
            logger.info("Purchase client connected")

    async def disconnect(self) -> None:
        async with self._lock:
            if not self._connected:
                return
            try:
                await self._source.disconnect()
            finally:
                self._connected = False
            logger.info("Purchase client disconnected")

    async def __aenter__(self) -> "PurchaseClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def restore_purchases(self) -> list[PurchaseReceipt]:
        if not self._connected:
            raise PurchaseClientError("purchase_client_not_connected", "Purchase client is not connected")
        purchases = await self._source.available_purchases()
        return [p for p in purchases if isinstance(p, PurchaseReceipt)]

    async def check_active_subscription(self) -> Optional[PurchaseReceipt]:
        """First restored receipt for a supported subscription product, if any."""
        for purchase in await self.restore_purchases():
            if is_supported_product_id(purchase.product_id):
                return purchase
        return None
