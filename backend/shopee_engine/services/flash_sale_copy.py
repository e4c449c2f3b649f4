"""Copy a flash sale's items into a new timeslot.

Two provider steps, not transactional: create the flash sale for the target
timeslot, then attach the items. Re-running after a partial failure is safe
because a "already exists" conflict on create is resolved by looking up the
flash sale that already occupies the timeslot and reusing it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shopee_engine.services.shopee_flash_sale_api import LIST_PAGE_SIZE, ShopeeFlashSaleApi
from shopee_engine.services.shopee_transport import error_message, is_business_error
from shopee_engine.utils.logger import logger

CONFLICT_MARKER = "already exist"

# Safety cap on list pagination while looking for a conflicting flash sale.
MAX_LIST_PAGES = 10


@dataclass
class FlashSaleCopyResult:
    success: bool
    message: str
    flash_sale_id: Optional[int] = None
    failed_items: List[Dict[str, Any]] = field(default_factory=list)
    reused_existing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.flash_sale_id is not None:
            data["flash_sale_id"] = self.flash_sale_id
        if self.failed_items:
            data["failed_items"] = self.failed_items
        if self.reused_existing:
            data["reused_existing"] = True
        return data


def _is_conflict(payload: Dict[str, Any]) -> bool:
    text = f"{payload.get('message') or ''} {payload.get('error') or ''}".lower()
    return CONFLICT_MARKER in text or "already_exist" in text


class FlashSaleCopyExecutor:
    def __init__(self, api: ShopeeFlashSaleApi):
        self.api = api

    async def _find_existing(self, db: Session, shop_id: int, timeslot_id: int) -> Optional[int]:
        offset = 0
        for _ in range(MAX_LIST_PAGES):
            payload = await self.api.list_flash_sales(db, shop_id, offset=offset, limit=LIST_PAGE_SIZE)
            if is_business_error(payload):
                logger.warning(
                    "[flash_sale_copy] Listing flash sales for shop_id=%s failed: %s",
                    shop_id, error_message(payload),
                )
                return None

            page = (payload.get("response") or {}).get("flash_sale_list") or []
            for sale in page:
                if int(sale.get("timeslot_id") or 0) == int(timeslot_id) and sale.get("flash_sale_id"):
                    return int(sale["flash_sale_id"])

            if len(page) < LIST_PAGE_SIZE:
                return None
            offset += LIST_PAGE_SIZE
        return None

    async def execute(
        self,
        db: Session,
        shop_id: int,
        target_timeslot_id: int,
        items: List[Dict[str, Any]],
    ) -> FlashSaleCopyResult:
        reused = False
        created = await self.api.create_flash_sale(db, shop_id, target_timeslot_id)

        if is_business_error(created):
            if not _is_conflict(created):
                return FlashSaleCopyResult(
                    success=False,
                    message=f"Create flash sale failed: {error_message(created)}",
                )
            flash_sale_id = await self._find_existing(db, shop_id, target_timeslot_id)
            if flash_sale_id is None:
                return FlashSaleCopyResult(
                    success=False,
                    message=(
                        f"Timeslot {target_timeslot_id}: conflict reported but no matching "
                        "resource located"
                    ),
                )
            reused = True
            logger.info(
                "[flash_sale_copy] Reusing flash_sale_id=%s for shop_id=%s timeslot=%s",
                flash_sale_id, shop_id, target_timeslot_id,
            )
        else:
            raw_id = (created.get("response") or {}).get("flash_sale_id")
            if not raw_id:
                return FlashSaleCopyResult(
                    success=False,
                    message="Create flash sale returned no flash_sale_id",
                )
            flash_sale_id = int(raw_id)

        label = "Reused existing flash sale" if reused else "Created flash sale"
        added = await self.api.add_items(db, shop_id, flash_sale_id, items)
        if is_business_error(added):
            return FlashSaleCopyResult(
                success=False,
                flash_sale_id=flash_sale_id,
                reused_existing=reused,
                message=f"{label} {flash_sale_id}, but adding items failed: {error_message(added)}",
            )

        failed_items = list((added.get("response") or {}).get("failed_items") or [])
        total = len(items)
        succeeded = total - len(failed_items)
        logger.info(
            "[flash_sale_copy] shop_id=%s flash_sale_id=%s items %s/%s",
            shop_id, flash_sale_id, succeeded, total,
        )
        return FlashSaleCopyResult(
            success=True,
            flash_sale_id=flash_sale_id,
            failed_items=failed_items,
            reused_existing=reused,
            message=f"{label} {flash_sale_id}: {succeeded}/{total} items added",
        )
