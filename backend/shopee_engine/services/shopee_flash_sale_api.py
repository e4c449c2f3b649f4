"""Thin wrappers over the shop flash sale endpoints of the Partner API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shopee_engine.services.shopee_api_client import ShopeeApiClient

CREATE_FLASH_SALE_PATH = "/api/v2/shop_flash_sale/create_shop_flash_sale"
GET_FLASH_SALE_LIST_PATH = "/api/v2/shop_flash_sale/get_shop_flash_sale_list"
ADD_FLASH_SALE_ITEMS_PATH = "/api/v2/shop_flash_sale/add_shop_flash_sale_items"
GET_FLASH_SALE_ITEMS_PATH = "/api/v2/shop_flash_sale/get_shop_flash_sale_items"
GET_TIME_SLOT_ID_PATH = "/api/v2/shop_flash_sale/get_time_slot_id"

# get_shop_flash_sale_list "type": 0 = all, 1 = upcoming, 2 = ongoing, 3 = expired
FLASH_SALE_TYPE_ALL = 0
LIST_PAGE_SIZE = 100


class ShopeeFlashSaleApi:
    def __init__(self, client: ShopeeApiClient):
        self.client = client

    async def create_flash_sale(self, db: Session, shop_id: int, timeslot_id: int) -> Dict[str, Any]:
        return await self.client.call(
            db, shop_id, CREATE_FLASH_SALE_PATH, method="POST", body={"timeslot_id": timeslot_id}
        )

    async def list_flash_sales(
        self,
        db: Session,
        shop_id: int,
        *,
        sale_type: int = FLASH_SALE_TYPE_ALL,
        offset: int = 0,
        limit: int = LIST_PAGE_SIZE,
    ) -> Dict[str, Any]:
        return await self.client.call(
            db,
            shop_id,
            GET_FLASH_SALE_LIST_PATH,
            extra_params={"type": sale_type, "offset": offset, "limit": limit},
        )

    async def add_items(
        self, db: Session, shop_id: int, flash_sale_id: int, items: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        return await self.client.call(
            db,
            shop_id,
            ADD_FLASH_SALE_ITEMS_PATH,
            method="POST",
            body={"flash_sale_id": flash_sale_id, "items": items},
        )

    async def get_flash_sale_items(
        self, db: Session, shop_id: int, flash_sale_id: int, *, offset: int = 0, limit: int = 50
    ) -> Dict[str, Any]:
        return await self.client.call(
            db,
            shop_id,
            GET_FLASH_SALE_ITEMS_PATH,
            extra_params={"flash_sale_id": flash_sale_id, "offset": offset, "limit": limit},
        )

    async def get_time_slots(
        self,
        db: Session,
        shop_id: int,
        *,
        start_time: int,
        end_time: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self.client.call(
            db,
            shop_id,
            GET_TIME_SLOT_ID_PATH,
            extra_params={"start_time": start_time, "end_time": end_time},
        )
