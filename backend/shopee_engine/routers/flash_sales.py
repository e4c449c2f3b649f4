"""Read-only flash sale lookups the dashboard needs to build a schedule."""

from __future__ import annotations

from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopee_engine.dependencies import get_flash_sale_api
from shopee_engine.models_sqlalchemy import get_db
from shopee_engine.services.errors import (
    PartnerCredentialsNotConfigured,
    ShopeeEngineError,
    ShopNotAuthenticated,
)
from shopee_engine.services.shopee_flash_sale_api import FLASH_SALE_TYPE_ALL, ShopeeFlashSaleApi
from shopee_engine.services.shopee_transport import error_message, is_business_error


router = APIRouter(prefix="/api/flash-sales", tags=["flash-sales"])


def _raise_http(exc: ShopeeEngineError) -> NoReturn:
    if isinstance(exc, (ShopNotAuthenticated, PartnerCredentialsNotConfigured)):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_502_BAD_GATEWAY
    raise HTTPException(status_code=code, detail=exc.to_dict()) from exc


def _unwrap(payload: Dict[str, Any]) -> Dict[str, Any]:
    if is_business_error(payload):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"success": False, "error": payload.get("error"), "message": error_message(payload)},
        )
    return {"success": True, "data": payload.get("response")}


@router.get("/{shop_id}/time-slots")
async def get_time_slots(
    shop_id: int,
    start_time: int = Query(..., description="Unix seconds"),
    end_time: Optional[int] = Query(None, description="Unix seconds"),
    db: Session = Depends(get_db),
    api: ShopeeFlashSaleApi = Depends(get_flash_sale_api),
) -> Dict[str, Any]:
    try:
        payload = await api.get_time_slots(db, shop_id, start_time=start_time, end_time=end_time)
    except ShopeeEngineError as exc:
        _raise_http(exc)
    return _unwrap(payload)


@router.get("/{shop_id}")
async def list_flash_sales(
    shop_id: int,
    sale_type: int = Query(FLASH_SALE_TYPE_ALL, alias="type", ge=0, le=3),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    db: Session = Depends(get_db),
    api: ShopeeFlashSaleApi = Depends(get_flash_sale_api),
) -> Dict[str, Any]:
    try:
        payload = await api.list_flash_sales(db, shop_id, sale_type=sale_type, offset=offset, limit=limit)
    except ShopeeEngineError as exc:
        _raise_http(exc)
    return _unwrap(payload)


@router.get("/{shop_id}/{flash_sale_id}/items")
async def get_flash_sale_items(
    shop_id: int,
    flash_sale_id: int,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    api: ShopeeFlashSaleApi = Depends(get_flash_sale_api),
) -> Dict[str, Any]:
    """Items of a source flash sale, used to prefill the schedule form."""
    try:
        payload = await api.get_flash_sale_items(db, shop_id, flash_sale_id, offset=offset, limit=limit)
    except ShopeeEngineError as exc:
        _raise_http(exc)
    return _unwrap(payload)
