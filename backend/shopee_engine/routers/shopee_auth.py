from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from shopee_engine.config import settings
from shopee_engine.dependencies import get_auth_client, get_resolver, get_token_provider
from shopee_engine.models.shopee_auth import (
    GetAuthUrlCommand,
    GetStoredTokenCommand,
    GetTokenCommand,
    RefreshTokenCommand,
    ShopeeAuthAction,
)
from shopee_engine.models_sqlalchemy import get_db
from shopee_engine.services.errors import ShopeeEngineError, ShopNotAuthenticated, invalid_request
from shopee_engine.services.partner_credentials import PartnerCredentialResolver
from shopee_engine.services.shopee_auth import DEFAULT_EXPIRE_IN_SECONDS, ShopeeAuthClient
from shopee_engine.services.shopee_token_provider import ShopeeTokenProvider, _compute_token_hash
from shopee_engine.services.shopee_token_store import _to_utc, shopee_token_store
from shopee_engine.services.shopee_transport import error_message, is_business_error
from shopee_engine.utils.logger import logger, shopee_logger


router = APIRouter(prefix="/api/shopee-auth", tags=["shopee-auth"])


def _stored_token_row(shop_id: int, db: Session) -> Dict[str, Any]:
    shop = shopee_token_store.get(db, shop_id)
    if shop is None or not shop.access_token:
        raise ShopNotAuthenticated(f"Shop {shop_id} is not connected", details={"shop_id": shop_id})
    expires_at = _to_utc(shop.expires_at)
    updated_at = _to_utc(shop.token_updated_at)
    return {
        "shop_id": shop.shop_id,
        "shop_name": shop.shop_name,
        "partner_account_id": shop.partner_account_id,
        "expire_in": shop.expire_in,
        "expires_at": expires_at.isoformat() if expires_at else None,
        "token_updated_at": updated_at.isoformat() if updated_at else None,
        "token_hash": _compute_token_hash(shop.access_token),
        "has_refresh_token": bool(shop.refresh_token),
        "refresh_error": shop.refresh_error,
    }


async def _get_auth_url(cmd: GetAuthUrlCommand, db: Session, resolver: PartnerCredentialResolver,
                        auth_client: ShopeeAuthClient) -> Dict[str, Any]:
    redirect_uri = cmd.redirect_uri or settings.SHOPEE_REDIRECT_URI
    if not redirect_uri:
        return {
            "success": False,
            "error": "missing_redirect_uri",
            "message": "redirect_uri is required when SHOPEE_REDIRECT_URI is not configured",
        }
    credential = resolver.resolve(db, partner_account_id=cmd.partner_account_id)
    url = auth_client.build_authorization_url(credential, redirect_uri)
    return {"success": True, "auth_url": url, "partner_id": credential.partner_id}


async def _get_token(cmd: GetTokenCommand, db: Session, resolver: PartnerCredentialResolver,
                     auth_client: ShopeeAuthClient) -> Dict[str, Any]:
    credential = resolver.resolve(db, shop_id=cmd.shop_id, partner_account_id=cmd.partner_account_id)
    payload = await auth_client.exchange_code(
        credential, cmd.code, shop_id=cmd.shop_id, main_account_id=cmd.main_account_id
    )
    if is_business_error(payload):
        return {"success": False, "error": payload.get("error"), "message": error_message(payload)}

    shop_id: Optional[int] = cmd.shop_id
    if not shop_id:
        shop_ids = payload.get("shop_id_list") or []
        shop_id = int(shop_ids[0]) if shop_ids else None
    if not shop_id:
        return {"success": False, "error": "missing_shop_id", "message": "Token response did not name a shop"}
    if not payload.get("access_token") or not payload.get("refresh_token"):
        return {"success": False, "error": "missing_token", "message": "Token response did not include both tokens"}

    shop = shopee_token_store.upsert(
        db,
        shop_id,
        access_token=payload.get("access_token"),
        refresh_token=payload.get("refresh_token"),
        expire_in=int(payload.get("expire_in") or DEFAULT_EXPIRE_IN_SECONDS),
        partner_account_id=credential.partner_account_id,
        merchant_id=payload.get("merchant_id"),
    )
    logger.info("[shopee_auth] Connected shop_id=%s partner_id=%s", shop.shop_id, credential.partner_id)
    return {"success": True, "data": _stored_token_row(shop_id, db)}


@router.post("/action")
async def shopee_auth_action(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    resolver: PartnerCredentialResolver = Depends(get_resolver),
    auth_client: ShopeeAuthClient = Depends(get_auth_client),
    token_provider: ShopeeTokenProvider = Depends(get_token_provider),
) -> Dict[str, Any]:
    try:
        command = ShopeeAuthAction.model_validate(payload).root
    except ValidationError as exc:
        logger.warning("[shopee_auth] Rejected action payload: %s", exc.error_count())
        return invalid_request(exc)

    try:
        if isinstance(command, GetAuthUrlCommand):
            return await _get_auth_url(command, db, resolver, auth_client)
        if isinstance(command, GetTokenCommand):
            return await _get_token(command, db, resolver, auth_client)
        if isinstance(command, RefreshTokenCommand):
            credential = resolver.resolve(
                db, shop_id=command.shop_id, partner_account_id=command.partner_account_id
            )
            result = await token_provider.refresh(
                db, command.shop_id, credential=credential, triggered_by="manual"
            )
            return {"success": True, "data": result.to_dict()}
        if isinstance(command, GetStoredTokenCommand):
            return {"success": True, "data": _stored_token_row(command.shop_id, db)}
    except ShopeeEngineError as exc:
        logger.warning("[shopee_auth] action=%s failed: %s", command.action, exc.message)
        return exc.to_dict()
    return {"success": False, "error": "invalid_request", "message": "Invalid action"}


@router.get("/shops/{shop_id}/token")
async def get_stored_token(shop_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        return {"success": True, "data": _stored_token_row(shop_id, db)}
    except ShopNotAuthenticated as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_dict()) from exc


@router.get("/logs")
async def get_shopee_logs(
    limit: Optional[int] = Query(100, description="Number of logs to retrieve"),
):
    logs = shopee_logger.get_logs(limit=limit)
    return {
        "logs": logs,
        "total": len(logs)
    }


@router.delete("/logs")
async def clear_shopee_logs(x_internal_api_key: Optional[str] = Header(None)):
    if settings.INTERNAL_API_KEY and x_internal_api_key != settings.INTERNAL_API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal API key")

    shopee_logger.clear_logs()
    return {"message": "Logs cleared successfully"}
