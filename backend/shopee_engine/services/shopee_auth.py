"""OAuth exchanges against the Shopee Partner API.

These calls are signed at the partner level only (no access token, no shop
id in the signature). They return the provider payload untouched; callers
decide what an ``error`` field means for them.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urlencode

from shopee_engine.services.shopee_signature import PartnerCredential, build_common_params
from shopee_engine.services.shopee_transport import ShopeeTransport

AUTH_PARTNER_PATH = "/api/v2/shop/auth_partner"
TOKEN_GET_PATH = "/api/v2/auth/token/get"
ACCESS_TOKEN_GET_PATH = "/api/v2/auth/access_token/get"

# Lifetime Shopee documents for shop access tokens (4 hours), used when a
# payload omits expire_in.
DEFAULT_EXPIRE_IN_SECONDS = 14400


class ShopeeAuthClient:
    def __init__(self, transport: ShopeeTransport):
        self.transport = transport

    def build_authorization_url(
        self,
        credential: PartnerCredential,
        redirect_uri: str,
        *,
        timestamp: Optional[int] = None,
    ) -> str:
        """Signed URL the seller opens to grant the partner access to a shop.

        Opened by the browser, so it always points at the Shopee host and
        never at the outbound proxy.
        """
        params = build_common_params(credential, AUTH_PARTNER_PATH, timestamp=timestamp)
        params["redirect"] = redirect_uri
        return f"{self.transport.base_url}{AUTH_PARTNER_PATH}?{urlencode(params)}"

    async def exchange_code(
        self,
        credential: PartnerCredential,
        code: str,
        *,
        shop_id: Optional[int] = None,
        main_account_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": code, "partner_id": credential.partner_id}
        if shop_id:
            body["shop_id"] = shop_id
        if main_account_id:
            body["main_account_id"] = main_account_id

        params = build_common_params(credential, TOKEN_GET_PATH)
        return await self.transport.request("POST", TOKEN_GET_PATH, params, body)

    async def refresh_access_token(
        self,
        credential: PartnerCredential,
        refresh_token: str,
        *,
        shop_id: int,
        merchant_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "refresh_token": refresh_token,
            "partner_id": credential.partner_id,
            "shop_id": shop_id,
        }
        if merchant_id:
            body["merchant_id"] = merchant_id

        params = build_common_params(credential, ACCESS_TOKEN_GET_PATH)
        return await self.transport.request("POST", ACCESS_TOKEN_GET_PATH, params, body)
