from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from shopee_engine.services.errors import ShopeeAuthError, TokenRefreshFailed
from shopee_engine.services.partner_credentials import PartnerCredentialResolver
from shopee_engine.services.shopee_signature import PartnerCredential, build_common_params
from shopee_engine.services.shopee_token_provider import ShopeeTokenProvider
from shopee_engine.services.shopee_transport import ShopeeTransport, error_message
from shopee_engine.utils.logger import logger


class ShopeeApiClient:
    """Signed, shop-scoped calls to the Partner API.

    Resolves the partner credential, obtains a usable token, signs and sends
    the request. If the provider answers with an auth error the token is
    refreshed once and the call retried once; a second auth error raises
    ``ShopeeAuthError``. Business errors other than auth are returned to the
    caller untouched.
    """

    def __init__(
        self,
        resolver: PartnerCredentialResolver,
        token_provider: ShopeeTokenProvider,
        transport: ShopeeTransport,
        *,
        auth_error_codes: Iterable[str] = ("error_auth",),
    ):
        self.resolver = resolver
        self.token_provider = token_provider
        self.transport = transport
        self.auth_error_codes = frozenset(auth_error_codes)

    def is_auth_error(self, payload: Any) -> bool:
        return isinstance(payload, dict) and payload.get("error") in self.auth_error_codes

    async def _send(
        self,
        credential: PartnerCredential,
        access_token: str,
        shop_id: int,
        path: str,
        method: str,
        body: Optional[Dict[str, Any]],
        extra_params: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = build_common_params(
            credential, path, access_token=access_token, shop_id=shop_id
        )
        for key, value in (extra_params or {}).items():
            if value is not None:
                params[key] = value
        return await self.transport.request(method, path, params, body)

    async def call(
        self,
        db: Session,
        shop_id: int,
        path: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        extra_params: Optional[Mapping[str, Any]] = None,
        partner_account_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        credential = self.resolver.resolve(db, shop_id=shop_id, partner_account_id=partner_account_id)
        token = await self.token_provider.get_usable_token(db, shop_id, credential=credential)

        payload = await self._send(credential, token.access_token, shop_id, path, method, body, extra_params)
        if not self.is_auth_error(payload):
            return payload

        logger.warning(
            "[shopee_api] Auth error on %s for shop_id=%s (token_hash=%s), refreshing and retrying once",
            path, shop_id, token.token_hash,
        )
        try:
            refreshed = await self.token_provider.refresh(
                db,
                shop_id,
                credential=credential,
                triggered_by="reactive",
                stale_access_token=token.access_token,
            )
        except TokenRefreshFailed as exc:
            raise ShopeeAuthError(
                f"Shopee rejected the access token for shop {shop_id} and refresh failed: {exc.message}",
                details={"shop_id": shop_id, "path": path},
            ) from exc

        payload = await self._send(credential, refreshed.access_token, shop_id, path, method, body, extra_params)
        if self.is_auth_error(payload):
            raise ShopeeAuthError(
                f"Shopee rejected the refreshed access token for shop {shop_id}: {error_message(payload)}",
                details={"shop_id": shop_id, "path": path, "error": payload.get("error")},
            )
        return payload
