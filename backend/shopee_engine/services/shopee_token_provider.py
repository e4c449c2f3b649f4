"""Single source of usable Shopee access tokens.

Every caller (dashboard request, scheduled copy, sweep worker) obtains the
access token for a shop through ``ShopeeTokenProvider``:

- ``get_usable_token`` returns the stored token, refreshing it first when it
  is inside the refresh buffer. A failed proactive refresh is logged and the
  existing token is returned unchanged; the reactive path in the API client
  gets a second chance if the provider actually rejects it.
- ``refresh`` always exchanges the refresh token and raises
  ``TokenRefreshFailed`` when that does not work.

Refreshes for the same shop are serialized with a per-shop asyncio lock, and
each attempt writes a ``ShopeeTokenRefreshLog`` row. Raw tokens are never
logged; ``token_hash`` is a short fingerprint for debugging.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Literal, Optional

from sqlalchemy.orm import Session

from shopee_engine.models_sqlalchemy.models import ShopeeShop, ShopeeTokenRefreshLog
from shopee_engine.services.errors import (
    ShopeeEngineError,
    ShopNotAuthenticated,
    TokenRefreshFailed,
)
from shopee_engine.services.partner_credentials import PartnerCredentialResolver
from shopee_engine.services.shopee_auth import DEFAULT_EXPIRE_IN_SECONDS, ShopeeAuthClient
from shopee_engine.services.shopee_signature import PartnerCredential
from shopee_engine.services.shopee_token_store import ShopeeTokenStore, _to_utc
from shopee_engine.services.shopee_transport import error_message, is_business_error
from shopee_engine.utils import crypto
from shopee_engine.utils.logger import logger


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _compute_token_hash(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


@dataclass
class ShopeeTokenResult:
    shop_id: int
    access_token: str = field(repr=False)
    expires_at: Optional[datetime] = None
    source: Literal["existing", "refreshed", "stale"] = "existing"
    refresh_error: Optional[str] = None
    partner_id: Optional[int] = None
    retrieved_at: datetime = field(default_factory=_now_utc)

    @property
    def token_hash(self) -> Optional[str]:
        return _compute_token_hash(self.access_token)

    def to_dict(self) -> Dict[str, Any]:
        """API-safe view; never includes the raw token."""
        return {
            "shop_id": self.shop_id,
            "source": self.source,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "token_hash": self.token_hash,
            "refresh_error": self.refresh_error,
            "partner_id": self.partner_id,
            "retrieved_at": self.retrieved_at.isoformat(),
        }


class ShopeeTokenProvider:
    def __init__(
        self,
        store: ShopeeTokenStore,
        resolver: PartnerCredentialResolver,
        auth_client: ShopeeAuthClient,
        *,
        refresh_buffer_seconds: int = 300,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self.store = store
        self.resolver = resolver
        self.auth_client = auth_client
        self.refresh_buffer = timedelta(seconds=refresh_buffer_seconds)
        self._clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, shop_id: int) -> asyncio.Lock:
        lock = self._locks.get(shop_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[shop_id] = lock
        return lock

    def _load_shop(self, db: Session, shop_id: int) -> ShopeeShop:
        shop = self.store.get(db, shop_id)
        if shop is None or not shop.access_token:
            raise ShopNotAuthenticated(
                f"Shop {shop_id} has no stored token; connect it through the OAuth flow first",
                details={"shop_id": shop_id},
            )
        if crypto.is_encrypted(shop.access_token):
            # decrypt() hands back the ciphertext when SECRET_KEY changed.
            raise ShopNotAuthenticated(
                f"Stored token for shop {shop_id} cannot be decrypted; re-authorize the shop",
                details={"shop_id": shop_id},
            )
        return shop

    def _result(self, shop: ShopeeShop, source: str, credential: Optional[PartnerCredential] = None,
                refresh_error: Optional[str] = None) -> ShopeeTokenResult:
        return ShopeeTokenResult(
            shop_id=int(shop.shop_id),
            access_token=shop.access_token,
            expires_at=_to_utc(shop.expires_at),
            source=source,  # type: ignore[arg-type]
            refresh_error=refresh_error,
            partner_id=credential.partner_id if credential else None,
        )

    async def get_usable_token(
        self,
        db: Session,
        shop_id: int,
        *,
        credential: Optional[PartnerCredential] = None,
        now: Optional[datetime] = None,
    ) -> ShopeeTokenResult:
        shop = self._load_shop(db, shop_id)
        now = _to_utc(now) or self._clock()
        expires_at = _to_utc(shop.expires_at)

        if expires_at is not None and now < expires_at - self.refresh_buffer:
            return self._result(shop, "existing", credential)

        logger.info(
            "[token_provider] Token for shop_id=%s expires_at=%s is inside the refresh window, refreshing",
            shop_id, expires_at.isoformat() if expires_at else None,
        )
        try:
            return await self.refresh(
                db,
                shop_id,
                credential=credential,
                triggered_by="proactive",
                stale_access_token=shop.access_token,
            )
        except ShopeeEngineError as exc:
            logger.warning(
                "[token_provider] Proactive refresh failed for shop_id=%s, using existing token: %s",
                shop_id, exc.message,
            )
            shop = self._load_shop(db, shop_id)
            return self._result(shop, "stale", credential, refresh_error=exc.message)

    async def refresh(
        self,
        db: Session,
        shop_id: int,
        *,
        credential: Optional[PartnerCredential] = None,
        triggered_by: str = "manual",
        stale_access_token: Optional[str] = None,
    ) -> ShopeeTokenResult:
        """Exchange the refresh token for a new pair and persist it.

        ``stale_access_token`` is the token the caller saw before deciding to
        refresh. When another coroutine already replaced it while we waited
        on the lock, its result is reused instead of spending the refresh
        token a second time.
        """
        async with self._lock_for(shop_id):
            cached = self.store.get(db, shop_id)
            if cached is not None:
                # Another session may have committed a new pair while we waited.
                db.refresh(cached)
            shop = self._load_shop(db, shop_id)
            if stale_access_token and shop.access_token != stale_access_token:
                logger.info("[token_provider] shop_id=%s already refreshed concurrently", shop_id)
                return self._result(shop, "refreshed", credential)

            if credential is None:
                credential = self.resolver.resolve(db, shop_id=shop_id)
            return await self._do_refresh(db, shop, credential, triggered_by)

    async def _do_refresh(
        self,
        db: Session,
        shop: ShopeeShop,
        credential: PartnerCredential,
        triggered_by: str,
    ) -> ShopeeTokenResult:
        shop_id = int(shop.shop_id)
        refresh_token = shop.refresh_token
        old_expires_at = _to_utc(shop.expires_at)
        started_at = self._clock()

        log_row = ShopeeTokenRefreshLog(
            shop_id=shop_id,
            started_at=started_at,
            old_expires_at=old_expires_at,
            triggered_by=triggered_by,
        )
        db.add(log_row)
        db.flush()

        def _fail(code: str, message: str) -> TokenRefreshFailed:
            log_row.success = False
            log_row.error_code = code
            log_row.error_message = message[:2000]
            log_row.finished_at = self._clock()
            db.commit()
            self.store.record_refresh_error(db, shop_id, message)
            logger.error(
                "[token_provider] Refresh failed for shop_id=%s (%s): code=%s message=%s",
                shop_id, triggered_by, code, message,
            )
            return TokenRefreshFailed(message, details={"shop_id": shop_id, "error_code": code})

        if not refresh_token or crypto.is_encrypted(refresh_token):
            raise _fail("no_refresh_token", f"Shop {shop_id} has no usable refresh token")

        try:
            payload = await self.auth_client.refresh_access_token(
                credential,
                refresh_token,
                shop_id=shop_id,
                merchant_id=shop.merchant_id,
            )
        except ShopeeEngineError as exc:
            raise _fail(exc.code, exc.message) from exc

        if is_business_error(payload):
            raise _fail(str(payload.get("error")), error_message(payload))

        new_access = payload.get("access_token")
        new_refresh = payload.get("refresh_token") or refresh_token
        if not new_access:
            raise _fail("missing_access_token", "Refresh response did not contain an access_token")

        issued_at = self._clock()
        shop = self.store.upsert(
            db,
            shop_id,
            access_token=new_access,
            refresh_token=new_refresh,
            expire_in=int(payload.get("expire_in") or DEFAULT_EXPIRE_IN_SECONDS),
            issued_at=issued_at,
            partner_account_id=credential.partner_account_id,
        )

        log_row.success = True
        log_row.finished_at = self._clock()
        log_row.new_expires_at = _to_utc(shop.expires_at)
        db.commit()

        logger.info(
            "[token_provider] Refreshed token for shop_id=%s (%s) new_expires_at=%s token_hash=%s",
            shop_id, triggered_by, log_row.new_expires_at, _compute_token_hash(new_access),
        )
        return self._result(shop, "refreshed", credential)
