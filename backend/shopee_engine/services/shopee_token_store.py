from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from shopee_engine.models_sqlalchemy.models import ShopeeShop
from shopee_engine.utils import crypto
from shopee_engine.utils.logger import logger


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes while Postgres returns aware ones.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert


class ShopeeTokenStore:
    """Durable per-shop token record.

    ``upsert`` is keyed by shop id and last-write-wins. On Postgres/SQLite it
    is a single ``INSERT ... ON CONFLICT DO UPDATE`` so two refreshers racing
    on the same shop cannot collide on the primary key.
    """

    def get(self, db: Session, shop_id: int) -> Optional[ShopeeShop]:
        return db.query(ShopeeShop).filter(ShopeeShop.shop_id == shop_id).one_or_none()

    def upsert(
        self,
        db: Session,
        shop_id: int,
        *,
        access_token: str,
        refresh_token: str,
        expire_in: int,
        issued_at: Optional[datetime] = None,
        partner_account_id: Optional[str] = None,
        merchant_id: Optional[int] = None,
    ) -> ShopeeShop:
        if not access_token or not refresh_token:
            raise ValueError("access_token and refresh_token are both required")

        issued = _to_utc(issued_at) or datetime.now(timezone.utc)
        expires_at = issued + timedelta(seconds=int(expire_in))

        values: Dict[str, Any] = {
            "shop_id": shop_id,
            "access_token": crypto.encrypt(access_token),
            "refresh_token": crypto.encrypt(refresh_token),
            "expire_in": int(expire_in),
            "expires_at": expires_at,
            "token_updated_at": issued,
            "refresh_error": None,
            "updated_at": issued,
        }
        if partner_account_id:
            values["partner_account_id"] = partner_account_id
        if merchant_id:
            values["merchant_id"] = merchant_id

        insert = _insert_for(db)
        if insert is not None:
            stmt = insert(ShopeeShop.__table__).values(created_at=issued, **values)
            update_cols = {k: stmt.excluded[k] for k in values if k != "shop_id"}
            stmt = stmt.on_conflict_do_update(index_elements=["shop_id"], set_=update_cols)
            db.execute(stmt)
            db.commit()
            db.expire_all()
        else:
            shop = self.get(db, shop_id)
            if shop is None:
                shop = ShopeeShop(shop_id=shop_id)
                db.add(shop)
            shop.access_token = access_token
            shop.refresh_token = refresh_token
            shop.expire_in = values["expire_in"]
            shop.expires_at = expires_at
            shop.token_updated_at = issued
            shop.refresh_error = None
            if partner_account_id:
                shop.partner_account_id = partner_account_id
            if merchant_id:
                shop.merchant_id = merchant_id
            db.commit()

        logger.info(
            "[token_store] Saved token for shop_id=%s expires_at=%s",
            shop_id, expires_at.isoformat(),
        )
        return self.get(db, shop_id)

    def record_refresh_error(self, db: Session, shop_id: int, message: str) -> None:
        shop = self.get(db, shop_id)
        if shop is None:
            return
        shop.refresh_error = message[:2000]
        db.commit()


shopee_token_store = ShopeeTokenStore()
