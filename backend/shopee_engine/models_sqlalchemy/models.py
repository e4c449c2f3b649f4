import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from shopee_engine.models_sqlalchemy import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in local runs and tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledFlashSaleStatus(str, enum.Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class PartnerAccount(Base):
    """Shopee partner identity (partner_id + partner_key) used to sign requests.

    Rows are created by an operator; the engine only reads them. Several shops
    may point at the same partner account.
    """

    __tablename__ = "partner_accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    partner_id = Column(BigInteger, nullable=False, unique=True, index=True)
    _partner_key = Column("partner_key", Text, nullable=False)
    name = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    shops = relationship("ShopeeShop", back_populates="partner_account")

    @property
    def partner_key(self) -> str | None:
        from shopee_engine.utils import crypto

        return crypto.decrypt(self._partner_key)

    @partner_key.setter
    def partner_key(self, value: str | None) -> None:
        from shopee_engine.utils import crypto

        self._partner_key = crypto.encrypt(value) if value else None


class ShopeeShop(Base):
    """One OAuth grant per shop: the token pair shared by everyone who sees the shop."""

    __tablename__ = "shopee_shops"

    shop_id = Column(BigInteger, primary_key=True, autoincrement=False)
    partner_account_id = Column(
        String(36),
        ForeignKey("partner_accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    merchant_id = Column(BigInteger, nullable=True)
    shop_name = Column(Text, nullable=True)

    # Physical columns hold encrypted blobs when written via the properties.
    _access_token = Column("access_token", Text, nullable=True)
    _refresh_token = Column("refresh_token", Text, nullable=True)
    expire_in = Column(Integer, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    token_updated_at = Column(DateTime(timezone=True), nullable=True)
    refresh_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    partner_account = relationship("PartnerAccount", back_populates="shops")

    __table_args__ = (
        Index("idx_shopee_shops_expires_at", "expires_at"),
    )

    @property
    def access_token(self) -> str | None:
        from shopee_engine.utils import crypto

        return crypto.decrypt(self._access_token)

    @access_token.setter
    def access_token(self, value: str | None) -> None:
        from shopee_engine.utils import crypto

        self._access_token = crypto.encrypt(value) if value else None

    @property
    def refresh_token(self) -> str | None:
        from shopee_engine.utils import crypto

        return crypto.decrypt(self._refresh_token)

    @refresh_token.setter
    def refresh_token(self, value: str | None) -> None:
        from shopee_engine.utils import crypto

        self._refresh_token = crypto.encrypt(value) if value else None


class ScheduledFlashSale(Base):
    """A scheduled "copy flash sale into timeslot" job.

    scheduled_at is computed once (target_start_time - minutes_before) so the
    sweep only has to query on status + scheduled_at.
    """

    __tablename__ = "scheduled_flash_sales"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column(BigInteger, nullable=False, index=True)
    source_flash_sale_id = Column(BigInteger, nullable=False)

    target_timeslot_id = Column(BigInteger, nullable=False)
    # Unix seconds, as the Partner API reports them.
    target_start_time = Column(BigInteger, nullable=False)
    target_end_time = Column(BigInteger, nullable=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    items_data = Column(JSONType, nullable=False)

    status = Column(String(32), nullable=False, default=ScheduledFlashSaleStatus.pending.value, index=True)

    result_flash_sale_id = Column(BigInteger, nullable=True)
    result_message = Column(Text, nullable=True)
    failed_items = Column(JSONType, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_scheduled_flash_sales_due", "status", "scheduled_at"),
    )


class ShopeeTokenRefreshLog(Base):
    """Per-shop token refresh attempts for observability/debugging."""

    __tablename__ = "shopee_token_refresh_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column(BigInteger, nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    success = Column(Boolean, nullable=True)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    old_expires_at = Column(DateTime(timezone=True), nullable=True)
    new_expires_at = Column(DateTime(timezone=True), nullable=True)

    # proactive, reactive, manual
    triggered_by = Column(String(32), nullable=False, server_default="proactive")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BackgroundWorker(Base):
    """Heartbeat + status row for long-running background loops."""

    __tablename__ = "background_workers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    worker_name = Column(String(128), nullable=False, unique=True, index=True)
    interval_seconds = Column(Integer, nullable=True)

    last_started_at = Column(DateTime(timezone=True), nullable=True)
    last_finished_at = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String(32), nullable=True)
    last_error_message = Column(Text, nullable=True)

    runs_ok_in_row = Column(Integer, nullable=False, default=0)
    runs_error_in_row = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
