from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from shopee_engine.models_sqlalchemy.models import PartnerAccount, ShopeeShop
from shopee_engine.services.errors import PartnerCredentialsNotConfigured
from shopee_engine.services.shopee_signature import PartnerCredential
from shopee_engine.utils.logger import logger


def _to_credential(account: PartnerAccount, source: str) -> Optional[PartnerCredential]:
    key = account.partner_key
    if not account.partner_id or not key:
        return None
    return PartnerCredential(
        partner_id=int(account.partner_id),
        partner_key=key,
        partner_account_id=account.id,
        source=source,
    )


class PartnerCredentialResolver:
    """Decide which partner identity signs requests for a shop.

    Lookup order:
    1. an explicit partner account reference (must be active);
    2. the partner account linked to the shop (must be active);
    3. the process-wide default given at construction.

    A missing or inactive optional reference never raises; the resolver just
    moves on to the next step.
    """

    def __init__(self, default_credential: Optional[PartnerCredential] = None):
        self.default_credential = default_credential

    def resolve(
        self,
        db: Session,
        shop_id: Optional[int] = None,
        partner_account_id: Optional[str] = None,
    ) -> PartnerCredential:
        if partner_account_id:
            account = (
                db.query(PartnerAccount)
                .filter(
                    PartnerAccount.id == partner_account_id,
                    PartnerAccount.is_active == True,  # noqa: E712
                )
                .one_or_none()
            )
            credential = _to_credential(account, "explicit") if account else None
            if credential:
                logger.info(
                    "[partner] Using explicit partner account: partner_id=%s shop_id=%s",
                    credential.partner_id, shop_id,
                )
                return credential
            logger.warning(
                "[partner] Partner account %s not found or inactive, falling back",
                partner_account_id,
            )

        if shop_id:
            shop = db.query(ShopeeShop).filter(ShopeeShop.shop_id == shop_id).one_or_none()
            account = shop.partner_account if shop is not None else None
            if account is not None and account.is_active:
                credential = _to_credential(account, "shop")
                if credential:
                    logger.info(
                        "[partner] Using partner linked to shop: partner_id=%s shop_id=%s",
                        credential.partner_id, shop_id,
                    )
                    return credential

        if self.default_credential is None:
            raise PartnerCredentialsNotConfigured(
                "No partner account linked to this shop and no default "
                "SHOPEE_PARTNER_ID/SHOPEE_PARTNER_KEY configured",
                details={"shop_id": shop_id},
            )

        logger.info(
            "[partner] Using default partner: partner_id=%s shop_id=%s",
            self.default_credential.partner_id, shop_id,
        )
        return self.default_credential
