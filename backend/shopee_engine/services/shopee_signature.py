"""Shopee Partner API v2 request signing.

Every request carries ``partner_id``, ``timestamp`` and ``sign`` query
parameters (plus ``access_token``/``shop_id`` for shop-level calls). The sign
is an HMAC-SHA256 over::

    partner_id + path + timestamp [+ access_token] [+ shop_id]

keyed by the partner key, hex encoded. The concatenation order is what the
Shopee gateway verifies; changing it breaks every call.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Union


@dataclass(frozen=True)
class PartnerCredential:
    """Partner identity used to sign requests for one or more shops."""

    partner_id: int
    partner_key: str = field(repr=False)
    partner_account_id: Optional[str] = None
    # explicit, shop or default
    source: str = "default"


def build_signature(
    partner_id: int,
    partner_key: str,
    path: str,
    timestamp: int,
    access_token: Optional[str] = None,
    shop_id: Optional[int] = None,
) -> str:
    base_string = f"{partner_id}{path}{timestamp}"
    if access_token:
        base_string += access_token
    if shop_id:
        base_string += str(shop_id)

    return hmac.new(
        partner_key.encode("utf-8"),
        base_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def current_timestamp() -> int:
    return int(time.time())


def build_common_params(
    credential: PartnerCredential,
    path: str,
    *,
    timestamp: Optional[int] = None,
    access_token: Optional[str] = None,
    shop_id: Optional[int] = None,
) -> Dict[str, Union[int, str]]:
    """Return the signed query parameters shared by every Partner API call."""

    ts = timestamp if timestamp is not None else current_timestamp()
    params: Dict[str, Union[int, str]] = {
        "partner_id": credential.partner_id,
        "timestamp": ts,
    }
    if access_token:
        params["access_token"] = access_token
    if shop_id:
        params["shop_id"] = shop_id
    params["sign"] = build_signature(
        credential.partner_id,
        credential.partner_key,
        path,
        ts,
        access_token=access_token,
        shop_id=shop_id,
    )
    return params
