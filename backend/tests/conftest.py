import os

# Settings require DATABASE_URL at import time; tests build their own engines.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from shopee_engine.models_sqlalchemy import Base
from shopee_engine.models_sqlalchemy import models  # noqa: F401
from shopee_engine.services.flash_sale_copy import FlashSaleCopyExecutor
from shopee_engine.services.partner_credentials import PartnerCredentialResolver
from shopee_engine.services.shopee_api_client import ShopeeApiClient
from shopee_engine.services.shopee_auth import ShopeeAuthClient
from shopee_engine.services.shopee_flash_sale_api import ShopeeFlashSaleApi
from shopee_engine.services.shopee_signature import PartnerCredential
from shopee_engine.services.shopee_token_provider import ShopeeTokenProvider
from shopee_engine.services.shopee_token_store import ShopeeTokenStore
from shopee_engine.services.shopee_transport import ShopeeTransport

BASE_URL = "https://partner.test-stable.shopeemobile.com"
PROXY_HOST = "proxy.test"
SHOP_ID = 558811
DEFAULT_CREDENTIAL = PartnerCredential(
    partner_id=1000001,
    partner_key="default-partner-key",
    source="default",
)
START = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class RecordedCall:
    method: str
    path: str
    params: Dict[str, str]
    body: Optional[Dict[str, Any]]
    url: str


class FakeShopee:
    """In-memory Partner API behind ``httpx.MockTransport``.

    ``on(path, *payloads)`` queues responses for a path; the last queued
    response keeps being served once the queue is down to one. A payload can
    be a dict (served as JSON 200), an ``httpx.Response`` or an exception
    instance to raise. Unknown paths answer with an empty success.
    """

    def __init__(self):
        self.routes: Dict[str, List[Any]] = {}
        self.calls: List[RecordedCall] = []

    def on(self, path: str, *payloads: Any) -> None:
        self.routes.setdefault(path, []).extend(payloads)

    def calls_to(self, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = request.url
        if url.host == PROXY_HOST:
            url = httpx.URL(url.params["url"])

        body = json.loads(request.content) if request.content else None
        self.calls.append(
            RecordedCall(
                method=request.method,
                path=url.path,
                params=dict(url.params),
                body=body,
                url=str(request.url),
            )
        )

        queue = self.routes.get(url.path)
        if not queue:
            payload: Any = {"error": "", "message": "", "response": {}}
        elif len(queue) > 1:
            payload = queue.pop(0)
        else:
            payload = queue[0]

        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, httpx.Response):
            return payload
        return httpx.Response(200, json=payload)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'engine.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def fake_shopee():
    return FakeShopee()


def build_services(fake: FakeShopee, clock: FixedClock, *, proxy_url: Optional[str] = None,
                   auth_error_codes=("error_auth", "invalid_access_token")) -> SimpleNamespace:
    transport = ShopeeTransport(
        BASE_URL,
        proxy_url=proxy_url,
        timeout=5.0,
        transport=httpx.MockTransport(fake.handler),
    )
    store = ShopeeTokenStore()
    resolver = PartnerCredentialResolver(default_credential=DEFAULT_CREDENTIAL)
    auth_client = ShopeeAuthClient(transport)
    provider = ShopeeTokenProvider(store, resolver, auth_client, refresh_buffer_seconds=300, clock=clock)
    client = ShopeeApiClient(resolver, provider, transport, auth_error_codes=auth_error_codes)
    api = ShopeeFlashSaleApi(client)
    return SimpleNamespace(
        transport=transport,
        store=store,
        resolver=resolver,
        auth_client=auth_client,
        provider=provider,
        client=client,
        api=api,
        executor=FlashSaleCopyExecutor(api),
    )


@pytest.fixture
def services(fake_shopee, clock):
    return build_services(fake_shopee, clock)


@pytest.fixture
def seed_shop(db, clock):
    """Store a token pair that expires ``expires_in`` seconds after the clock."""

    def _seed(shop_id: int = SHOP_ID, *, access_token: str = "access-old", refresh_token: str = "refresh-old",
              expires_in: int = 3600, partner_account_id: Optional[str] = None):
        lifetime = 14400
        return ShopeeTokenStore().upsert(
            db,
            shop_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expire_in=lifetime,
            issued_at=clock.now - timedelta(seconds=lifetime - expires_in),
            partner_account_id=partner_account_id,
        )

    return _seed


@pytest.fixture
def make_services(fake_shopee, clock):
    def _make(**kwargs):
        return build_services(fake_shopee, clock, **kwargs)

    return _make
