from urllib.parse import parse_qs, urlparse

import pytest

from shopee_engine.services.shopee_auth import AUTH_PARTNER_PATH, TOKEN_GET_PATH
from shopee_engine.services.shopee_signature import PartnerCredential, build_signature

CRED = PartnerCredential(partner_id=1000001, partner_key="default-partner-key")


def test_authorization_url_is_signed_and_points_at_shopee(make_services):
    services = make_services(proxy_url="https://proxy.test/forward")

    url = services.auth_client.build_authorization_url(CRED, "https://app.example.com/callback", timestamp=1760788800)

    parsed = urlparse(url)
    query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    assert parsed.netloc == "partner.test-stable.shopeemobile.com"
    assert parsed.path == AUTH_PARTNER_PATH
    assert query["redirect"] == "https://app.example.com/callback"
    assert query["sign"] == build_signature(1000001, "default-partner-key", AUTH_PARTNER_PATH, 1760788800)


@pytest.mark.asyncio
async def test_exchange_code_posts_code_and_shop(services, fake_shopee):
    fake_shopee.on(TOKEN_GET_PATH, {"error": "", "access_token": "a", "refresh_token": "r", "expire_in": 14400})

    payload = await services.auth_client.exchange_code(CRED, "auth-code", shop_id=77)

    assert payload["access_token"] == "a"
    call = fake_shopee.calls_to(TOKEN_GET_PATH)[0]
    assert call.method == "POST"
    assert call.body == {"code": "auth-code", "partner_id": 1000001, "shop_id": 77}
    assert "access_token" not in call.params
