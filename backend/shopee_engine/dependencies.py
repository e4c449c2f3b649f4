"""Process-wide service instances built from settings.

Routers and the sweep worker get their collaborators from here, and tests
replace them through ``app.dependency_overrides``. The default partner
credential is injected into the resolver at construction time.
"""

from functools import lru_cache

from shopee_engine.config import settings
from shopee_engine.services.flash_sale_copy import FlashSaleCopyExecutor
from shopee_engine.services.partner_credentials import PartnerCredentialResolver
from shopee_engine.services.shopee_api_client import ShopeeApiClient
from shopee_engine.services.shopee_auth import ShopeeAuthClient
from shopee_engine.services.shopee_flash_sale_api import ShopeeFlashSaleApi
from shopee_engine.services.shopee_token_provider import ShopeeTokenProvider
from shopee_engine.services.shopee_token_store import shopee_token_store
from shopee_engine.services.shopee_transport import ShopeeTransport


@lru_cache()
def get_transport() -> ShopeeTransport:
    return ShopeeTransport(
        settings.SHOPEE_BASE_URL,
        proxy_url=settings.SHOPEE_PROXY_URL,
        timeout=settings.SHOPEE_HTTP_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_resolver() -> PartnerCredentialResolver:
    return PartnerCredentialResolver(default_credential=settings.default_partner_credential)


@lru_cache()
def get_auth_client() -> ShopeeAuthClient:
    return ShopeeAuthClient(get_transport())


@lru_cache()
def get_token_provider() -> ShopeeTokenProvider:
    return ShopeeTokenProvider(
        shopee_token_store,
        get_resolver(),
        get_auth_client(),
        refresh_buffer_seconds=settings.SHOPEE_TOKEN_REFRESH_BUFFER_SECONDS,
    )


@lru_cache()
def get_api_client() -> ShopeeApiClient:
    return ShopeeApiClient(
        get_resolver(),
        get_token_provider(),
        get_transport(),
        auth_error_codes=settings.auth_error_codes,
    )


@lru_cache()
def get_flash_sale_api() -> ShopeeFlashSaleApi:
    return ShopeeFlashSaleApi(get_api_client())


@lru_cache()
def get_copy_executor() -> FlashSaleCopyExecutor:
    return FlashSaleCopyExecutor(get_flash_sale_api())
