"""HTTP transport for the Shopee Partner API.

Builds the final URL (optionally rewritten through the outbound proxy),
issues the request with ``httpx`` and returns the decoded JSON body as-is.
Business-level errors are left to callers; only network failures and
non-JSON responses raise.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import quote, urlencode

import httpx

from shopee_engine.services.errors import ShopeeTransportError
from shopee_engine.utils.logger import logger, shopee_logger

ParamValue = Union[str, int, float]

# The Partner API reports "no error" as an empty string or a literal dash.
NO_ERROR_VALUES = ("", "-")


def is_business_error(payload: Any) -> bool:
    """True when a Partner API payload carries a non-empty ``error`` field."""
    if not isinstance(payload, dict):
        return True
    error = payload.get("error")
    if error is None:
        return False
    return error not in NO_ERROR_VALUES


def error_message(payload: Any) -> str:
    if not isinstance(payload, dict):
        return "Unexpected response from Shopee"
    return str(payload.get("message") or payload.get("error") or "Unknown Shopee error")


class ShopeeTransport:
    def __init__(
        self,
        base_url: str,
        *,
        proxy_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.proxy_url = proxy_url or None
        self.timeout = timeout
        # Injected in tests (httpx.MockTransport); None means the real network.
        self._transport = transport

    def target_url(self, path: str, params: Mapping[str, ParamValue]) -> str:
        return f"{self.base_url}{path}?{urlencode(params)}"

    def build_url(self, path: str, params: Mapping[str, ParamValue]) -> str:
        """Return the URL actually requested: the target, or the proxy wrapping it."""
        target = self.target_url(path, params)
        if self.proxy_url:
            return f"{self.proxy_url}?url={quote(target, safe='')}"
        return target

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, ParamValue],
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        method = method.upper()
        url = self.build_url(path, params)

        shopee_logger.log_shopee_event(
            "partner_api_request",
            f"{method} {path}" + (" via proxy" if self.proxy_url else ""),
            request_data=dict(params),
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                if method == "POST":
                    response = await client.post(url, json=body or {})
                else:
                    response = await client.get(url)
        except httpx.RequestError as exc:
            logger.warning("[shopee_transport] %s %s failed: %s", method, path, exc)
            raise ShopeeTransportError(
                f"Failed to contact Shopee for {path}: {exc}",
                details={"path": path},
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ShopeeTransportError(
                f"Shopee returned a non-JSON response for {path} (HTTP {response.status_code})",
                details={"path": path, "status": response.status_code, "body": response.text[:500]},
            ) from exc

        if not isinstance(payload, dict):
            raise ShopeeTransportError(
                f"Shopee returned an unexpected payload for {path}",
                details={"path": path, "status": response.status_code},
            )

        if is_business_error(payload):
            shopee_logger.log_shopee_event(
                "partner_api_error",
                f"{method} {path} -> HTTP {response.status_code}",
                response_data={"error": payload.get("error"), "request_id": payload.get("request_id")},
                status="error",
                error=error_message(payload),
            )
        return payload
