"""Exceptions raised by the Shopee engine services.

Routers translate these into ``{success: false, error, message}`` payloads;
services never return raw exceptions to the dashboard.
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError


class ShopeeEngineError(Exception):
    code = "shopee_engine_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class PartnerCredentialsNotConfigured(ShopeeEngineError):
    code = "partner_not_configured"


class ShopNotAuthenticated(ShopeeEngineError):
    """No stored token for the shop. The caller cannot recover without a new OAuth grant."""

    code = "shop_not_authenticated"


class TokenRefreshFailed(ShopeeEngineError):
    code = "token_refresh_failed"


class ShopeeAuthError(ShopeeEngineError):
    """Auth rejection that survived the one-shot refresh and retry."""

    code = "auth_failed"


class ShopeeTransportError(ShopeeEngineError):
    code = "transport_error"


class ScheduledJobNotFound(ShopeeEngineError):
    code = "job_not_found"


class InvalidJobState(ShopeeEngineError):
    code = "invalid_job_state"


def invalid_request(exc: ValidationError) -> Dict[str, Any]:
    """Action-endpoint body for a payload that matches no known command."""
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )
    return {"success": False, "error": "invalid_request", "message": f"Invalid action: {problems}"}
