import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("shopee_engine")

# Query/body keys whose values must never reach the log buffer verbatim.
SENSITIVE_KEYS = frozenset(
    {"partner_key", "access_token", "refresh_token", "sign", "code", "authorization"}
)


def mask_value(value: Any) -> str:
    text = str(value)
    if len(text) > 8:
        return f"{text[:4]}...{text[-4:]}"
    return "***"


def mask_credentials(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy ``data`` with sensitive values masked, descending into nested dicts."""
    if not data:
        return {}
    masked: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            masked[key] = mask_credentials(value)
        elif value is not None and str(key).lower() in SENSITIVE_KEYS:
            masked[key] = mask_value(value)
        else:
            masked[key] = value
    return masked


class ShopeeConnectionLogger:
    """Recent Partner API traffic, kept in memory for the dashboard's log view."""

    def __init__(self, max_logs: int = 1000):
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_logs)

    def log_shopee_event(
        self,
        event_type: str,
        description: str,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        status: str = "info",
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "description": description,
            "shop_id": (request_data or {}).get("shop_id"),
            "request_data": mask_credentials(request_data) if request_data else None,
            "response_data": mask_credentials(response_data) if response_data else None,
            "status": status,
            "error": error,
        }
        self._events.append(event)

        if error:
            logger.error("[%s] %s - %s", event_type, description, error)
        else:
            logger.debug("[%s] %s", event_type, description)
        return event

    def get_logs(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        events = list(self._events)
        if limit:
            return events[-limit:]
        return events

    def clear_logs(self) -> None:
        self._events.clear()
        logger.info("[shopee_logger] Connection log cleared")


shopee_logger = ShopeeConnectionLogger()
