from pydantic_settings import BaseSettings
from typing import List, Optional
import os
from dotenv import load_dotenv

from shopee_engine.services.shopee_signature import PartnerCredential

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    DEBUG: bool = False

    # Process-wide fallback partner identity. Shops without a linked
    # partner account are signed with this pair.
    SHOPEE_PARTNER_ID: Optional[int] = None
    SHOPEE_PARTNER_KEY: Optional[str] = None

    SHOPEE_BASE_URL: str = "https://partner.shopeemobile.com"

    # Optional outbound proxy. When set, every Partner API call is issued as
    #   {SHOPEE_PROXY_URL}?url=<urlencoded target>
    # The signature is still computed over the target path.
    SHOPEE_PROXY_URL: Optional[str] = None

    SHOPEE_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Proactive refresh window: tokens expiring within this many seconds are
    # exchanged before use.
    SHOPEE_TOKEN_REFRESH_BUFFER_SECONDS: int = 300

    # Comma-separated provider error codes that mean "access token invalid or
    # expired". Shopee has shipped more than one spelling over time.
    SHOPEE_AUTH_ERROR_CODES: str = "error_auth,invalid_access_token,invalid_acceess_token"

    # Default redirect for the OAuth connect flow (dashboard callback page).
    SHOPEE_REDIRECT_URI: Optional[str] = None

    SCHEDULER_SWEEP_BATCH_SIZE: int = 10
    SCHEDULER_POLL_INTERVAL_SECONDS: int = 60
    SCHEDULER_DEFAULT_MINUTES_BEFORE: int = 10
    # Start the sweep loop inside the API process. Off by default so a
    # separate worker (or cron hitting /sweep) owns it.
    SCHEDULER_RUN_IN_PROCESS: bool = False

    # Shared secret for the cron-style sweep trigger.
    INTERNAL_API_KEY: Optional[str] = None

    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    FRONTEND_URL: str = "http://localhost:5173"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def secret_key(self) -> str:
        return self.SECRET_KEY

    @property
    def auth_error_codes(self) -> List[str]:
        return [c.strip() for c in self.SHOPEE_AUTH_ERROR_CODES.split(",") if c.strip()]

    @property
    def default_partner_credential(self) -> Optional[PartnerCredential]:
        if not self.SHOPEE_PARTNER_ID or not self.SHOPEE_PARTNER_KEY:
            return None
        return PartnerCredential(
            partner_id=int(self.SHOPEE_PARTNER_ID),
            partner_key=self.SHOPEE_PARTNER_KEY,
            partner_account_id=None,
            source="default",
        )


if not os.getenv("DATABASE_URL"):
    raise RuntimeError("DATABASE_URL is required (Postgres in production, SQLite for local runs).")

settings = Settings()
