"""
Application settings.

Values come from the environment; a `.env` file at the project root is loaded
first when present. Secrets are read from the environment only, never
hard-coded.

Environment variables:
- SUPABASE_URL, SUPABASE_KEY: required (checked when the client is created)
- APP_ENV: "production" disables the webhook test-mode bypass (default "development")
- ASAAS_WEBHOOK_SECRET, MERCADO_PAGO_WEBHOOK_SECRET: webhook authentication
- MERCADO_PAGO_ACCESS_TOKEN: payment lookups
- CLERK_SECRET_KEY, CLERK_API_URL: identity provider
- SIGNUP_REDIRECT_URL: where invitation links send the user
- CLAIM_TOKEN_TTL_DAYS: claim token lifetime (default 7)
- LOG_LEVEL: root log level (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from services.claim_service import DEFAULT_CLAIM_TOKEN_TTL_DAYS
from services.identity_provider import CLERK_API_URL

ENV_PATH = Path(__file__).parent.parent / ".env"


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: Optional[str]
    supabase_key: Optional[str]
    environment: str = "development"
    asaas_webhook_secret: Optional[str] = None
    mercado_pago_webhook_secret: Optional[str] = None
    mercado_pago_access_token: Optional[str] = None
    clerk_secret_key: Optional[str] = None
    clerk_api_url: str = CLERK_API_URL
    signup_redirect_url: Optional[str] = None
    claim_token_ttl_days: int = DEFAULT_CLAIM_TOKEN_TTL_DAYS
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, env_path: Optional[Path] = ENV_PATH) -> "Settings":
        if env_path is not None:
            load_dotenv(dotenv_path=env_path)

        ttl = os.getenv("CLAIM_TOKEN_TTL_DAYS")
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            environment=os.getenv("APP_ENV", "development").strip().lower(),
            asaas_webhook_secret=os.getenv("ASAAS_WEBHOOK_SECRET"),
            mercado_pago_webhook_secret=os.getenv("MERCADO_PAGO_WEBHOOK_SECRET"),
            mercado_pago_access_token=os.getenv("MERCADO_PAGO_ACCESS_TOKEN"),
            clerk_secret_key=os.getenv("CLERK_SECRET_KEY"),
            clerk_api_url=os.getenv("CLERK_API_URL", CLERK_API_URL),
            signup_redirect_url=os.getenv("SIGNUP_REDIRECT_URL"),
            claim_token_ttl_days=int(ttl) if ttl else DEFAULT_CLAIM_TOKEN_TTL_DAYS,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


__all__ = ["Settings"]
