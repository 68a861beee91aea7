"""Performa service configuration loaded from environment."""

import os
from dataclasses import dataclass, field


@dataclass
class StripeConfig:
    secret_key: str = ""
    webhook_secret: str = ""
    tolerance_seconds: int = 300
    api_base: str = "https://api.stripe.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key and self.webhook_secret)


@dataclass
class ResendConfig:
    api_key: str = ""
    from_email: str = ""
    api_base: str = "https://api.resend.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_email)


@dataclass
class TwilioConfig:
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    api_base: str = "https://api.twilio.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)


@dataclass
class Settings:
    database_url: str = ""
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_gate_limit: int = 0
    supabase_url: str = ""
    supabase_anon_key: str = ""
    payments_backend: str = "stripe"
    mock_secret: str = "supersecret"
    live_blast_token: str = ""
    public_base_url: str = "http://localhost:8000"
    live_fallback_url: str = "https://theperforma.com/live"
    redis_url: str = "redis://127.0.0.1:6379"
    log_level: str = "INFO"
    log_format: str = "text"
    stripe: StripeConfig = field(default_factory=StripeConfig)
    resend: ResendConfig = field(default_factory=ResendConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.environ.get("CORS_ORIGINS", "*")
        return cls(
            database_url=os.environ.get("DATABASE_URL", ""),
            db_pool_size=int(os.environ.get("DB_POOL_SIZE", "10")),
            db_max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "10")),
            db_pool_timeout=int(os.environ.get("DB_POOL_TIMEOUT", "30")),
            db_gate_limit=int(os.environ.get("DB_GATE_LIMIT", "0")),
            supabase_url=os.environ.get("SUPABASE_URL", ""),
            supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY", ""),
            payments_backend=os.environ.get(
                "PAYMENTS_BACKEND", "stripe"
            ).lower(),
            mock_secret=os.environ.get("MOCK_SECRET", "supersecret"),
            live_blast_token=os.environ.get("LIVE_BLAST_TOKEN", ""),
            public_base_url=os.environ.get(
                "PUBLIC_BASE_URL", "http://localhost:8000"
            ).rstrip("/"),
            live_fallback_url=os.environ.get(
                "LIVE_FALLBACK_URL", "https://theperforma.com/live"
            ),
            redis_url=os.environ.get("REDIS_URL", "redis://127.0.0.1:6379"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "text"),
            stripe=StripeConfig(
                secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
                webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
                tolerance_seconds=int(
                    os.environ.get("STRIPE_TOLERANCE_SECONDS", "300")
                ),
            ),
            resend=ResendConfig(
                api_key=os.environ.get("RESEND_API_KEY", ""),
                from_email=os.environ.get("RESEND_FROM_EMAIL", ""),
            ),
            twilio=TwilioConfig(
                account_sid=os.environ.get("TWILIO_ACCOUNT_SID", ""),
                auth_token=os.environ.get("TWILIO_AUTH_TOKEN", ""),
                from_number=os.environ.get("TWILIO_FROM_NUMBER", ""),
            ),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
