"""
Claim Resolution Engine - Configuration
Environment-driven settings for external collaborators.

Business thresholds are deliberately absent here: they live in the
versioned rule table (app.services.claims.rules).
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved once per process."""
    database_url: str
    jwt_secret_key: str

    # Language model (Anthropic Messages API)
    anthropic_api_key: Optional[str]
    anthropic_model: str
    llm_timeout_seconds: int
    llm_max_retries: int

    # Object storage (Supabase Storage)
    supabase_url: Optional[str]
    supabase_service_key: Optional[str]
    storage_bucket: str
    signed_url_ttl_seconds: int
    download_timeout_seconds: int

    # Email (SendGrid) - falls back to logging sender when no key is set
    sendgrid_api_key: Optional[str]
    sendgrid_from_email: str
    sendgrid_from_name: str
    notification_timeout_seconds: int

    frontend_url: str


def load_settings() -> Settings:
    """Read settings from the process environment."""
    return Settings(
        database_url=os.getenv(
            "DATABASE_URL",
            f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/claim_engine",
        ),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", "claim-engine-secret-key-change-in-production"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-6"),
        llm_timeout_seconds=_env_int("LLM_TIMEOUT_SECONDS", 60),
        llm_max_retries=_env_int("LLM_MAX_RETRIES", 3),
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY") or None,
        storage_bucket=os.getenv("STORAGE_BUCKET", "claim-documents"),
        signed_url_ttl_seconds=_env_int("SIGNED_URL_TTL_SECONDS", 300),
        download_timeout_seconds=_env_int("DOWNLOAD_TIMEOUT_SECONDS", 30),
        sendgrid_api_key=os.getenv("SENDGRID_API_KEY") or None,
        sendgrid_from_email=os.getenv("SENDGRID_FROM_EMAIL", "noreply@claimcoach.ai"),
        sendgrid_from_name=os.getenv("SENDGRID_FROM_NAME", "ClaimCoach AI"),
        notification_timeout_seconds=_env_int("NOTIFICATION_TIMEOUT_SECONDS", 30),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
