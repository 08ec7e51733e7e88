"""
Application settings

Values come from environment variables (or a local .env file). Every
third-party integration is optional at import time so the API can boot
with only a database configured; the endpoints that need a missing
integration report it when called.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    database_url: Optional[str] = Field(None, description="MongoDB connection URL")
    database_name: Optional[str] = Field(None, description="MongoDB database name")

    # Auth (tokens issued by the external identity provider)
    auth_jwt_secret: Optional[str] = Field(None, description="HS256 shared secret")
    auth_jwks_url: Optional[str] = Field(None, description="JWKS endpoint for RS256 tokens")
    auth_issuer: Optional[str] = Field(None, description="Expected `iss` claim")
    auth_audience: Optional[str] = Field(None, description="Expected `aud` claim")

    # LLM vision extraction
    openai_api_key: Optional[str] = Field(None, description="OpenAI API key")
    openai_model: str = Field("gpt-4.1-nano", description="Vision model for screenshot extraction")

    # Object storage
    supabase_url: Optional[str] = Field(None, description="Supabase project URL")
    supabase_service_role: Optional[str] = Field(None, description="Supabase service role key")
    supabase_bucket_screenshots: str = Field("screenshots", description="Bucket for trade screenshots")
    signed_url_ttl: int = Field(60 * 60, description="Signed URL lifetime in seconds")

    # Payments
    stripe_secret_key: Optional[str] = Field(None, description="Stripe secret API key")
    stripe_webhook_secret: Optional[str] = Field(None, description="Stripe webhook signing secret")
    stripe_payment_link_pro: Optional[str] = Field(None, description="Payment link for the pro plan")

    # App
    app_url: str = Field("http://localhost:3000", description="Public URL of the web app")
    cors_origins: str = Field("*", description="CORS allowed origins (comma-separated)")
    log_level: str = Field("INFO", description="Logging level")
    port: int = Field(8000, description="API port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
