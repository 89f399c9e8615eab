from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file for convenience.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    log_level: str = "INFO"

    # Keys (server-side only)
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    sendgrid_api_key: str | None = None

    # Hosted datastore
    supabase_url: str | None = None
    supabase_key: str | None = None

    # Models
    vision_provider: str = "openai"  # openai|gemini
    openai_vision_model: str = "gpt-4o"
    gemini_vision_model: str = "gemini-2.0-flash"
    max_output_tokens: int = 4096

    # Email
    sendgrid_api_url: str = "https://api.sendgrid.com/v3/mail/send"
    email_from_address: str = "assistant@psalia.ai"
    email_from_name: str = "Psalia Creative Evaluator"

    # Auth
    otp_ttl_minutes: int = 10
    otp_max_attempts: int = 5
    session_cookie_name: str = "creative_session_id"
    session_idle_minutes: int = 12 * 60


settings = Settings()
