from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str = "your_supabase_project_url"
    supabase_key: str = "your_supabase_anon_key"
    supabase_service_key: str = "your_supabase_service_role_key"
    storage_bucket: str = "generated"
    signed_url_expiry_seconds: int = 3600

    # "supabase" for production, "memory" for local runs and tests
    data_backend: str = "supabase"

    # Application Configuration
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_url: str = "http://localhost:3000"

    # Gemini Configuration
    gemini_api_key: str = ""
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_vision_model: str = "gemini-2.0-flash-exp"
    gemini_text_model: str = "gemini-2.0-flash-exp"
    gemini_image_model: str = "gemini-2.0-flash-exp"
    # Canned AI output without an API key; always on for the memory backend
    gemini_placeholder_mode: bool = False

    # Caller-enforced timeouts for each pipeline stage (seconds)
    analysis_timeout_seconds: float = 60.0
    prompts_timeout_seconds: float = 30.0
    image_timeout_seconds: float = 120.0

    # Stripe Configuration
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"

    class Config:
        env_file = None  # Disable .env file loading temporarily
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
