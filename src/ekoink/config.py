from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Built once at process start and handed to ``create_app``; handlers read
    it from ``app.state.settings`` through the ``get_settings`` dependency.
    """

    # Database
    database_url: str = "sqlite:///./ekoink.db"

    # Redis (optional API key lookup cache)
    redis_url: str = "redis://localhost:6379"
    api_key_cache_ttl: int = 3600

    # Generative model (OpenAI-compatible API)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    generation_model: str = "gpt-4o-mini"
    analysis_model: str = "gpt-4o"

    # Handwrite.io
    handwriteio_api_key: Optional[str] = None
    handwriteio_base_url: str = "https://api.handwrite.io/v1"
    handwriteio_test_mode: bool = False
    handwriteio_default_handwriting_id: str = "default"
    handwriteio_default_card_id: str = "default"

    # Dashboard sessions (tokens issued by the auth provider)
    auth_jwt_secret: str = "change-this-secret-key-in-production"
    auth_jwt_audience: str = "authenticated"
    auth_cookie_name: str = "sb-access-token"

    # Product rules
    learning_threshold: int = 25
    default_monthly_limit: int = 100
    price_per_card_cents: int = 1000

    # Server Settings
    debug: bool = False
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = '["http://localhost:3000"]'

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
