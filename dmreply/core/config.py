from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, List, Union


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./dmreply.db"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None
    redis_db: int = 0

    # Firebase (session issuance)
    firebase_project_id: str = ""
    firebase_credentials_path: str = ""

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_id: Optional[str] = None
    stripe_timeout_seconds: float = 10.0

    # Instagram Graph API
    instagram_verify_token: Optional[str] = None
    graph_api_version: str = "v22.0"
    graph_api_timeout_seconds: float = 15.0
    instagram_app_id: Optional[str] = None
    instagram_app_secret: Optional[str] = None
    instagram_oauth_url: str = "https://api.instagram.com"
    instagram_graph_url: str = "https://graph.instagram.com"
    # Long-lived tokens expiring within this window are refreshed
    instagram_token_refresh_days: int = 40

    # App
    api_prefix: str = "/api"
    app_url: str = "http://localhost:3000"
    trial_days: int = 14

    # Environment
    environment: str = "development"
    debug: bool = True
    session_test_mode: bool = False
    rate_limit_enabled: bool = True

    # Encryption (Instagram access tokens)
    encryption_key: str = ""

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
