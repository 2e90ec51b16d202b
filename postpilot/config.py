from pydantic_settings import BaseSettings, SettingsConfigDict

import os

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./postpilot.db"
    timezone: str = "UTC"
    uploads_dir: str = "uploads"
    templates_dir: str = "uploads/templates"
    log_level: str = "INFO"

    # MUST be set in production so media URLs are public for Instagram
    public_base_url: str = os.getenv("BASE_URL", "http://localhost:8000")
    frontend_url: str = "http://localhost:5173"

    secret_key: str = "change-me-in-production-for-jwt"
    # Fernet key (urlsafe base64, 32 bytes) for client page tokens at rest
    token_encryption_key: str | None = None

    graph_api_version: str = "v24.0"
    facebook_app_id: str | None = None
    facebook_app_secret: str | None = None
    oauth_redirect_base: str = "http://localhost:8000"

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    mail_from: str = "reports@postpilot.local"

    admin_email: str | None = None
    admin_password: str | None = None

    scheduler_enabled: bool = True

    @property
    def graph_url(self) -> str:
        return f"https://graph.facebook.com/{self.graph_api_version}"

settings = Settings()
