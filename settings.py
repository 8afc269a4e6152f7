"""
Application settings

All configuration is read from the process environment once, at startup, and
handed to the rest of the app through the `get_settings` dependency.
"""
import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str = Field("mongodb://localhost:27017", description="MongoDB connection string")
    database_name: str = Field("devcamper", description="MongoDB database name")

    jwt_secret: str = Field("dev-secret-change-me", description="HMAC secret for signing tokens")
    jwt_algorithm: str = "HS256"
    jwt_expire_days: int = Field(30, ge=1)
    jwt_cookie_expire_days: int = Field(30, ge=1)
    environment: str = Field("development", description="development | production")

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    from_name: str = "DevCamper"
    from_email: str = "noreply@devcamper.io"

    geocoder_provider: str = "nominatim"
    geocoder_api_key: Optional[str] = None

    file_upload_path: str = "./public/uploads"
    max_file_upload: int = Field(1000000, description="Max photo size in bytes")

    rate_limit: str = Field("100/15minutes", description="Requests allowed per client address")

    port: int = 8000
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "database_url": os.getenv("DATABASE_URL"),
            "database_name": os.getenv("DATABASE_NAME"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "jwt_expire_days": os.getenv("JWT_EXPIRE_DAYS"),
            "jwt_cookie_expire_days": os.getenv("JWT_COOKIE_EXPIRE"),
            "environment": os.getenv("APP_ENV"),
            "smtp_host": os.getenv("SMTP_HOST"),
            "smtp_port": os.getenv("SMTP_PORT"),
            "smtp_user": os.getenv("SMTP_USER_EMAIL"),
            "smtp_password": os.getenv("SMTP_USER_PASSWORD"),
            "from_name": os.getenv("FROM_NAME"),
            "from_email": os.getenv("FROM_EMAIL"),
            "geocoder_provider": os.getenv("GEOCODER_PROVIDER"),
            "geocoder_api_key": os.getenv("GEOCODER_API_KEY"),
            "file_upload_path": os.getenv("FILE_UPLOAD_PATH"),
            "max_file_upload": os.getenv("MAX_FILE_UPLOAD"),
            "rate_limit": os.getenv("RATE_LIMIT"),
            "port": os.getenv("PORT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        # unset variables fall back to the field defaults
        return cls(**{k: v for k, v in env.items() if v is not None})


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
