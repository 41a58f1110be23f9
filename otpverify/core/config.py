from pydantic_settings import BaseSettings
from typing import List, Union
from pydantic import field_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "OTP Verification Flow"

    # Upstream auth backend (VerificationAPI)
    AUTH_API_BASE_URL: str = "http://localhost:5000"
    VERIFY_OTP_PATH: str = "/api/auth/verify-otp"
    RESEND_OTP_PATH: str = "/api/auth/resend-otp"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Verification flow
    OTP_VALIDITY_SECONDS: int = 600
    OTP_LENGTH: int = 6
    MAX_VERIFICATION_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15  # UI copy only, the client never times the lockout
    COUNTDOWN_TICK_SECONDS: float = 1.0

    # Durable storage scope: "memory", "file" or "redis"
    DURABLE_STORE_BACKEND: str = "file"
    DURABLE_STORE_DIR: str = ".otp_state"

    # Redis Settings (durable scope when DURABLE_STORE_BACKEND=redis)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Browser scoping cookies
    DEVICE_COOKIE_NAME: str = "otp_device"
    SESSION_COOKIE_NAME: str = "otp_session"
    DEVICE_COOKIE_MAX_AGE_DAYS: int = 365

    # Session registry bounds
    SESSION_IDLE_TIMEOUT_SECONDS: int = 1800
    MAX_TRACKED_BROWSERS: int = 10000

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("DURABLE_STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Only the three known backends are accepted"""
        v = v.lower()
        if v not in ("memory", "file", "redis"):
            raise ValueError("DURABLE_STORE_BACKEND must be one of: memory, file, redis")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
