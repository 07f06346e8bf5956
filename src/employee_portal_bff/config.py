# src/employee_portal_bff/config.py

import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/employee_portal_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

# Reported by describe_settings(), which runs after logging is configured.
ENV_FILE_LOADED = ENV_FILE_PATH.exists()
if ENV_FILE_LOADED:
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)


class Settings(BaseSettings):
    # === Upstream HR API (server-only except APP_ID) ===
    API_BASE: str  # Kept as str: a malformed value must not stop the app from booting
    API_HEADER_KEY: str
    API_KEY: SecretStr
    APP_ID: int

    # === Proxy behaviour ===
    PROXY_PREFIX: str = "/api/freelance"
    UPSTREAM_FALLBACK_ORIGIN: str = "https://api.laskarbuah.com"
    UPSTREAM_USER_AGENT: str = "PostmanRuntime/7.50.0"
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0

    # === Upstream endpoints used by the session lifecycle ===
    LOGIN_ENDPOINT: str = "/FreelanceLogin"
    LOGOUT_ENDPOINT: str = "/FreelanceLogout"
    IP_LOOKUP_URL: str = "https://api.ipify.org?format=json"

    # === Object storage (S3) ===
    AWS_REGION: str
    AWS_BUCKET: str
    AWS_ACCESS_KEY_ID: str
    AWS_SECRET_ACCESS_KEY: SecretStr
    S3_PUBLIC_READ_ACL: bool = True
    ATTENDANCE_PREFIX: str = "attendance"
    PROFILE_PREFIX: str = "freelance_profile"

    # === Session Management ===
    SESSION_COOKIE_NAME: str = "session_id"
    SESSION_TTL_SECONDS: int = 60 * 60 * 24  # 24 hours
    SESSION_COOKIE_SECURE: bool = False  # Set to True in production with HTTPS
    SESSION_STORE_PATH: Optional[Path] = None

    # === Views ===
    HOME_PATH: str = "/"
    LOGIN_VIEW_PATH: str = "/login"
    # Allow Pydantic to initially see this as a string from the env,
    # then our validator will convert it to List[str]
    PWA_PUBLIC_PATHS: Union[str, List[str]] = ["/manifest.webmanifest", "/sw.js"]
    INVALID_CREDENTIALS_MESSAGE: str = "Kode User atau Password salah."

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("PWA_PUBLIC_PATHS", mode="before")
    @classmethod
    def parse_comma_separated_paths(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            if not v.strip():
                return []
            return [path.strip() for path in v.split(",") if path.strip()]
        if isinstance(v, (list, tuple)):
            return list(v)
        raise TypeError("PWA_PUBLIC_PATHS: Expected a comma-separated string or a list.")

    @field_validator("PROXY_PREFIX", mode="after")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = "/" + v.strip("/")
        return v

    @model_validator(mode="after")
    def check_session_ttl(self) -> "Settings":
        if self.SESSION_TTL_SECONDS <= 0:
            raise ValueError("SESSION_TTL_SECONDS must be a positive number of seconds.")
        return self

    @property
    def API_BASE_STRIPPED(self) -> str:
        return self.API_BASE.rstrip("/")


def describe_settings(s: Settings) -> List[str]:
    """Startup summary lines; secrets are reported as set/unset only."""
    if ENV_FILE_LOADED:
        env_line = f"Loaded .env file from: {ENV_FILE_PATH}"
    else:
        env_line = f"Warning: .env file not found at {ENV_FILE_PATH}. Relying on environment variables."
    return [
        env_line,
        f"Upstream API base: {s.API_BASE}",
        f"Secret header name: {s.API_HEADER_KEY}",
        f"Secret header value is set: {'Yes' if s.API_KEY.get_secret_value() else 'NO (CRITICAL ERROR!)'}",
        f"Application id: {s.APP_ID}",
        f"Proxy prefix: {s.PROXY_PREFIX}",
        f"S3 bucket: {s.AWS_BUCKET} ({s.AWS_REGION})",
        f"S3 secret access key is set: {'Yes' if s.AWS_SECRET_ACCESS_KEY.get_secret_value() else 'NO'}",
        f"Session store: {s.SESSION_STORE_PATH or 'in-memory'} (TTL {s.SESSION_TTL_SECONDS}s)",
    ]


try:
    settings = Settings()
except Exception as e:
    logger.exception(f"EmployeePortal-BFF: Error instantiating Settings: {e}")
    raise
