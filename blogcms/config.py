from pydantic import BaseModel, Field
import os
from pathlib import Path
from typing import List, Optional, Literal

from dotenv import load_dotenv


_ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT_DIR / ".env")
load_dotenv()  # fallback to current working directory


DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

DEFAULT_ALLOWED_MIME_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
    "application/zip",
    "application/x-rar-compressed",
)


def _normalize_env(value: Optional[str], default: str) -> str:
    if value is None:
        return default
    cleaned = value.strip().lower()
    return cleaned or default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class FileStorageSettings(BaseModel):
    driver: Literal["local", "docker_volume"] = "local"
    local_path: str = "./uploads"
    docker_volume_path: str = "/data/uploads"
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_mime_types: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))


def _load_file_storage_settings() -> FileStorageSettings:
    driver = _normalize_env(os.getenv("FILE_STORAGE_DRIVER"), "local")
    if driver not in {"local", "docker_volume"}:
        driver = "local"
    return FileStorageSettings(
        driver=driver,
        local_path=os.getenv("FILE_STORAGE_LOCAL_PATH", "./uploads"),
        docker_volume_path=os.getenv("FILE_STORAGE_DOCKER_PATH", "/data/uploads"),
        max_file_size=_env_int("MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
        allowed_mime_types=_env_list("ALLOWED_MIME_TYPES", list(DEFAULT_ALLOWED_MIME_TYPES)),
    )


class Settings(BaseModel):
    app_name: str = "BlogCMS"
    secret_key: str = os.getenv("SECRET_KEY", "dev-secret-key-change")
    access_token_expire_minutes: Optional[int] = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60)
    algorithm: str = os.getenv("ALGORITHM", "HS256")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data.db")
    debug: bool = _env_bool("DEBUG", False)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    environment: str = _normalize_env(os.getenv("APP_ENV") or os.getenv("ENVIRONMENT"), "dev")
    cors_origins: List[str] = Field(
        default_factory=lambda: _env_list("CORS_ORIGINS", ["http://localhost:3000", "http://127.0.0.1:3000"])
    )
    default_admin_email: str = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@blogcms.dev")
    default_admin_password: str = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123")
    file_storage: FileStorageSettings = Field(default_factory=_load_file_storage_settings)

    @property
    def is_production(self) -> bool:
        return self.environment in {"prod", "production"}


settings = Settings()
