import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: Optional[str] = None):
    # Read at construction time so each Settings() sees the current environment
    return field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: str):
    return field(default_factory=lambda: int(os.getenv(name, default)))


def _env_float(name: str, default: str):
    return field(default_factory=lambda: float(os.getenv(name, default)))


def _env_bool(name: str, default: str):
    return field(default_factory=lambda: os.getenv(name, default).lower() in ("true", "1", "yes"))


PLACEHOLDER_VALUES = {"", "undefined", "null", "none", "changeme"}

# Settings that must be present before any data-dependent view is served
REQUIRED_SETTINGS = {
    "db_file": "LIBRARY_DB_FILE",
    "secret_key": "SECRET_KEY",
}


@dataclass
class Settings:
    # API Ayarları
    api_host: str = _env("API_HOST", "127.0.0.1")
    api_port: int = _env_int("API_PORT", "8000")

    # Belge deposu
    db_file: Optional[str] = _env("LIBRARY_DB_FILE")
    secret_key: str = _env("SECRET_KEY", "your-secret-key-change-this-in-production")
    password_hash_iterations: int = _env_int("PASSWORD_HASH_ITERATIONS", "120000")

    # Yönetici kayıt kodu
    admin_secret_code: Optional[str] = _env("ADMIN_SECRET_CODE")

    # ImageKit Ayarları
    imagekit_public_key: Optional[str] = _env("IMAGEKIT_PUBLIC_KEY")
    imagekit_private_key: Optional[str] = _env("IMAGEKIT_PRIVATE_KEY")
    imagekit_url_endpoint: Optional[str] = _env("IMAGEKIT_URL_ENDPOINT")
    imagekit_upload_url: str = _env("IMAGEKIT_UPLOAD_URL", "https://upload.imagekit.io/api/v1/files/upload")
    imagekit_timeout: float = _env_float("IMAGEKIT_TIMEOUT", "15")

    # Ödünç verme
    loan_period_days: int = _env_int("LOAN_PERIOD_DAYS", "15")

    # Yükleme Ayarları
    max_upload_size: int = _env_int("MAX_UPLOAD_SIZE", "10485760")  # 10MB
    allowed_image_extensions: List[str] = field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif", ".webp"])

    # Uygulama Ayarları
    app_name: str = _env("APP_NAME", "Book Lending Portal")
    app_version: str = _env("APP_VERSION", "1.0.0")
    debug: bool = _env_bool("DEBUG", "False")

    @staticmethod
    def _is_placeholder(value: Optional[str]) -> bool:
        if value is None:
            return True
        v = str(value).strip().lower()
        return v in PLACEHOLDER_VALUES or v.startswith("your-")

    def missing_settings(self) -> List[str]:
        """Return env var names of required settings that are absent or still placeholders."""
        return [
            env_name
            for attr, env_name in REQUIRED_SETTINGS.items()
            if self._is_placeholder(getattr(self, attr))
        ]

    def is_store_configured(self) -> bool:
        return not self.missing_settings()

    def is_image_host_configured(self) -> bool:
        return not self._is_placeholder(self.imagekit_private_key)


settings = Settings()
