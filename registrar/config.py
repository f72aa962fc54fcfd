from pydantic import BaseModel
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


_ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT_DIR / ".env")
load_dotenv()  # fallback to current working directory


def _normalize_env(value: Optional[str], default: str) -> str:
    if value is None:
        return default
    cleaned = value.strip().lower()
    return cleaned or default


def _resolve_access_token_expiry() -> Optional[int]:
    raw = os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES")
    if raw is None or not raw.strip():
        return None
    try:
        minutes = int(raw)
    except ValueError:
        return None
    return minutes if minutes > 0 else None


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


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


class Settings(BaseModel):
    app_name: str = "Registrar"
    secret_key: str = os.getenv("SECRET_KEY", "dev-secret-key-change")
    access_token_expire_minutes: Optional[int] = _resolve_access_token_expiry()
    algorithm: str = os.getenv("ALGORITHM", "HS256")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./registrar.db")
    debug: bool = _env_bool("DEBUG", False)
    environment: str = _normalize_env(os.getenv("APP_ENV") or os.getenv("ENVIRONMENT"), "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    credit_queue_enabled: bool = _env_bool("CREDIT_QUEUE_ENABLED", True)
    credit_queue_workers: int = _env_int("CREDIT_QUEUE_WORKERS", 1, minimum=1)
    import_max_classes: int = _env_int("IMPORT_MAX_CLASSES", 5000, minimum=1)

    @property
    def is_production(self) -> bool:
        return self.environment in {"prod", "production"}


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Set up the root logger once; later calls only adjust the level."""
    resolved = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=resolved,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(resolved)
