import os
from functools import lru_cache
from typing import Optional, Tuple

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime settings, read once from the environment."""

    environment: str = "development"
    # "mongo" talks to MongoDB/GridFS, "memory" keeps everything in-process
    backend: str = "memory"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "marketchat"
    redis_url: Optional[str] = None

    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    public_base_url: str = "http://localhost:8000"
    attachments_bucket: str = "attachments"

    request_timeout_seconds: float = Field(default=10.0, gt=0)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    message_page_size: int = Field(default=20, ge=1, le=200)
    conversation_list_limit: int = Field(default=50, ge=1, le=500)

    allow_test_identifiers: bool = True
    provision_schema: bool = True
    migration_check: bool = True

    restore_session_on_load: bool = False
    session_storage_dir: str = ".marketchat/sessions"
    window_origin: Tuple[int, int] = (785, 315)
    window_cascade_offset: int = 30

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_dir: str = "logs"
    log_file: str = "marketchat.log"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=environment,
            backend=os.getenv("MARKETCHAT_BACKEND", "memory"),
            mongodb_url=os.getenv("MONGODB_URL", "mongodb://localhost:27017"),
            mongodb_db=os.getenv("MONGODB_DB", "marketchat"),
            redis_url=os.getenv("REDIS_URL") or None,
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
            attachments_bucket=os.getenv("ATTACHMENTS_BUCKET", "attachments"),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),
            max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
            message_page_size=int(os.getenv("MESSAGE_PAGE_SIZE", "20")),
            conversation_list_limit=int(os.getenv("CONVERSATION_LIST_LIMIT", "50")),
            # test ids like "tg-2" are for demo environments only
            allow_test_identifiers=_env_bool(
                "ALLOW_TEST_IDENTIFIERS", environment.lower() != "production"
            ),
            provision_schema=_env_bool("PROVISION_SCHEMA", True),
            migration_check=_env_bool("MIGRATION_CHECK", True),
            restore_session_on_load=_env_bool("RESTORE_SESSION_ON_LOAD", False),
            session_storage_dir=os.getenv("SESSION_STORAGE_DIR", ".marketchat/sessions"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_file=os.getenv("LOG_FILE", "marketchat.log"),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
