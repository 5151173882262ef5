import os
from dataclasses import dataclass, field
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./backoffice.db"
    environment: str = "development"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    password_min_length: int = 8
    login_rate_limit: int = 10
    login_rate_window_minutes: int = 15
    s3_bucket: str = ""
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_base_prefix: str = "koop"
    docs_allowed_folders: list[str] = field(default_factory=lambda: ["documentos_iniciales", "clientes"])
    docs_client_root: str = "clientes"
    docs_max_file_mb: int = 25
    docs_exact_name_uploads: bool = False
    docs_signed_url_ttl: int = 600
    admin_emails: list[str] = field(default_factory=list)
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def docs_default_folder(self) -> str:
        return self.docs_allowed_folders[0] if self.docs_allowed_folders else "documentos_iniciales"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./backoffice.db"),
        environment=os.getenv("ENVIRONMENT", "development"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")),
        refresh_token_expire_days=int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7")),
        password_min_length=int(os.getenv("PASSWORD_MIN_LENGTH", "8")),
        login_rate_limit=int(os.getenv("LOGIN_RATE_LIMIT", "10")),
        login_rate_window_minutes=int(os.getenv("LOGIN_RATE_WINDOW_MINUTES", "15")),
        s3_bucket=os.getenv("S3_BUCKET_NAME", ""),
        s3_region=os.getenv("AWS_REGION") or None,
        s3_endpoint_url=os.getenv("S3_ENDPOINT_URL") or None,
        s3_base_prefix=os.getenv("S3_BASE_PREFIX", "koop").strip().strip("/") or "koop",
        docs_allowed_folders=_env_list("DOCS_ALLOWED_SUBFOLDERS", "documentos_iniciales,clientes"),
        docs_client_root=os.getenv("DOCS_CLIENT_ROOT", "clientes").strip().strip("/") or "clientes",
        docs_max_file_mb=int(os.getenv("DOCS_MAX_FILE_MB", "25")),
        docs_exact_name_uploads=_env_bool("DOCS_EXACT_NAME_UPLOADS", False),
        docs_signed_url_ttl=int(os.getenv("DOCS_SIGNED_URL_TTL", "600")),
        admin_emails=sorted({x.strip().lower() for x in _env_list("ADMIN_EMAILS", "")}),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
