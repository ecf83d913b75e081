import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    admin_registration_code: str
    app_base_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    smtp_server: str
    smtp_port: int
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///community.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        admin_registration_code=_getenv("ADMIN_REGISTRATION_CODE", ""),
        app_base_url=_getenv("APP_BASE_URL", "http://localhost:5000").rstrip("/"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "storage")),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_use_tls=_getenv("SMTP_USE_TLS", "1").lower() in ("1", "true", "yes"),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        email_from=_getenv("EMAIL_FROM", "no-reply@school.local"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "ADMIN_REGISTRATION_CODE": s.admin_registration_code,
        "APP_BASE_URL": s.app_base_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # file upload limits (25MB request, per-file limits enforced in services)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
        "STUDY_SOURCE_MAX_BYTES": 20 * 1024 * 1024,
        "POST_MEDIA_MAX_BYTES": 10 * 1024 * 1024,
    }
