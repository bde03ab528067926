import os

from gait_recorder.constants import APP_DIR, MAX_UPLOAD_BYTES

STORAGE_BACKENDS = ("sqlite", "json")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    PROJECT_NAME: str = "Gait Recorder Server"

    # one backend per deployment, never both
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "sqlite").lower()

    # storage paths
    DATA_DIR: str = os.getenv("DATA_DIR", (APP_DIR / "data").as_posix())
    UPLOADS_DIR: str = os.getenv("UPLOADS_DIR", os.path.join(DATA_DIR, "uploads"))
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite:///{os.path.join(DATA_DIR, 'sessions.db')}"
    )
    SESSIONS_FILE: str = os.getenv(
        "SESSIONS_FILE", os.path.join(DATA_DIR, "sessions.json")
    )

    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(MAX_UPLOAD_BYTES)))

    # advisory write lock of the json backend
    LOCK_RETRIES: int = int(os.getenv("LOCK_RETRIES", "50"))
    LOCK_RETRY_DELAY: float = float(os.getenv("LOCK_RETRY_DELAY", "0.1"))

    REQUIRE_PATIENT_ID: bool = _env_bool("REQUIRE_PATIENT_ID", True)

    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "*")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.FRONTEND_URL.split(",") if origin.strip()]


settings = Settings()

if settings.STORAGE_BACKEND not in STORAGE_BACKENDS:
    raise RuntimeError(
        f"Unknown STORAGE_BACKEND {settings.STORAGE_BACKEND!r}, expected one of {STORAGE_BACKENDS}"
    )
