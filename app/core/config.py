from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
QuizPointsMode = Literal["percentage", "flat"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getfloat(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getpem(name: str) -> str | None:
    """Read a PEM-encoded EC public key; None when unset.

    Literal ``\\n`` sequences are accepted so the key fits on one env line.
    """
    raw = _getenv(name, "").replace("\\n", "\n")
    if not raw:
        return None
    try:
        key = serialization.load_pem_public_key(raw.encode())
    except ValueError:
        raise ValueError(f"{name} is not a valid PEM public key") from None
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError(f"{name} must be an EC public key for ES256")
    return raw


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # --- Aggregation policy ---
    deviation_band: float = 5.0
    default_course_duration_days: int = 30
    quiz_passing_percent: float = 60.0
    points_enrollment: int = 50
    points_lesson: int = 10
    points_course_completion: int = 500
    points_quiz_mode: QuizPointsMode = "percentage"
    points_quiz_flat: int = 20

    # --- Concurrency / read path ---
    occ_max_retries: int = 3
    dashboard_course_timeout_seconds: float = 2.0
    dashboard_cache_ttl_seconds: int = 300

    # --- Token verification ---
    jwt_public_key: str | None = None
    jwt_issuer: str = "auth-service"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    quiz_mode_raw = _getenv("POINTS_QUIZ_MODE", "percentage").lower()
    if quiz_mode_raw not in ("percentage", "flat"):
        raise ValueError(
            f"POINTS_QUIZ_MODE must be percentage|flat (got {quiz_mode_raw!r})"
        )

    passing = _getfloat("QUIZ_PASSING_PERCENT", 60.0)
    if passing > 100:
        raise ValueError(f"QUIZ_PASSING_PERCENT must be <= 100 (got {passing})")

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    course_timeout = _getfloat("DASHBOARD_COURSE_TIMEOUT_SECONDS", 2.0)
    if course_timeout <= 0:
        raise ValueError(
            f"DASHBOARD_COURSE_TIMEOUT_SECONDS must be > 0 (got {course_timeout})"
        )

    jwt_public_key = _getpem("JWT_PUBLIC_KEY")
    if app_env_raw == "prod" and jwt_public_key is None:
        raise ValueError("JWT_PUBLIC_KEY is required when APP_ENV=prod")
    jwt_issuer = _getenv("JWT_ISSUER", "auth-service")
    if not jwt_issuer:
        raise ValueError("JWT_ISSUER must not be empty")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        deviation_band=_getfloat("DEVIATION_BAND", 5.0),
        default_course_duration_days=_getint(
            "DEFAULT_COURSE_DURATION_DAYS", 30, minimum=1
        ),
        quiz_passing_percent=passing,
        points_enrollment=_getint("POINTS_ENROLLMENT", 50),
        points_lesson=_getint("POINTS_LESSON", 10),
        points_course_completion=_getint("POINTS_COURSE_COMPLETION", 500),
        points_quiz_mode=quiz_mode_raw,
        points_quiz_flat=_getint("POINTS_QUIZ_FLAT", 20),
        occ_max_retries=_getint("OCC_MAX_RETRIES", 3, minimum=1),
        dashboard_course_timeout_seconds=course_timeout,
        dashboard_cache_ttl_seconds=_getint("DASHBOARD_CACHE_TTL_SECONDS", 300),
        jwt_public_key=jwt_public_key,
        jwt_issuer=jwt_issuer,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
