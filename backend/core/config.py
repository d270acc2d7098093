import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "1440"))

REQUEST_DEADLINE_SECONDS = _get_float(os.getenv("REQUEST_DEADLINE_SECONDS"), default=10.0)

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _get_bool(os.getenv("SMTP_USE_TLS"), default=True)
SMTP_TIMEOUT_SECONDS = _get_float(os.getenv("SMTP_TIMEOUT_SECONDS"), default=30.0)
EMAIL_SENDER = os.getenv("EMAIL_SENDER", "MediCloudHub <noreply@medicloudhub.com>")

NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "3"))
NOTIFICATION_RETRY_BASE_DELAY_SECONDS = _get_float(
    os.getenv("NOTIFICATION_RETRY_BASE_DELAY_SECONDS"),
    default=1.0,
)
NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "4"))

CHAT_WINDOW_DAYS = int(os.getenv("CHAT_WINDOW_DAYS", "7"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if NOTIFICATION_MAX_ATTEMPTS < 1:
        raise RuntimeError("NOTIFICATION_MAX_ATTEMPTS must be at least 1.")
