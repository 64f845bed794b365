import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Plain configuration. Secrets go through load_secret() below.
DB_PATH = os.environ.get("DB_PATH", "data/timetracker.sqlite")
CACHE_DIR = os.environ.get("CACHE_DIR", "data/cache")
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "uploads")

# Comma-separated, e.g. "http://localhost:5173,https://dashboard.example.com"
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

ADMIN_USER = os.environ.get("ADMIN_USER", "admin")
DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "UTC")
JIRA_BASE_URL = os.environ.get("JIRA_BASE_URL") or None
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

SECRETS_DIR = Path(os.environ.get("SECRETS_DIR", "/run/secrets"))


def is_production() -> bool:
    return ENVIRONMENT == "production"


def load_secret(name: str, required: bool = True, min_length: int | None = None) -> str | None:
    """
    Load a secret from a mounted secrets file, falling back to the environment.

    `/run/secrets/<name>` is tried first (container deployments); otherwise the
    upper-cased name is read from the environment, so `jwt_secret` maps to
    `JWT_SECRET`.

    Raises:
        ValueError: if a required secret is missing or shorter than `min_length`.
    """
    value = None
    secret_file = SECRETS_DIR / name
    try:
        value = secret_file.read_text(encoding="utf-8").strip()
    except OSError:
        value = os.environ.get(name.upper())

    if not value:
        if required:
            raise ValueError(
                f"Secret {name} not found in {SECRETS_DIR} or environment variable {name.upper()}"
            )
        return None

    if min_length and len(value) < min_length:
        raise ValueError(
            f"Secret {name} must be at least {min_length} characters long (found {len(value)})"
        )

    return value
