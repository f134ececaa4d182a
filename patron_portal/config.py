import os
from dataclasses import dataclass
from typing import Optional

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    # If python-dotenv isn't installed or .env isn't present, that's fine.
    pass


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets (JWT secret, SMTP password, Patreon token) via
    environment variables or a .env file. Do not hardcode them in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: PORTAL_DATABASE_URL (or DATABASE_URL), as a path or sqlite:/// URL.
    # Fallback: PORTAL_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("PORTAL_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("PORTAL_DB_PATH", "./users.sqlite")
    )

    # All routes are mounted under this prefix (the SPA calls /api/...).
    API_PREFIX: str = os.environ.get("API_PREFIX", "/api")

    # -----------------
    # Auth (JWT)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = (
        os.environ.get("AUTH_JWT_SECRET")
        or os.environ.get("JWT_SECRET")
        or "dev_change_me"
    )
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "1440"))  # 24h

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_USERNAME", "admin")
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "admin")

    # Cookie-based browser sessions
    # - The API sets an httpOnly cookie on /login and /register
    # - The API reads the token from either Authorization: Bearer ... OR the cookie
    AUTH_COOKIE_NAME: str = os.environ.get("AUTH_COOKIE_NAME", "pp_token")
    AUTH_COOKIE_DOMAIN: str | None = (os.environ.get("AUTH_COOKIE_DOMAIN") or "").strip() or None
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none

    # Used to build links (password reset) and to pick the cookie Secure default.
    PUBLIC_APP_URL: str = (
        os.environ.get("PUBLIC_APP_URL")
        or os.environ.get("FRONTEND_URL")
        or "http://localhost:3000"
    )
    AUTH_COOKIE_SECURE: bool = (
        _env_bool("AUTH_COOKIE_SECURE", None)
        if _env_bool("AUTH_COOKIE_SECURE", None) is not None
        else PUBLIC_APP_URL.lower().startswith("https://")
    )

    # Passwords
    PASSWORD_MIN_LENGTH: int = int(os.environ.get("PASSWORD_MIN_LENGTH", "6"))
    PASSWORD_RESET_EXPIRE_MINUTES: int = int(os.environ.get("PASSWORD_RESET_EXPIRE_MINUTES", "60"))

    # -----------------
    # CORS
    # -----------------
    # The SPA dev server runs on :3000 and calls the API on :5000.
    CORS_ALLOW_ORIGINS: str = (
        os.environ.get("CORS_ALLOW_ORIGINS")
        or os.environ.get("CORS_ORIGIN")
        or "http://localhost:3000"
    )

    # -----------------
    # Mail (SMTP)
    # -----------------
    # When SMTP_HOST is unset, password reset links are printed to the log instead.
    SMTP_HOST: str | None = (os.environ.get("SMTP_HOST") or "").strip() or None
    SMTP_PORT: int = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_SECURE: bool = _env_bool("SMTP_SECURE", False) is True  # implicit TLS (port 465)
    SMTP_USER: str | None = os.environ.get("SMTP_USER")
    SMTP_PASS: str | None = os.environ.get("SMTP_PASS")
    SMTP_FROM: str | None = os.environ.get("SMTP_FROM") or os.environ.get("SMTP_USER")
    SMTP_TIMEOUT_SECONDS: float = float(os.environ.get("SMTP_TIMEOUT_SECONDS", "20"))

    # -----------------
    # Patreon
    # -----------------
    PATREON_BASE_URL: str = os.environ.get("PATREON_BASE_URL", "https://www.patreon.com/api/oauth2/v2")
    # Creator access token (Patreon developer portal). Can also be provided per request
    # via /patreon/test or /patreon/sync.
    PATREON_CREATOR_ACCESS_TOKEN: str | None = (
        (os.environ.get("PATREON_CREATOR_ACCESS_TOKEN") or os.environ.get("PATREON_ACCESS_TOKEN") or "").strip()
        or None
    )
    PATREON_CAMPAIGN_ID: str | None = (os.environ.get("PATREON_CAMPAIGN_ID") or "").strip() or None
    PATREON_TIMEOUT_SECONDS: float = float(os.environ.get("PATREON_TIMEOUT_SECONDS", "30"))
    # Members are paginated; stop after this many pages.
    PATREON_MAX_PAGES: int = int(os.environ.get("PATREON_MAX_PAGES", "50"))
    PATREON_PAGE_SIZE: int = int(os.environ.get("PATREON_PAGE_SIZE", "100"))


def load_config() -> Config:
    return Config()
