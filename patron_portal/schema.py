"""Database schema for Patron Portal.

The project runs on SQLite. The whole app is a single `users` table plus a
small key/value table for runtime settings.

We intentionally keep timestamps as ISO-8601 TEXT (UTC, with 'Z') for portability and to
avoid timezone surprises between the API, scripts and the SPA. ISO strings sort lexicographically in time order,
so comparisons like `password_reset_expires > now_iso` behave correctly.

Boolean flags are stored as INTEGER 0/1.
"""


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Users / Auth
-- We use JWTs for stateless auth and store only password hashes.
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    whatsapp_number TEXT,
    patreon_id TEXT,
    is_mixcloud INTEGER NOT NULL DEFAULT 0,
    is_free INTEGER NOT NULL DEFAULT 1,
    is_admin INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,

    -- Patreon subscription tracking
    patreon_subscription_status TEXT DEFAULT 'unknown', -- active_patron|declined_patron|former_patron|unknown
    last_patreon_sync TEXT,
    subscription_alert_sent INTEGER NOT NULL DEFAULT 0,

    -- Password reset (sha256 of the emailed token)
    password_reset_token TEXT,
    password_reset_expires TEXT,

    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_patreon_id ON users (patreon_id);
CREATE INDEX IF NOT EXISTS idx_users_reset_token ON users (password_reset_token);
"""
