"""Authentication / authorization helpers.

This project intentionally keeps auth lightweight:

- Users table (email/username + password hash + is_admin flag)
- JWT access tokens, no server-side sessions and no revocation list
- Single-use password reset tokens (hashed at rest)

The API supports both:

- `Authorization: Bearer <token>` (what the SPA sends after login)
- A secure httpOnly cookie (set by `/login` and `/register`)
"""

from .deps import get_cfg, get_current_user, require_admin
from .crud import bootstrap_admin_if_needed, create_user

__all__ = [
    "get_cfg",
    "get_current_user",
    "require_admin",
    "bootstrap_admin_if_needed",
    "create_user",
]
