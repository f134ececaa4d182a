"""Patron Portal - user management backend.

A small REST backend for a creator's member site:
- Users table (email/username/password hash + free/premium/admin flags)
- JWT access tokens
- Patreon campaign sync that flags premium users who stopped pledging

The frontend is a separate static SPA that talks to the JSON API.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
