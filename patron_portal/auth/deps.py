from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from patron_portal.config import Config
from patron_portal.db import connect

from .crud import get_user_by_id, public_user
from .security import decode_access_token


_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return cfg


def _request_token(
    request: Request,
    cfg: Config,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> str:
    # An explicit Authorization header wins over the browser cookie.
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    token = request.cookies.get(cfg.AUTH_COOKIE_NAME)
    if not token:
        raise _unauthorized("missing_token")
    return token


def _token_user_id(token: str, secret: str) -> int:
    try:
        claims = decode_access_token(token=token, secret=secret)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("token_expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("token_invalid")
    except Exception:
        raise _unauthorized("token_decode_error")

    sub = claims.get("sub")
    if not sub:
        raise _unauthorized("token_missing_sub")
    try:
        return int(sub)
    except (TypeError, ValueError):
        raise _unauthorized("token_sub_not_int")


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """Resolve the caller from `Authorization: Bearer <jwt>` or the session cookie.

    The users row is read on every request: tokens carry no authority of their
    own, so deactivating or demoting a user applies immediately.
    """
    cfg = get_cfg(request)
    user_id = _token_user_id(_request_token(request, cfg, credentials), cfg.AUTH_JWT_SECRET)

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, user_id)
    if row is None:
        raise _unauthorized("user_not_found")
    if not row["is_active"]:
        raise _unauthorized("user_inactive")
    return public_user(row)


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="admin_required")
    return user
