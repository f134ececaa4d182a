from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional, TypeVar

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from patron_portal.auth import get_cfg, get_current_user, require_admin
from patron_portal.auth.crud import (
    bootstrap_admin_if_needed,
    create_user,
    delete_user,
    get_user_by_email,
    list_users,
    public_user,
    touch_last_login,
    update_user,
    verify_user_credentials,
)
from patron_portal.auth.reset import consume_password_reset, issue_password_reset
from patron_portal.auth.security import create_access_token
from patron_portal.config import Config, load_config
from patron_portal.db import connect, init_db, upsert_app_config
from patron_portal.mail import send_password_reset_email
from patron_portal.patreon.client import PatreonClient, PatreonError
from patron_portal.patreon.sync import (
    clear_subscription_alert,
    get_sync_status,
    list_subscription_alerts,
    run_sync,
)


T = TypeVar("T")


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


router = APIRouter()


# -----------------------------
# Helpers
# -----------------------------


def _value_error(e: ValueError) -> HTTPException:
    detail = str(e)
    if detail in ("email_exists", "username_exists"):
        return HTTPException(status_code=409, detail=detail)
    return HTTPException(status_code=400, detail=detail)


def _check_password(cfg: Config, password: str) -> None:
    if len(password or "") < int(cfg.PASSWORD_MIN_LENGTH):
        raise HTTPException(status_code=400, detail="password_too_short")


def _issue_token(cfg: Config, user: Dict[str, Any]) -> str:
    return create_access_token(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=int(user["id"]),
        username=str(user["username"]),
        email=str(user["email"]),
        is_admin=bool(user.get("is_admin")),
        expires_minutes=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES),
    )


def _cookie_secure(cfg: Config) -> bool:
    """Return whether auth cookies should be marked Secure."""
    # Browsers require Secure when SameSite=None
    if (cfg.AUTH_COOKIE_SAMESITE or "lax").lower() == "none":
        return True
    return bool(cfg.AUTH_COOKIE_SECURE)


def _set_auth_cookie(response: Response, *, token: str, cfg: Config) -> None:
    response.set_cookie(
        key=cfg.AUTH_COOKIE_NAME,
        value=str(token),
        httponly=True,
        samesite=(cfg.AUTH_COOKIE_SAMESITE or "lax").lower(),
        secure=_cookie_secure(cfg),
        max_age=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES) * 60,
        path=cfg.AUTH_COOKIE_PATH or "/",
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def _clear_auth_cookie(response: Response, cfg: Config) -> None:
    response.delete_cookie(key=cfg.AUTH_COOKIE_NAME, path=cfg.AUTH_COOKIE_PATH or "/", domain=cfg.AUTH_COOKIE_DOMAIN)


def _mixcloud_flag(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Accept the legacy free-text `mixcloud_id` as the is_mixcloud flag."""
    if "mixcloud_id" in fields:
        mixcloud_id = fields.pop("mixcloud_id")
        if "is_mixcloud" not in fields:
            fields["is_mixcloud"] = bool((mixcloud_id or "").strip())
    return fields


def get_patreon(request: Request) -> PatreonClient:
    client = getattr(request.app.state, "patreon", None)
    if client is None:
        raise HTTPException(status_code=500, detail="patreon_client_missing")
    return client


def _patreon_call(request: Request, fn: Callable[[], T]) -> T:
    """Run a Patreon client call under the app-wide lock, mapping errors to HTTP."""
    lock: threading.Lock = request.app.state.patreon_lock
    with lock:
        try:
            return fn()
        except PatreonError as e:
            raise HTTPException(status_code=502 if e.upstream else 400, detail=e.detail)


def _require_patreon_token(client: PatreonClient, access_token: Optional[str]) -> None:
    if access_token:
        client.set_access_token(access_token)
    if not client.is_configured:
        raise HTTPException(status_code=400, detail="patreon_not_configured")


# -----------------------------
# Health
# -----------------------------


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "message": "Server is running"}


# -----------------------------
# Auth
# -----------------------------


class RegisterRequest(BaseModel):
    """Public self-serve registration.

    Accounts created here are always free, non-admin users. Premium comes from the
    Patreon sync; admin rights come from another admin.
    """

    username: str
    email: str
    password: str
    whatsapp_number: Optional[str] = None
    patreon_id: Optional[str] = None
    is_mixcloud: bool = False
    mixcloud_id: Optional[str] = None


class LoginRequest(BaseModel):
    email: str = ""  # email, or username
    password: str = ""


class ForgotPasswordRequest(BaseModel):
    email: str = ""


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = ""
    new_password: str = Field(default="", alias="newPassword")
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    if not payload.username.strip() or not payload.email.strip() or not payload.password:
        raise HTTPException(status_code=400, detail="username_email_password_required")
    _check_password(cfg, payload.password)

    fields = _mixcloud_flag(payload.model_dump(exclude_unset=True))
    with connect(cfg.DB_DSN) as conn:
        try:
            user = create_user(
                conn,
                username=payload.username,
                email=payload.email,
                password=payload.password,
                whatsapp_number=fields.get("whatsapp_number"),
                patreon_id=fields.get("patreon_id"),
                is_mixcloud=bool(fields.get("is_mixcloud")),
                is_free=True,
                is_admin=False,
            )
        except ValueError as e:
            raise _value_error(e)

    token = _issue_token(cfg, user)
    _set_auth_cookie(response, token=token, cfg=cfg)
    _debug(f"Registered user_id={user['id']}")
    return {"message": "User created successfully", "user": user, "token": token}


@router.post("/login")
def login(payload: LoginRequest, response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    if not payload.email.strip() or not payload.password:
        raise HTTPException(status_code=400, detail="email_and_password_required")

    with connect(cfg.DB_DSN) as conn:
        row = verify_user_credentials(conn, payload.email, payload.password)
        if row is None:
            raise HTTPException(status_code=401, detail="invalid_credentials")
        touch_last_login(conn, int(row["id"]))
        user = public_user(row)

    token = _issue_token(cfg, user)
    _set_auth_cookie(response, token=token, cfg=cfg)
    return {"message": "Login successful", "user": user, "token": token}


@router.post("/logout")
def logout(response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Clear the browser session cookie. Bearer tokens simply expire."""
    _clear_auth_cookie(response, cfg)
    return {"ok": True}


_FORGOT_MESSAGE = "If an account with that email exists, a password reset link has been sent."


@router.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Start a password reset.

    The response is identical whether or not the email is registered.
    """
    email = payload.email.strip()
    if not email:
        raise HTTPException(status_code=400, detail="email_required")

    with connect(cfg.DB_DSN) as conn:
        token = issue_password_reset(conn, email, expires_minutes=cfg.PASSWORD_RESET_EXPIRE_MINUTES)

    if token is not None:
        try:
            send_password_reset_email(cfg, email=email.lower(), token=token)
        except Exception as e:
            # Same response either way; an SMTP error must not reveal that the account exists.
            _debug(f"Password reset email failed: {e}")

    return {"message": _FORGOT_MESSAGE}


@router.post("/auth/reset-password")
def reset_password(payload: ResetPasswordRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    if not payload.token.strip():
        raise HTTPException(status_code=400, detail="reset_token_invalid")
    if payload.confirm_password is not None and payload.confirm_password != payload.new_password:
        raise HTTPException(status_code=400, detail="passwords_do_not_match")
    _check_password(cfg, payload.new_password)

    with connect(cfg.DB_DSN) as conn:
        try:
            user_id = consume_password_reset(conn, payload.token, payload.new_password)
        except ValueError as e:
            raise _value_error(e)

    _debug(f"Password reset for user_id={user_id}")
    return {"message": "Password has been reset successfully"}


# -----------------------------
# Profile
# -----------------------------


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    whatsapp_number: Optional[str] = None
    patreon_id: Optional[str] = None
    is_mixcloud: Optional[bool] = None
    mixcloud_id: Optional[str] = None


@router.get("/profile")
def get_profile(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    fields = _mixcloud_flag(payload.model_dump(exclude_unset=True))
    with connect(cfg.DB_DSN) as conn:
        try:
            updated = update_user(conn, int(user["id"]), fields)
        except ValueError as e:
            raise _value_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail="user_not_found")
    return {"message": "Profile updated successfully", "user": updated}


# -----------------------------
# Admin: users
# -----------------------------


class CreateUserRequest(BaseModel):
    username: str
    email: str
    password: str
    whatsapp_number: Optional[str] = None
    patreon_id: Optional[str] = None
    is_mixcloud: bool = False
    is_free: bool = True
    is_admin: bool = False


class AdminUserUpdateRequest(ProfileUpdateRequest):
    is_free: Optional[bool] = None
    is_admin: Optional[bool] = None
    is_active: Optional[bool] = None
    patreon_subscription_status: Optional[str] = None
    subscription_alert_sent: Optional[bool] = None


@router.get("/users")
def admin_list_users(
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> list[Dict[str, Any]]:
    with connect(cfg.DB_DSN) as conn:
        return list_users(conn)


@router.post("/users", status_code=201)
def admin_create_user(
    payload: CreateUserRequest,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    _check_password(cfg, payload.password)
    with connect(cfg.DB_DSN) as conn:
        try:
            user = create_user(conn, **payload.model_dump())
        except ValueError as e:
            raise _value_error(e)
    return {"message": "User created successfully", "user": user}


@router.put("/users/{user_id}")
def admin_update_user(
    user_id: int,
    payload: AdminUserUpdateRequest,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    fields = _mixcloud_flag(payload.model_dump(exclude_unset=True))
    with connect(cfg.DB_DSN) as conn:
        try:
            updated = update_user(conn, user_id, fields)
        except ValueError as e:
            raise _value_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail="user_not_found")
    return {"message": "User updated successfully", "user": updated}


@router.delete("/users/{user_id}")
def admin_delete_user(
    user_id: int,
    admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    if int(admin["id"]) == int(user_id):
        raise HTTPException(status_code=400, detail="cannot_delete_self")
    with connect(cfg.DB_DSN) as conn:
        deleted = delete_user(conn, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="user_not_found")
    return {"message": "User deleted successfully"}


# -----------------------------
# Patreon (admin)
# -----------------------------


class PatreonTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = Field(default=None, alias="accessToken")


@router.post("/patreon/test")
def patreon_test(
    payload: PatreonTokenRequest,
    request: Request,
    _admin: Dict[str, Any] = Depends(require_admin),
    client: PatreonClient = Depends(get_patreon),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    if not (payload.access_token or "").strip():
        raise HTTPException(status_code=400, detail="access_token_required")

    def _test() -> Dict[str, Any]:
        client.set_access_token(str(payload.access_token))
        return client.test_connection()

    campaign = _patreon_call(request, _test)
    with connect(cfg.DB_DSN) as conn:
        upsert_app_config(conn, "patreon_campaign_id", str(campaign["id"]))
    return {"message": "Patreon connection successful", "campaign": campaign}


@router.get("/patreon/status")
def patreon_status(
    _admin: Dict[str, Any] = Depends(require_admin),
    client: PatreonClient = Depends(get_patreon),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        status = get_sync_status(conn)
    return {
        "configured": client.is_configured,
        "campaign_id": client.campaign_id or status["campaign_id"],
        "last_sync_at": status["last_sync_at"],
    }


@router.get("/patreon/patrons/active")
def patreon_active_patrons(
    request: Request,
    _admin: Dict[str, Any] = Depends(require_admin),
    client: PatreonClient = Depends(get_patreon),
) -> Dict[str, Any]:
    _require_patreon_token(client, None)
    page = _patreon_call(request, client.get_active_patrons)
    return {
        "message": "Active patrons retrieved successfully",
        "patrons": page.patrons,
        "total": page.total,
        "pagination": page.pagination,
    }


@router.get("/patreon/patrons")
def patreon_all_patrons(
    request: Request,
    _admin: Dict[str, Any] = Depends(require_admin),
    client: PatreonClient = Depends(get_patreon),
) -> Dict[str, Any]:
    _require_patreon_token(client, None)
    page = _patreon_call(request, client.get_members)
    return {
        "message": "All patrons retrieved successfully",
        "patrons": page.patrons,
        "total": page.total,
        "pagination": page.pagination,
    }


@router.get("/patreon/tiers")
def patreon_tiers(
    request: Request,
    _admin: Dict[str, Any] = Depends(require_admin),
    client: PatreonClient = Depends(get_patreon),
) -> Dict[str, Any]:
    _require_patreon_token(client, None)
    tiers = _patreon_call(request, client.get_campaign_tiers)
    return {"message": "Campaign tiers retrieved successfully", "tiers": tiers}


@router.post("/patreon/sync")
def patreon_sync(
    request: Request,
    payload: Optional[PatreonTokenRequest] = None,
    _admin: Dict[str, Any] = Depends(require_admin),
    client: PatreonClient = Depends(get_patreon),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Reconcile campaign members with local users.

    Uses the token from the body when given, else the one already held by the client
    (from config or a previous /patreon/test).
    """
    access_token = (payload.access_token if payload is not None else None) or None

    def _sync() -> Dict[str, Any]:
        _require_patreon_token(client, access_token)
        return run_sync(cfg, client).to_dict()

    return _patreon_call(request, _sync)


@router.get("/patreon/alerts")
def patreon_alerts(
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        alerts = list_subscription_alerts(conn)
    return {"message": "Subscription alerts retrieved", "alerts": alerts, "total": len(alerts)}


@router.post("/patreon/alerts/{user_id}/clear")
def patreon_clear_alert(
    user_id: int,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = clear_subscription_alert(conn, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="user_not_found")
    return {"message": "Subscription alert cleared", "user": user}


# -----------------------------
# App
# -----------------------------


def create_app(cfg: Config | None = None, *, patreon_client: PatreonClient | None = None) -> FastAPI:
    cfg = cfg or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Ensure schema exists.
        init_db(cfg.DB_DSN)

        # Bootstrap first admin if needed (only when users table is empty)
        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: username={boot.get('username')} email={boot.get('email')}")
        yield

    app = FastAPI(title="Patron Portal", version="0.1.0", lifespan=lifespan)
    # Make config and the Patreon client available to dependencies.
    app.state.cfg = cfg
    app.state.patreon = patreon_client or PatreonClient.from_config(cfg)
    app.state.patreon_lock = threading.Lock()

    origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(router, prefix=cfg.API_PREFIX.rstrip("/"))
    return app
