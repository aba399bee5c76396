import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
from fastapi import Cookie, Depends, Request, Response

from edge_guard import config
from edge_guard.errors import AdminRequired, SessionUnauthenticated
from edge_guard.rate_limit import RateLimiter
from edge_guard.rate_limit.predicates import SkipPredicate
from edge_guard.services.channels import ContactDirectory
from edge_guard.services.two_factor import TwoFactorService
from edge_guard.sessions import SessionStore, UserSession

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"


# ── App components ─────────────────────────────────────────────────────────


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_directory(request: Request) -> ContactDirectory:
    return request.app.state.directory


def get_two_factor(request: Request) -> TwoFactorService:
    return request.app.state.two_factor


def get_limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


Directory = Annotated[ContactDirectory, Depends(get_directory)]
Sessions = Annotated[SessionStore, Depends(get_sessions)]
TwoFactor = Annotated[TwoFactorService, Depends(get_two_factor)]
Limiter = Annotated[RateLimiter, Depends(get_limiter)]


# ── JWT / Session cookie ───────────────────────────────────────────────────


def create_jwt(user_id: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=config.JWT_EXPIRY_HOURS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def create_session_cookie(response: Response, user_id: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=create_jwt(user_id),
        httponly=True,
        samesite="lax",
        secure=config.is_production(),
        max_age=config.JWT_EXPIRY_HOURS * 3600,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, httponly=True, samesite="lax")


def decode_session_user(session: str | None) -> str | None:
    if not session:
        return None
    try:
        payload = jwt.decode(session, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    return payload.get("sub")


def login_user(
    request: Request,
    response: Response,
    user_id: str,
    *,
    email: str | None = None,
    phone: str | None = None,
) -> UserSession:
    """
    Entry point for the primary login.

    Call this once the user's password (or other first factor) has been
    checked: it opens an unverified session, records where two-factor codes
    can be delivered and sets the signed session cookie.
    """
    get_directory(request).register(user_id, email=email, phone=phone)
    session = get_sessions(request).open(user_id)
    create_session_cookie(response, user_id)
    return session


# ── Guards ─────────────────────────────────────────────────────────────────


async def get_current_user_id(
    session: Annotated[str | None, Cookie()] = None,
) -> str:
    if session is None:
        raise SessionUnauthenticated()

    try:
        payload = jwt.decode(session, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise SessionUnauthenticated("Session expired. Please log in again.") from None
    except jwt.PyJWTError:
        raise SessionUnauthenticated("Invalid session. Please log in again.") from None

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise SessionUnauthenticated("Invalid token payload.")
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


async def require_session(user_id: CurrentUserId, sessions: Sessions) -> UserSession:
    """Authenticated session; two-factor not required yet."""
    return sessions.authorize(user_id, require_two_factor=False)


async def require_two_factor(user_id: CurrentUserId, sessions: Sessions) -> UserSession:
    """Authenticated and two-factor verified, otherwise 428 step-up."""
    return sessions.authorize(user_id)


CurrentSession = Annotated[UserSession, Depends(require_session)]
VerifiedSession = Annotated[UserSession, Depends(require_two_factor)]


async def require_admin(request: Request, session: VerifiedSession) -> UserSession:
    if session.user_id not in request.app.state.admin_user_ids:
        logger.warning("Non-admin user %s requested an admin route", session.user_id)
        raise AdminRequired()
    return session


AdminSession = Annotated[UserSession, Depends(require_admin)]


def verified_admin_predicate(sessions: SessionStore, admin_user_ids: frozenset[str]) -> SkipPredicate:
    """Rate-limit bypass for admins, checked against the signed cookie and a verified session."""

    def is_verified_admin(request: Request) -> bool:
        user_id = decode_session_user(request.cookies.get(SESSION_COOKIE))
        return user_id is not None and user_id in admin_user_ids and sessions.is_elevated(user_id)

    return is_verified_admin
