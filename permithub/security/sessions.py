from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from permithub.config import settings
from permithub.models import AuthUser, SessionPurpose, WebSession


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry(purpose: SessionPurpose) -> datetime:
    if purpose == SessionPurpose.RECOVERY:
        return _now() + timedelta(minutes=settings.recovery_ttl_minutes)
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(
    db: Session,
    user_id: str,
    ip: str | None,
    user_agent: str | None,
    purpose: SessionPurpose = SessionPurpose.LOGIN,
) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        user_id=user_id,
        purpose=purpose,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(purpose),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db: Session, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_user_from_token(db: Session, token: str | None, purpose: SessionPurpose | None = None) -> AuthUser | None:
    if not token:
        return None

    stmt = (
        select(WebSession, AuthUser)
        .join(AuthUser, AuthUser.id == WebSession.user_id)
        .where(WebSession.session_token == token)
    )
    if purpose is not None:
        stmt = stmt.where(WebSession.purpose == purpose)
    row = db.execute(stmt).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = _now()
    if web_session.revoked_at is not None or web_session.expires_at <= now:
        return None

    web_session.last_seen_at = now
    if web_session.purpose == SessionPurpose.LOGIN:
        web_session.expires_at = _session_expiry(SessionPurpose.LOGIN)
    return user


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        from permithub.services.auth_provider import LocalAuthProvider

        request.state.auth = LocalAuthProvider(
            token=request.cookies.get(settings.session_cookie_name),
            ip=client_ip(request),
            user_agent=request.headers.get('user-agent'),
        )
        return await call_next(request)
