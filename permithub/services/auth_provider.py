from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, TypeVar
from urllib.parse import parse_qs

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from permithub.auth import Principal
from permithub.config import settings
from permithub.errors import AuthError, AuthExpired, ValidationError
from permithub.models import AuthUser, Profile as ProfileModel, SessionPurpose
from permithub.security.passwords import hash_password, verify_password
from permithub.security.sessions import create_web_session, load_user_from_token, revoke_web_session
from permithub.services.audit_service import log_audit
from permithub.services.record_store import to_store_error

logger = logging.getLogger(__name__)

T = TypeVar('T')

SIGNED_IN = 'SIGNED_IN'
SIGNED_OUT = 'SIGNED_OUT'
PASSWORD_RECOVERY = 'PASSWORD_RECOVERY'
USER_UPDATED = 'USER_UPDATED'

AuthStateCallback = Callable[[str, Principal | None], None]
Unsubscribe = Callable[[], None]


class AuthProvider(Protocol):
    session_token: str | None

    async def sign_up(self, *, email: str, password: str, username: str | None = None) -> Principal: ...

    async def sign_in_with_password(self, *, email: str, password: str) -> Principal: ...

    async def sign_in_with_username(self, *, username: str, password: str) -> Principal: ...

    async def sign_out(self) -> None: ...

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> str | None: ...

    async def update_user(self, *, password: str) -> Principal: ...

    async def get_user(self) -> Principal | None: ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Unsubscribe: ...

    async def detect_session_in_url(self, fragment: str) -> Principal | None: ...


def _principal(user: AuthUser) -> Principal:
    return Principal(id=user.id, email=user.email, username=user.username)


def parse_recovery_fragment(fragment: str | None) -> tuple[str | None, str | None]:
    params = parse_qs((fragment or '').lstrip('#'))
    token = (params.get('access_token') or [None])[0]
    link_type = (params.get('type') or [None])[0]
    return token, link_type


def fragment_has_recovery_token(fragment: str | None) -> bool:
    token, link_type = parse_recovery_fragment(fragment)
    # A bare type=recovery fragment carries nothing to exchange for a session.
    return bool(token) and link_type in (None, 'recovery')


class LocalAuthProvider:
    """Password auth backed by the auth_users and web_sessions tables.

    One instance is bound to one client session token, the way a browser
    client holds a single session. Each call runs in its own transaction, so a
    committed sign-up is not visible to writes already in flight elsewhere.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        if session_factory is None:
            from permithub.db import SessionLocal

            session_factory = SessionLocal
        self.session_token = token
        self.ip = ip
        self.user_agent = user_agent
        self._session_factory = session_factory
        self._listeners: list[AuthStateCallback] = []

    def _run(self, work: Callable[[Session], T]) -> T:
        with self._session_factory() as db:
            try:
                result = work(db)
                db.commit()
                return result
            except SQLAlchemyError as exc:
                db.rollback()
                raise to_store_error(exc) from exc

    def _emit(self, event: str, principal: Principal | None) -> None:
        for callback in list(self._listeners):
            callback(event, principal)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def sign_up(self, *, email: str, password: str, username: str | None = None) -> Principal:
        email = email.strip()
        if not email:
            raise ValidationError('Email is required')

        def work(db: Session) -> Principal:
            existing = db.execute(select(AuthUser.id).where(AuthUser.email == email)).scalar_one_or_none()
            if existing:
                raise ValidationError('User already registered')
            user = AuthUser(email=email, username=username, password_hash=hash_password(password))
            db.add(user)
            db.flush()
            log_audit(db, actor_id=user.id, action='AUTH_SIGN_UP', ip=self.ip, metadata={'username': username})
            return _principal(user)

        principal = await run_in_threadpool(self._run, work)
        logger.info('auth user %s created', principal.id)
        return principal

    async def sign_in_with_password(self, *, email: str, password: str) -> Principal:
        email = email.strip()

        def work(db: Session) -> tuple[Principal | None, str | None]:
            user = db.execute(select(AuthUser).where(AuthUser.email == email)).scalar_one_or_none()
            if not user or not verify_password(password, user.password_hash):
                log_audit(
                    db,
                    actor_id=user.id if user else None,
                    action='AUTH_LOGIN_FAILED',
                    ip=self.ip,
                    metadata={'email': email, 'reason': 'BAD_PASSWORD' if user else 'UNKNOWN_EMAIL'},
                )
                return None, None
            token = create_web_session(db, user.id, ip=self.ip, user_agent=self.user_agent)
            log_audit(db, actor_id=user.id, action='AUTH_LOGIN', ip=self.ip, metadata={'email': email})
            return _principal(user), token

        principal, token = await run_in_threadpool(self._run, work)
        if principal is None:
            raise AuthError()
        self.session_token = token
        self._emit(SIGNED_IN, principal)
        return principal

    async def sign_in_with_username(self, *, username: str, password: str) -> Principal:
        username = username.strip()

        def work(db: Session) -> str | None:
            return db.execute(select(ProfileModel.email).where(ProfileModel.username == username)).scalar_one_or_none()

        email = await run_in_threadpool(self._run, work)
        if not email:
            raise AuthError()
        return await self.sign_in_with_password(email=email, password=password)

    async def sign_out(self) -> None:
        token = self.session_token
        if token:
            await run_in_threadpool(self._run, lambda db: revoke_web_session(db, token))
        self.session_token = None
        self._emit(SIGNED_OUT, None)

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> str | None:
        email = email.strip()
        target = redirect_to or f'{settings.public_base_url.rstrip("/")}/reset-password'

        def work(db: Session) -> str | None:
            user = db.execute(select(AuthUser).where(AuthUser.email == email)).scalar_one_or_none()
            if not user:
                return None
            token = create_web_session(db, user.id, ip=self.ip, user_agent=self.user_agent, purpose=SessionPurpose.RECOVERY)
            log_audit(db, actor_id=user.id, action='AUTH_RECOVERY_LINK_ISSUED', ip=self.ip, metadata={'email': email})
            return token

        token = await run_in_threadpool(self._run, work)
        if token is None:
            logger.info('password reset requested for unknown email')
            return None
        link = f'{target}#access_token={token}&type=recovery'
        # Outbound email is not wired up; the link is delivered through the log.
        logger.info('password recovery link for %s: %s', email, link)
        return link

    async def update_user(self, *, password: str) -> Principal:
        token = self.session_token

        def work(db: Session) -> Principal | None:
            user = load_user_from_token(db, token)
            if not user:
                return None
            user.password_hash = hash_password(password)
            log_audit(db, actor_id=user.id, action='AUTH_PASSWORD_UPDATED', ip=self.ip)
            return _principal(user)

        principal = await run_in_threadpool(self._run, work)
        if principal is None:
            raise AuthExpired('Session expired. Please log in again.')
        self._emit(USER_UPDATED, principal)
        return principal

    async def get_user(self) -> Principal | None:
        token = self.session_token
        if not token:
            return None

        def work(db: Session) -> Principal | None:
            user = load_user_from_token(db, token)
            return _principal(user) if user else None

        return await run_in_threadpool(self._run, work)

    async def detect_session_in_url(self, fragment: str) -> Principal | None:
        token, link_type = parse_recovery_fragment(fragment)
        if not token or link_type != 'recovery':
            return None

        def work(db: Session) -> Principal | None:
            user = load_user_from_token(db, token, purpose=SessionPurpose.RECOVERY)
            return _principal(user) if user else None

        principal = await run_in_threadpool(self._run, work)
        if principal is None:
            return None
        self.session_token = token
        self._emit(PASSWORD_RECOVERY, principal)
        return principal
