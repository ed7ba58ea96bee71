from __future__ import annotations

import asyncio
import logging
from datetime import date

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from permithub.auth import LOGIN_PATH, Role, role_home
from permithub.config import settings
from permithub.dependencies import drop_dispatcher, get_auth, get_session_resolver, get_store
from permithub.errors import ValidationError
from permithub.security.passwords import validate_new_password
from permithub.services.auth_provider import AuthProvider
from permithub.services.identity_provisioner import IdentityProvisioner, ProfileFields
from permithub.services.password_reset_service import await_recovery_session, complete_password_reset
from permithub.services.record_store import RecordStore
from permithub.services.session_resolver import SessionResolver

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])


def _set_session_cookie(response, token: str | None) -> None:
    if not token:
        return
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )


def _settle_exchange(exchange: asyncio.Task) -> None:
    if not exchange.done():
        exchange.cancel()
        return
    if exchange.cancelled():
        return
    exc = exchange.exception()
    if exc is not None:
        logger.warning('recovery link exchange failed: %s', exc)


def _field(form, name: str) -> str:
    return str(form.get(name, '') or '').strip()


def _parse_birthdate(raw: str) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError('Birthdate must be YYYY-MM-DD') from exc


@router.post('/login')
async def login_submit(
    request: Request,
    auth: AuthProvider = Depends(get_auth),
    resolver: SessionResolver = Depends(get_session_resolver),
):
    form = await request.form()
    identifier = _field(form, 'identifier')
    password = str(form.get('password', ''))
    if not identifier or not password:
        raise ValidationError('Enter your username or email and password')

    if '@' in identifier:
        principal = await auth.sign_in_with_password(email=identifier, password=password)
    else:
        principal = await auth.sign_in_with_username(username=identifier, password=password)

    profile = await resolver.profile_of(principal.id)
    response = RedirectResponse(role_home(profile.role if profile else None), status_code=303)
    _set_session_cookie(response, auth.session_token)
    return response


@router.post('/register')
async def register_submit(
    request: Request,
    auth: AuthProvider = Depends(get_auth),
    store: RecordStore = Depends(get_store),
):
    form = await request.form()
    email = _field(form, 'email')
    username = _field(form, 'username')
    password = str(form.get('password', ''))
    if not email or not username:
        raise ValidationError('Username and email are required')
    validate_new_password(password, str(form.get('confirm_password', '')))

    fields = ProfileFields(
        username=username,
        firstname=_field(form, 'firstname'),
        middlename=_field(form, 'middlename'),
        lastname=_field(form, 'lastname'),
        gender=_field(form, 'gender') or None,
        birthdate=_parse_birthdate(_field(form, 'birthdate')),
        contactnumber=_field(form, 'contactnumber') or None,
        fulladdress=_field(form, 'fulladdress') or None,
    )
    await IdentityProvisioner(auth=auth, store=store).provision(email, password, fields, Role.CITIZEN)
    return RedirectResponse(LOGIN_PATH, status_code=303)


@router.post('/logout')
async def logout(request: Request, auth: AuthProvider = Depends(get_auth)):
    token = auth.session_token
    await auth.sign_out()
    drop_dispatcher(request, token)

    response = RedirectResponse(LOGIN_PATH, status_code=303)
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.post('/forgot-password')
async def forgot_password(request: Request, auth: AuthProvider = Depends(get_auth)):
    form = await request.form()
    email = _field(form, 'email')
    if not email:
        raise ValidationError('Email is required')
    await auth.reset_password_for_email(email)
    return {'message': 'If that email is registered, a password reset link has been sent.'}


@router.post('/reset-password/verify')
async def reset_password_verify(request: Request, auth: AuthProvider = Depends(get_auth)):
    form = await request.form()
    fragment = _field(form, 'fragment')
    exchange = asyncio.create_task(auth.detect_session_in_url(fragment))
    try:
        await await_recovery_session(auth, fragment)
    finally:
        _settle_exchange(exchange)
    response = RedirectResponse('/reset-password', status_code=303)
    _set_session_cookie(response, auth.session_token)
    return response


@router.post('/reset-password')
async def reset_password_submit(request: Request, auth: AuthProvider = Depends(get_auth)):
    form = await request.form()
    await complete_password_reset(auth, str(form.get('new_password', '')), str(form.get('confirm_password', '')))
    response = RedirectResponse(LOGIN_PATH, status_code=303)
    response.delete_cookie(settings.session_cookie_name)
    return response
