import logging
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from permithub.auth import LOGIN_PATH, role_home
from permithub.config import settings
from permithub.dependencies import get_session_resolver
from permithub.errors import (
    AuthError,
    AuthExpired,
    DeliveryFailed,
    InvalidLink,
    NotFound,
    PortalError,
    ProvisioningFailed,
    StoreError,
    ValidationError,
)
from permithub.routers import admin, auth, citizen
from permithub.security.sessions import install_auth_session_middleware
from permithub.services.record_store import SqlRecordStore
from permithub.services.session_resolver import SessionResolver

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title='PermitHub')
app.state.store = SqlRecordStore()
app.state.dispatchers = {}

install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(citizen.router)
app.include_router(admin.router)

ERROR_STATUS = (
    (ValidationError, 400),
    (AuthError, 401),
    (NotFound, 404),
    (DeliveryFailed, 502),
    (ProvisioningFailed, 503),
    (StoreError, 503),
)


@app.exception_handler(AuthExpired)
@app.exception_handler(InvalidLink)
async def reset_link_handler(request: Request, exc: PortalError):
    query = urlencode({'error': exc.message})
    return RedirectResponse(f'{LOGIN_PATH}?{query}', status_code=303)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    status_code = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse({'error': exc.message}, status_code=status_code)


@app.get('/')
async def root(resolver: SessionResolver = Depends(get_session_resolver)):
    principal = await resolver.current_principal()
    if principal is None:
        return RedirectResponse(LOGIN_PATH, status_code=303)
    profile = await resolver.profile_of(principal.id)
    return RedirectResponse(role_home(profile.role if profile else None), status_code=303)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
