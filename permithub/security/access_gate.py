from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status

from permithub.auth import LOGIN_PATH, Principal, Profile, Role, role_home
from permithub.dependencies import drop_dispatcher, get_auth, get_session_resolver
from permithub.services.auth_provider import AuthProvider
from permithub.services.session_resolver import SessionResolver

logger = logging.getLogger(__name__)


class AccessState(str, Enum):
    RESOLVING = 'RESOLVING'
    UNAUTHENTICATED = 'UNAUTHENTICATED'
    AUTHENTICATED_NO_ROLE = 'AUTHENTICATED_NO_ROLE'
    AUTHENTICATED_WRONG_ROLE = 'AUTHENTICATED_WRONG_ROLE'
    AUTHORIZED = 'AUTHORIZED'


@dataclass(frozen=True)
class AccessDecision:
    state: AccessState
    principal: Principal | None = None
    profile: Profile | None = None
    redirect_to: str | None = None

    @property
    def authorized(self) -> bool:
        return self.state == AccessState.AUTHORIZED


class AccessGate:
    def __init__(self, resolver: SessionResolver, *, login_path: str = LOGIN_PATH) -> None:
        self.resolver = resolver
        self.login_path = login_path

    async def resolve(self, required_role: Role | None = None) -> AccessDecision:
        principal = await self.resolver.current_principal()
        if principal is None:
            return AccessDecision(AccessState.UNAUTHENTICATED, redirect_to=self.login_path)

        if required_role is None:
            return AccessDecision(AccessState.AUTHORIZED, principal=principal)

        profile = await self.resolver.profile_of(principal.id)
        if profile is None:
            logger.info('principal %s has no profile, sending to %s', principal.id, role_home(None))
            return AccessDecision(AccessState.AUTHENTICATED_NO_ROLE, principal=principal, redirect_to=role_home(None))
        if profile.role != required_role:
            logger.info(
                'principal %s with role %s requested a %s page', principal.id, profile.role.value, required_role.value
            )
            return AccessDecision(
                AccessState.AUTHENTICATED_WRONG_ROLE,
                principal=principal,
                profile=profile,
                redirect_to=role_home(profile.role),
            )
        return AccessDecision(AccessState.AUTHORIZED, principal=principal, profile=profile)


def require_page(required_role: Role | None = None):
    async def _dep(
        request: Request,
        auth: AuthProvider = Depends(get_auth),
        resolver: SessionResolver = Depends(get_session_resolver),
    ) -> AccessDecision:
        decision = await AccessGate(resolver).resolve(required_role)
        if decision.state == AccessState.UNAUTHENTICATED and auth.session_token:
            # Expired or revoked session: release its per-session state.
            drop_dispatcher(request, auth.session_token)
        if not decision.authorized:
            raise HTTPException(
                status_code=status.HTTP_303_SEE_OTHER,
                headers={'Location': decision.redirect_to or LOGIN_PATH},
            )
        return decision

    return _dep
