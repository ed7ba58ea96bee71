from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from permithub.auth import Principal
from permithub.config import Settings, settings as default_settings
from permithub.errors import AuthExpired, InvalidLink
from permithub.security.passwords import validate_new_password
from permithub.services.auth_provider import AuthProvider, fragment_has_recovery_token

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RecoveryState(str, Enum):
    CHECKING = 'CHECKING'
    LISTENING = 'LISTENING'
    READY = 'READY'
    INVALID = 'INVALID'


class RecoverySessionWatcher:
    """Waits for a recovery session that arrives after navigation.

    The token in the link fragment is exchanged asynchronously, so the session
    is checked once, then listened for while two fallback checks run at
    increasing delays. The listener is removed on every terminal transition.
    """

    def __init__(self, auth: AuthProvider, *, settings: Settings | None = None, sleep: Sleep = asyncio.sleep) -> None:
        self.auth = auth
        self.settings = settings or default_settings
        self._sleep = sleep
        self.state = RecoveryState.CHECKING

    def _ready(self, principal: Principal) -> Principal:
        self.state = RecoveryState.READY
        logger.info('recovery session ready for %s', principal.id)
        return principal

    async def _wait_for_event(self, arrived: asyncio.Event, timeout_ms: int) -> bool:
        try:
            await asyncio.wait_for(arrived.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait(self, fragment: str | None) -> Principal:
        self.state = RecoveryState.CHECKING
        await self._sleep(self.settings.recovery_initial_check_ms / 1000)
        principal = await self.auth.get_user()
        if principal is not None:
            return self._ready(principal)

        if not fragment_has_recovery_token(fragment):
            self.state = RecoveryState.INVALID
            raise InvalidLink()

        self.state = RecoveryState.LISTENING
        arrived = asyncio.Event()
        delivered: list[Principal] = []

        def on_change(_event: str, user: Principal | None) -> None:
            if user is not None and not arrived.is_set():
                delivered.append(user)
                arrived.set()

        unsubscribe = self.auth.on_auth_state_change(on_change)
        try:
            for timeout_ms in (self.settings.recovery_fallback_check_ms, self.settings.recovery_final_check_ms):
                if await self._wait_for_event(arrived, timeout_ms):
                    return self._ready(delivered[0])
                principal = await self.auth.get_user()
                if principal is not None:
                    return self._ready(principal)
        finally:
            unsubscribe()

        self.state = RecoveryState.INVALID
        logger.info('recovery session did not materialize, giving up')
        raise AuthExpired()


async def await_recovery_session(
    auth: AuthProvider,
    fragment: str | None,
    *,
    settings: Settings | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Principal:
    return await RecoverySessionWatcher(auth, settings=settings, sleep=sleep).wait(fragment)


async def complete_password_reset(auth: AuthProvider, new_password: str, confirm_password: str) -> Principal:
    validate_new_password(new_password, confirm_password)
    principal = await auth.update_user(password=new_password)
    await auth.sign_out()
    return principal
