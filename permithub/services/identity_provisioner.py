from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from permithub.auth import Principal, Role
from permithub.config import Settings, settings as default_settings
from permithub.errors import ProvisioningFailed, StoreError, StoreErrorKind
from permithub.services.auth_provider import AuthProvider
from permithub.services.record_store import RecordStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ProfileFields:
    username: str
    firstname: str
    lastname: str
    middlename: str = ''
    gender: str | None = None
    birthdate: date | None = None
    contactnumber: str | None = None
    fulladdress: str | None = None


def backoff_delay_ms(base_delay_ms: int, failed_attempts: int) -> int:
    """Wait after the n-th failed attempt: base * 2^n."""
    return base_delay_ms * (2 ** failed_attempts)


class IdentityProvisioner:
    """Creates an auth user and then its profile row.

    The profile write references the new auth user, which the store may not
    see yet. Foreign-key violations are retried with exponential backoff;
    everything else aborts on the first failure.
    """

    def __init__(
        self,
        *,
        auth: AuthProvider,
        store: RecordStore,
        settings: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.auth = auth
        self.store = store
        self.settings = settings or default_settings
        self._sleep = sleep

    def _profile_row(self, principal: Principal, email: str, fields: ProfileFields, role: Role) -> dict[str, Any]:
        return {
            'id': principal.id,
            'username': fields.username,
            'email': email,
            'firstname': fields.firstname,
            'middlename': fields.middlename,
            'lastname': fields.lastname,
            'gender': fields.gender or None,
            'birthdate': fields.birthdate or None,
            'contactnumber': fields.contactnumber,
            'fulladdress': fields.fulladdress,
            'role': role.value,
        }

    async def provision(self, email: str, password: str, profile_fields: ProfileFields, role: Role = Role.CITIZEN) -> Principal:
        principal = await self.auth.sign_up(email=email, password=password, username=profile_fields.username)
        await self._sleep(self.settings.identity_commit_delay_ms / 1000)

        row = self._profile_row(principal, email, profile_fields, role)
        budget = self.settings.profile_retry_budget
        last_error: StoreError | None = None
        for attempt in range(1, budget + 1):
            try:
                await self.store.upsert('profiles', [row], on_conflict='id')
            except StoreError as exc:
                if exc.kind is not StoreErrorKind.FOREIGN_KEY_VIOLATION:
                    logger.error('profile write for %s failed (%s), not retrying', principal.id, exc.kind.value)
                    raise
                last_error = exc
                if attempt < budget:
                    delay_ms = backoff_delay_ms(self.settings.profile_retry_base_delay_ms, attempt)
                    logger.warning(
                        'profile write for %s hit a foreign-key race (attempt %s/%s), retrying in %sms',
                        principal.id,
                        attempt,
                        budget,
                        delay_ms,
                    )
                    await self._sleep(delay_ms / 1000)
                continue
            logger.info('profile %s provisioned with role %s after %s attempt(s)', principal.id, role.value, attempt)
            return principal

        logger.error('profile write for %s exhausted %s attempts', principal.id, budget)
        raise ProvisioningFailed(principal_id=principal.id, attempts=budget) from last_error
