from __future__ import annotations

from permithub.auth import Principal, Profile, profile_from_row
from permithub.services.auth_provider import AuthProvider
from permithub.services.record_store import RecordStore


class SessionResolver:
    """Resolves the caller and its profile on every call; nothing is cached."""

    def __init__(self, *, auth: AuthProvider, store: RecordStore) -> None:
        self.auth = auth
        self.store = store

    async def current_principal(self) -> Principal | None:
        return await self.auth.get_user()

    async def profile_of(self, principal_id: str) -> Profile | None:
        rows = await self.store.select('profiles', {'id': principal_id}, limit=1)
        if not rows:
            return None
        return profile_from_row(rows[0])
