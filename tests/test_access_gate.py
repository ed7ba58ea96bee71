from __future__ import annotations

import unittest

from fakes import FakeAuthProvider, InMemoryRecordStore

from permithub.auth import Principal, Role
from permithub.security.access_gate import AccessGate, AccessState
from permithub.services.session_resolver import SessionResolver


class AccessGateTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.auth = FakeAuthProvider()
        self.store = InMemoryRecordStore(
            {
                'profiles': [
                    {'id': 'admin-1', 'role': 'admin', 'firstname': 'Ada', 'lastname': 'Admin'},
                    {'id': 'citizen-1', 'role': 'citizen', 'firstname': 'Juan', 'lastname': 'Dela Cruz'},
                    {'id': 'legacy-1', 'role': 'client'},
                ]
            }
        )
        self.gate = AccessGate(SessionResolver(auth=self.auth, store=self.store))

    def _sign_in(self, principal_id: str) -> None:
        self.auth.establish(Principal(id=principal_id, email=f'{principal_id}@example.com'), event='SIGNED_IN')

    async def test_no_session_redirects_to_login(self) -> None:
        for required in (Role.ADMIN, Role.CITIZEN, None):
            decision = await self.gate.resolve(required)
            self.assertEqual(decision.state, AccessState.UNAUTHENTICATED)
            self.assertEqual(decision.redirect_to, '/login')

    async def test_matching_role_is_authorized(self) -> None:
        self._sign_in('admin-1')
        decision = await self.gate.resolve(Role.ADMIN)
        self.assertTrue(decision.authorized)
        self.assertIsNone(decision.redirect_to)
        self.assertEqual(decision.profile.short_name, 'Ada Admin')

    async def test_admin_on_citizen_page_goes_to_admin_home(self) -> None:
        self._sign_in('admin-1')
        decision = await self.gate.resolve(Role.CITIZEN)
        self.assertEqual(decision.state, AccessState.AUTHENTICATED_WRONG_ROLE)
        self.assertEqual(decision.redirect_to, '/admin')

    async def test_citizen_on_admin_page_goes_to_dashboard(self) -> None:
        self._sign_in('citizen-1')
        decision = await self.gate.resolve(Role.ADMIN)
        self.assertEqual(decision.state, AccessState.AUTHENTICATED_WRONG_ROLE)
        self.assertEqual(decision.redirect_to, '/dashboard')

    async def test_unknown_role_is_treated_as_citizen(self) -> None:
        self._sign_in('legacy-1')
        self.assertTrue((await self.gate.resolve(Role.CITIZEN)).authorized)
        self.assertEqual((await self.gate.resolve(Role.ADMIN)).redirect_to, '/dashboard')

    async def test_missing_profile_goes_to_citizen_home(self) -> None:
        self._sign_in('orphan-1')
        decision = await self.gate.resolve(Role.ADMIN)
        self.assertEqual(decision.state, AccessState.AUTHENTICATED_NO_ROLE)
        self.assertEqual(decision.redirect_to, '/dashboard')

    async def test_no_required_role_only_needs_a_session(self) -> None:
        self._sign_in('orphan-1')
        decision = await self.gate.resolve(None)
        self.assertTrue(decision.authorized)
        self.assertEqual(decision.principal.id, 'orphan-1')

    async def test_role_change_is_seen_on_next_resolution(self) -> None:
        self._sign_in('citizen-1')
        self.assertFalse((await self.gate.resolve(Role.ADMIN)).authorized)
        await self.store.update('profiles', {'role': 'admin'}, {'id': 'citizen-1'})
        self.assertTrue((await self.gate.resolve(Role.ADMIN)).authorized)


if __name__ == '__main__':
    unittest.main()
