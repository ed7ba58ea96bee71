from __future__ import annotations

import unittest
from unittest.mock import AsyncMock

from fakes import FakeAuthProvider, InMemoryRecordStore

from permithub.auth import Principal, Role
from permithub.config import Settings
from permithub.errors import ProvisioningFailed, StoreError, StoreErrorKind, TransientStoreError, ValidationError
from permithub.services.identity_provisioner import IdentityProvisioner, ProfileFields, backoff_delay_ms


def _fields(username: str = 'jdelacruz') -> ProfileFields:
    return ProfileFields(username=username, firstname='Juan', lastname='Dela Cruz', middlename='Santos')


class IdentityProvisionerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.auth = FakeAuthProvider()
        self.store = InMemoryRecordStore()
        self.sleeps: list[float] = []
        self.settings = Settings(identity_commit_delay_ms=1500, profile_retry_budget=5, profile_retry_base_delay_ms=1000)

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def _provisioner(self) -> IdentityProvisioner:
        return IdentityProvisioner(auth=self.auth, store=self.store, settings=self.settings, sleep=self._sleep)

    async def test_profile_row_carries_principal_id_and_role(self) -> None:
        principal = await self._provisioner().provision('juan@example.com', 'secret1', _fields(), Role.ADMIN)

        profiles = self.store.tables['profiles']
        self.assertEqual(len(profiles), 1)
        self.assertEqual(profiles[0]['id'], principal.id)
        self.assertEqual(profiles[0]['role'], 'admin')
        self.assertEqual(profiles[0]['email'], 'juan@example.com')
        self.assertEqual(profiles[0]['middlename'], 'Santos')
        self.assertEqual(self.sleeps, [1.5])

    async def test_existing_profile_row_is_replaced_not_duplicated(self) -> None:
        self.auth.sign_up = AsyncMock(return_value=Principal(id='user-42', email='juan@example.com'))
        self.store.tables['profiles'].append(
            {'id': 'user-42', 'username': 'old-name', 'firstname': 'Old', 'lastname': 'Name', 'role': 'citizen'}
        )

        await self._provisioner().provision('juan@example.com', 'secret1', _fields(), Role.ADMIN)
        await self._provisioner().provision('juan@example.com', 'secret1', _fields('juan2'), Role.ADMIN)

        profiles = self.store.tables['profiles']
        self.assertEqual(len(profiles), 1)
        self.assertEqual(profiles[0]['id'], 'user-42')
        self.assertEqual(profiles[0]['username'], 'juan2')
        self.assertEqual(profiles[0]['firstname'], 'Juan')
        self.assertEqual(profiles[0]['role'], 'admin')

    async def test_foreign_key_race_is_retried_until_success(self) -> None:
        self.store.failures['profiles'] = [TransientStoreError('fk') for _ in range(4)]

        principal = await self._provisioner().provision('juan@example.com', 'secret1', _fields())

        self.assertEqual(self.store.write_attempts['profiles'], 5)
        self.assertEqual(self.store.tables['profiles'][0]['id'], principal.id)
        self.assertEqual(self.sleeps, [1.5, 2.0, 4.0, 8.0, 16.0])

    async def test_exhausted_budget_raises_provisioning_failed(self) -> None:
        self.store.failures['profiles'] = [TransientStoreError('fk') for _ in range(6)]

        with self.assertRaises(ProvisioningFailed) as ctx:
            await self._provisioner().provision('juan@example.com', 'secret1', _fields())

        self.assertEqual(self.store.write_attempts['profiles'], 5)
        self.assertEqual(ctx.exception.attempts, 5)
        self.assertIsInstance(ctx.exception.__cause__, TransientStoreError)
        self.assertIn('juan@example.com', self.auth.users)
        self.assertEqual(ctx.exception.principal_id, self.auth.users['juan@example.com']['principal'].id)
        self.assertEqual(self.sleeps, [1.5, 2.0, 4.0, 8.0, 16.0])
        self.assertEqual(self.store.tables['profiles'], [])

    async def test_other_store_errors_abort_without_retry(self) -> None:
        self.store.failures['profiles'] = [StoreError('duplicate username', kind=StoreErrorKind.UNIQUE_VIOLATION, code='23505')]

        with self.assertRaises(StoreError) as ctx:
            await self._provisioner().provision('juan@example.com', 'secret1', _fields())

        self.assertEqual(ctx.exception.kind, StoreErrorKind.UNIQUE_VIOLATION)
        self.assertNotIsInstance(ctx.exception, ProvisioningFailed)
        self.assertEqual(self.store.write_attempts['profiles'], 1)
        self.assertEqual(self.sleeps, [1.5])

    async def test_auth_failure_skips_profile_write(self) -> None:
        await self.auth.sign_up(email='juan@example.com', password='secret1')

        with self.assertRaises(ValidationError):
            await self._provisioner().provision('juan@example.com', 'secret1', _fields())

        self.assertEqual(self.store.write_attempts['profiles'], 0)

    def test_backoff_doubles_from_base(self) -> None:
        self.assertEqual([backoff_delay_ms(1000, n) for n in range(1, 5)], [2000, 4000, 8000, 16000])


if __name__ == '__main__':
    unittest.main()
