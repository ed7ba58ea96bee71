from __future__ import annotations

import asyncio
import unittest

from fakes import FakeAuthProvider

from permithub.auth import Principal
from permithub.config import Settings
from permithub.errors import AuthExpired, InvalidLink, ValidationError
from permithub.services.auth_provider import fragment_has_recovery_token, parse_recovery_fragment
from permithub.services.password_reset_service import (
    RecoverySessionWatcher,
    RecoveryState,
    complete_password_reset,
)

RECOVERY_FRAGMENT = '#access_token=abc123&refresh_token=r1&type=recovery'


def _fast_settings() -> Settings:
    return Settings(recovery_initial_check_ms=0, recovery_fallback_check_ms=20, recovery_final_check_ms=40)


async def _no_sleep(_seconds: float) -> None:
    return None


class RecoveryFragmentTests(unittest.TestCase):
    def test_parses_token_and_type(self) -> None:
        self.assertEqual(parse_recovery_fragment(RECOVERY_FRAGMENT), ('abc123', 'recovery'))
        self.assertTrue(fragment_has_recovery_token(RECOVERY_FRAGMENT))

    def test_rejects_missing_or_wrong_type(self) -> None:
        self.assertFalse(fragment_has_recovery_token(None))
        self.assertFalse(fragment_has_recovery_token(''))
        self.assertFalse(fragment_has_recovery_token('#type=recovery'))
        self.assertFalse(fragment_has_recovery_token('#access_token=abc&type=signup'))


class RecoverySessionWatcherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.auth = FakeAuthProvider()
        self.principal = Principal(id='user-1', email='juan@example.com')

    def _watcher(self) -> RecoverySessionWatcher:
        return RecoverySessionWatcher(self.auth, settings=_fast_settings(), sleep=_no_sleep)

    async def test_existing_session_is_ready_immediately(self) -> None:
        self.auth.establish(self.principal)
        watcher = self._watcher()

        self.assertEqual(await watcher.wait(None), self.principal)
        self.assertEqual(watcher.state, RecoveryState.READY)
        self.assertEqual(self.auth.listeners, [])

    async def test_missing_token_is_invalid_link(self) -> None:
        watcher = self._watcher()
        with self.assertRaises(InvalidLink):
            await watcher.wait('#type=recovery')
        self.assertEqual(watcher.state, RecoveryState.INVALID)

    async def test_session_arriving_by_event(self) -> None:
        watcher = self._watcher()

        async def exchange() -> None:
            while not self.auth.listeners:
                await asyncio.sleep(0)
            self.auth.establish(self.principal)

        task = asyncio.create_task(exchange())
        principal = await watcher.wait(RECOVERY_FRAGMENT)
        await task

        self.assertEqual(principal, self.principal)
        self.assertEqual(watcher.state, RecoveryState.READY)
        self.assertEqual(self.auth.listeners, [])

    async def test_session_found_by_fallback_check(self) -> None:
        watcher = self._watcher()

        async def quiet_exchange() -> None:
            while not self.auth.listeners:
                await asyncio.sleep(0)
            self.auth.current = self.principal

        task = asyncio.create_task(quiet_exchange())
        principal = await watcher.wait(RECOVERY_FRAGMENT)
        await task

        self.assertEqual(principal, self.principal)
        self.assertEqual(self.auth.listeners, [])

    async def test_no_session_after_final_check_expires(self) -> None:
        watcher = self._watcher()
        with self.assertRaises(AuthExpired):
            await watcher.wait(RECOVERY_FRAGMENT)
        self.assertEqual(watcher.state, RecoveryState.INVALID)
        self.assertEqual(self.auth.listeners, [])

    async def test_sign_out_events_are_ignored(self) -> None:
        watcher = self._watcher()

        async def noisy_exchange() -> None:
            while not self.auth.listeners:
                await asyncio.sleep(0)
            await self.auth.sign_out()

        task = asyncio.create_task(noisy_exchange())
        with self.assertRaises(AuthExpired):
            await watcher.wait(RECOVERY_FRAGMENT)
        await task


class CompletePasswordResetTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.auth = FakeAuthProvider()
        self.principal = await self.auth.sign_up(email='juan@example.com', password='old-pass')
        self.auth.establish(self.principal)

    async def test_updates_password_and_signs_out(self) -> None:
        principal = await complete_password_reset(self.auth, 'new-pass', 'new-pass')

        self.assertEqual(principal, self.principal)
        self.assertEqual(self.auth.users['juan@example.com']['password'], 'new-pass')
        self.assertIsNone(self.auth.current)
        self.assertEqual(self.auth.sign_out_calls, 1)

    async def test_mismatch_is_rejected_before_update(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            await complete_password_reset(self.auth, 'new-pass', 'other-pass')
        self.assertEqual(ctx.exception.message, 'Passwords do not match')
        self.assertEqual(self.auth.users['juan@example.com']['password'], 'old-pass')

    async def test_short_password_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await complete_password_reset(self.auth, 'abc', 'abc')

    async def test_expired_session_surfaces_auth_expired(self) -> None:
        self.auth.current = None
        with self.assertRaises(AuthExpired):
            await complete_password_reset(self.auth, 'new-pass', 'new-pass')


if __name__ == '__main__':
    unittest.main()
