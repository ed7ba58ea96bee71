from __future__ import annotations

import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from fakes import InMemoryRecordStore, make_permit

from permithub.config import Settings
from permithub.errors import DeliveryFailed, NotFound, StoreError, StoreErrorKind
from permithub.services.action_dispatcher import ActionDispatcher, InFlightTracker, PrintChannel
from permithub.services.notification_service import NotificationService
from permithub.services.permit_documents import PermitFamily
from permithub.services.permit_records import PermitDetail


class GatedStore(InMemoryRecordStore):
    """Holds every notification insert until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.started = 0

    async def insert(self, table, rows):
        self.started += 1
        await self.release.wait()
        return await super().insert(table, rows)


class RecordingViewer:
    def __init__(self) -> None:
        self.written: list[str] = []
        self.closed = False

    def write(self, content: str) -> None:
        self.written.append(content)

    def close(self) -> None:
        self.closed = True


class RecordingDelivery:
    def __init__(self, *, blocked: bool = False, fail_with: Exception | None = None) -> None:
        self.blocked = blocked
        self.fail_with = fail_with
        self.viewer: RecordingViewer | None = None
        self.downloads: list[dict] = []

    def open_viewer(self):
        if self.fail_with is not None:
            raise self.fail_with
        if self.blocked:
            return None
        self.viewer = RecordingViewer()
        return self.viewer

    def offer_download(self, *, filename: str, content: str, media_type: str) -> None:
        self.downloads.append({'filename': filename, 'content': content, 'media_type': media_type})


def _settings() -> Settings:
    return Settings(pickup_location='Municipal Hall', pickup_office='Permits Window 2', office_hours='8AM-5PM weekdays')


class NotifyReadyForPickupTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.changes: list[tuple[str, bool]] = []
        self.tracker = InFlightTracker(on_change=lambda permit_id, active: self.changes.append((permit_id, active)))

    def _dispatcher(self, store) -> ActionDispatcher:
        return ActionDispatcher(
            permits=SimpleNamespace(),
            notifications=NotificationService(store),
            settings=_settings(),
            in_flight=self.tracker,
        )

    async def test_sends_pickup_notice_to_applicant(self) -> None:
        store = InMemoryRecordStore()
        record = await self._dispatcher(store).notify_ready_for_pickup(make_permit('permit-9'))

        self.assertEqual(record.user_id, 'user-1')
        self.assertEqual(record.permit_id, 'permit-9')
        self.assertEqual(record.title, 'Permit Ready for Pickup')
        self.assertEqual(record.type, 'permit_ready')
        self.assertIn('Good day Juan Dela Cruz!', record.message)
        self.assertIn('Business Permit', record.message)
        self.assertIn('Municipal Hall', record.message)
        self.assertIn('Permits Window 2', record.message)
        self.assertIn('8AM-5PM weekdays', record.message)
        self.assertEqual(self.changes, [('permit-9', True), ('permit-9', False)])

    async def test_missing_name_falls_back_to_applicant(self) -> None:
        store = InMemoryRecordStore()
        record = await self._dispatcher(store).notify_ready_for_pickup(make_permit(firstname=None, lastname=None))
        self.assertIn('Good day Applicant!', record.message)

    async def test_missing_applicant_is_not_found_and_never_tracked(self) -> None:
        store = InMemoryRecordStore()
        with self.assertRaises(NotFound):
            await self._dispatcher(store).notify_ready_for_pickup(make_permit(applicant_id=None))
        self.assertEqual(store.write_attempts['notifications'], 0)
        self.assertEqual(self.changes, [])

    async def test_store_failure_is_delivery_failed_and_clears_in_flight(self) -> None:
        store = InMemoryRecordStore()
        store.failures['notifications'] = [StoreError('denied', kind=StoreErrorKind.PERMISSION_DENIED, code='42501')]
        dispatcher = self._dispatcher(store)

        with self.assertRaises(DeliveryFailed) as ctx:
            await dispatcher.notify_ready_for_pickup(make_permit('permit-9'))

        self.assertIn('Permission denied', ctx.exception.message)
        self.assertFalse(dispatcher.is_notifying('permit-9'))
        self.assertEqual(self.changes, [('permit-9', True), ('permit-9', False)])

    async def test_overlapping_notices_mark_once_and_clear_after_both(self) -> None:
        store = GatedStore()
        dispatcher = self._dispatcher(store)
        permit = make_permit('permit-9')

        first = asyncio.create_task(dispatcher.notify_ready_for_pickup(permit))
        second = asyncio.create_task(dispatcher.notify_ready_for_pickup(permit))
        while store.started < 2:
            await asyncio.sleep(0)

        self.assertTrue(dispatcher.is_notifying('permit-9'))
        self.assertEqual(dispatcher.in_flight.ids(), frozenset({'permit-9'}))
        self.assertEqual(self.changes, [('permit-9', True)])

        store.release.set()
        await asyncio.gather(first, second)

        self.assertFalse(dispatcher.is_notifying('permit-9'))
        self.assertEqual(self.changes, [('permit-9', True), ('permit-9', False)])
        self.assertEqual(len(store.tables['notifications']), 2)

    async def test_notices_for_different_permits_are_tracked_separately(self) -> None:
        store = GatedStore()
        dispatcher = self._dispatcher(store)

        first = asyncio.create_task(dispatcher.notify_ready_for_pickup(make_permit('permit-a')))
        second = asyncio.create_task(dispatcher.notify_ready_for_pickup(make_permit('permit-b')))
        while store.started < 2:
            await asyncio.sleep(0)
        self.assertEqual(dispatcher.in_flight.ids(), frozenset({'permit-a', 'permit-b'}))

        store.release.set()
        await asyncio.gather(first, second)
        self.assertEqual(dispatcher.in_flight.ids(), frozenset())


class PrintPermitTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.permit = make_permit(
            'abcdef12-3456-7890-abcd-ef1234567890',
            type_slug='motorela-permit',
            type_title='Motorela Permit',
        )
        detail = PermitDetail(permit=self.permit, motorela_data={'plate_no': 'MT-1234', 'body_no': '17'})
        self.permits = SimpleNamespace(get_permit_detail=AsyncMock(return_value=detail))
        self.dispatcher = ActionDispatcher(
            permits=self.permits,
            notifications=NotificationService(InMemoryRecordStore()),
            settings=_settings(),
        )

    async def test_document_is_written_to_viewer(self) -> None:
        delivery = RecordingDelivery()
        outcome = await self.dispatcher.print_permit(self.permit, delivery)

        self.assertEqual(outcome.channel, PrintChannel.VIEWER)
        self.assertEqual(outcome.family, PermitFamily.MOTORELA)
        self.assertIsNone(outcome.filename)
        self.assertTrue(delivery.viewer.closed)
        self.assertIn('MT-1234', ''.join(delivery.viewer.written))
        self.assertEqual(delivery.downloads, [])
        self.permits.get_permit_detail.assert_awaited_once_with(self.permit.id)

    async def test_blocked_viewer_falls_back_to_download(self) -> None:
        delivery = RecordingDelivery(blocked=True)
        outcome = await self.dispatcher.print_permit(self.permit, delivery)

        self.assertEqual(outcome.channel, PrintChannel.DOWNLOAD)
        self.assertEqual(outcome.filename, 'permit-Motorela Permit-abcdef12.html')
        self.assertEqual(len(delivery.downloads), 1)
        self.assertEqual(delivery.downloads[0]['filename'], 'permit-Motorela Permit-abcdef12.html')
        self.assertEqual(delivery.downloads[0]['media_type'], 'text/html')
        self.assertIn('MT-1234', delivery.downloads[0]['content'])

    async def test_delivery_errors_become_delivery_failed(self) -> None:
        with self.assertRaises(DeliveryFailed):
            await self.dispatcher.print_permit(self.permit, RecordingDelivery(fail_with=OSError('disk full')))

    async def test_unknown_permit_propagates_not_found(self) -> None:
        self.permits.get_permit_detail.side_effect = NotFound('Permit not found')
        with self.assertRaises(NotFound):
            await self.dispatcher.print_permit(self.permit, RecordingDelivery())


if __name__ == '__main__':
    unittest.main()
