from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from permithub.errors import DeliveryFailed, StoreError, StoreErrorKind
from permithub.models import NotificationKind
from permithub.services.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRecord:
    id: str
    user_id: str
    permit_id: str | None
    title: str
    message: str
    type: str
    is_read: bool = False
    gcash_qr_code_url: str | None = None
    created_at: datetime | None = None


def notification_from_row(row: dict) -> NotificationRecord:
    return NotificationRecord(
        id=str(row['id']),
        user_id=row['user_id'],
        permit_id=row.get('permit_id'),
        title=row['title'],
        message=row['message'],
        type=str(row.get('type') or NotificationKind.GENERAL.value),
        is_read=bool(row.get('is_read')),
        gcash_qr_code_url=row.get('gcash_qr_code_url'),
        created_at=row.get('created_at'),
    )


class NotificationService:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def send(
        self,
        recipient_id: str,
        permit_id: str | None,
        title: str,
        body: str,
        kind: NotificationKind = NotificationKind.GENERAL,
        qr_code_url: str | None = None,
    ) -> NotificationRecord:
        logger.info('sending %s notification for permit %s to %s', kind.value, permit_id, recipient_id)
        try:
            rows = await self.store.insert(
                'notifications',
                [
                    {
                        'user_id': recipient_id,
                        'permit_id': permit_id,
                        'title': title,
                        'message': body,
                        'type': kind.value,
                        'gcash_qr_code_url': qr_code_url,
                    }
                ],
            )
        except StoreError as exc:
            logger.error('notification for permit %s failed: %s', permit_id, exc.message)
            if exc.kind is StoreErrorKind.PERMISSION_DENIED:
                raise DeliveryFailed(
                    'Permission denied: Unable to send notification. Please ensure you are logged in '
                    'and have the necessary permissions.'
                ) from exc
            raise DeliveryFailed('Failed to send notification. Please try again.') from exc
        return notification_from_row(rows[0])

    async def list_for_user(self, user_id: str) -> list[NotificationRecord]:
        rows = await self.store.select('notifications', {'user_id': user_id}, order_by='created_at', descending=True)
        return [notification_from_row(row) for row in rows]

    async def unread_count(self, user_id: str) -> int:
        return await self.store.count('notifications', {'user_id': user_id, 'is_read': False})

    async def mark_as_read(self, user_id: str, notification_id: str) -> None:
        await self.store.update('notifications', {'is_read': True}, {'id': notification_id, 'user_id': user_id})

    async def mark_all_as_read(self, user_id: str) -> None:
        await self.store.update('notifications', {'is_read': True}, {'user_id': user_id, 'is_read': False})

    async def delete(self, user_id: str, notification_id: str) -> None:
        await self.store.delete('notifications', {'id': notification_id, 'user_id': user_id})
