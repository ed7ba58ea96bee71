from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from permithub.config import Settings, settings as default_settings
from permithub.errors import DeliveryFailed, NotFound, PortalError
from permithub.models import NotificationKind
from permithub.services.notification_service import NotificationRecord, NotificationService
from permithub.services.permit_documents import PermitFamily, document_filename, render_permit_document
from permithub.services.permit_records import Permit
from permithub.services.permit_service import PermitService

logger = logging.getLogger(__name__)

PICKUP_TITLE = 'Permit Ready for Pickup'
HTML_MEDIA_TYPE = 'text/html'


class InFlightTracker:
    """Permit ids with a dispatch outstanding.

    Counted per id: overlapping dispatches mark the id once and clear it once,
    when the last of them settles.
    """

    def __init__(self, on_change: Callable[[str, bool], None] | None = None) -> None:
        self._active: Counter[str] = Counter()
        self._on_change = on_change

    def __contains__(self, permit_id: object) -> bool:
        return self._active.get(permit_id, 0) > 0

    def ids(self) -> frozenset[str]:
        return frozenset(self._active)

    @contextmanager
    def track(self, permit_id: str) -> Iterator[None]:
        self._active[permit_id] += 1
        if self._active[permit_id] == 1 and self._on_change:
            self._on_change(permit_id, True)
        try:
            yield
        finally:
            self._active[permit_id] -= 1
            if self._active[permit_id] <= 0:
                del self._active[permit_id]
                if self._on_change:
                    self._on_change(permit_id, False)


class DocumentViewer(Protocol):
    def write(self, content: str) -> None: ...

    def close(self) -> None: ...


class DocumentDelivery(Protocol):
    def open_viewer(self) -> DocumentViewer | None:
        """Open a viewing context, or return None when the client blocks it."""
        ...

    def offer_download(self, *, filename: str, content: str, media_type: str) -> None: ...


class PrintChannel(str, Enum):
    VIEWER = 'VIEWER'
    DOWNLOAD = 'DOWNLOAD'


@dataclass(frozen=True)
class PrintOutcome:
    permit_id: str
    family: PermitFamily
    channel: PrintChannel
    filename: str | None = None


def applicant_short_name(permit: Permit) -> str:
    name = permit.applicant.short_name if permit.applicant else ''
    return name or 'Applicant'


def applicant_full_name(permit: Permit) -> str:
    name = permit.applicant.full_name if permit.applicant else ''
    return name or 'N/A'


class ActionDispatcher:
    """Staff actions on approved permits: pickup notices and printing.

    Overlapping notifications for one permit are not refused here; callers
    consult `in_flight` before offering the action again.
    """

    def __init__(
        self,
        *,
        permits: PermitService,
        notifications: NotificationService,
        settings: Settings | None = None,
        in_flight: InFlightTracker | None = None,
    ) -> None:
        self.permits = permits
        self.notifications = notifications
        self.settings = settings or default_settings
        self.in_flight = in_flight or InFlightTracker()

    def is_notifying(self, permit_id: str) -> bool:
        return permit_id in self.in_flight

    def pickup_message(self, permit: Permit) -> str:
        type_title = permit.permit_type.title if permit.permit_type and permit.permit_type.title else 'Your permit'
        return (
            f'Good day {applicant_short_name(permit)}! Your {type_title} is now ready for pickup.\n\n'
            'Pickup Details:\n'
            f'Location: {self.settings.pickup_location}\n'
            f'Office: {self.settings.pickup_office}\n\n'
            'Please bring a valid ID and your payment receipt when claiming your permit. '
            f'Office hours are {self.settings.office_hours}.'
        )

    async def notify_ready_for_pickup(self, permit: Permit) -> NotificationRecord:
        if not permit.applicant_id:
            raise NotFound('Cannot send notification: Applicant information not found')

        with self.in_flight.track(permit.id):
            try:
                record = await self.notifications.send(
                    permit.applicant_id,
                    permit.id,
                    PICKUP_TITLE,
                    self.pickup_message(permit),
                    NotificationKind.PERMIT_READY,
                )
            except DeliveryFailed:
                raise
            except PortalError as exc:
                raise DeliveryFailed('Failed to send notification. Please try again.') from exc
        logger.info('pickup notice for permit %s sent to %s', permit.id, permit.applicant_id)
        return record

    async def print_permit(self, permit: Permit, delivery: DocumentDelivery) -> PrintOutcome:
        detail = await self.permits.get_permit_detail(permit.id)
        family, document = render_permit_document(detail, applicant_full_name(detail.permit))

        try:
            viewer = delivery.open_viewer()
            if viewer is not None:
                viewer.write(document)
                viewer.close()
                logger.info('permit %s opened for printing with the %s template', permit.id, family.value)
                return PrintOutcome(permit_id=permit.id, family=family, channel=PrintChannel.VIEWER)

            type_title = permit.permit_type.title if permit.permit_type else None
            filename = document_filename(type_title, permit.id)
            delivery.offer_download(filename=filename, content=document, media_type=HTML_MEDIA_TYPE)
        except (OSError, RuntimeError) as exc:
            logger.error('permit %s document delivery failed: %s', permit.id, exc)
            raise DeliveryFailed('Failed to generate permit. Please try again.') from exc

        logger.info('viewer blocked, permit %s offered as %s', permit.id, filename)
        return PrintOutcome(permit_id=permit.id, family=family, channel=PrintChannel.DOWNLOAD, filename=filename)
