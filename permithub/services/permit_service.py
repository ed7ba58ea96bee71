from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

from permithub.config import Settings, settings as default_settings
from permithub.errors import NotFound, ValidationError
from permithub.models import NotificationKind, PaymentStatus, PermitStatus
from permithub.services.audit_service import record_permit_audit
from permithub.services.notification_service import NotificationRecord, NotificationService
from permithub.services.permit_records import (
    Permit,
    PermitDetail,
    PermitType,
    audit_from_row,
    image_from_row,
    payment_from_row,
    permit_from_row,
    permit_type_from_row,
)
from permithub.services.permit_status_service import has_completed_payment
from permithub.services.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardStats:
    total_users: int
    total_permits: int
    total_payments: int
    pending_permits: int
    approved_permits: int
    rejected_permits: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class PermitService:
    def __init__(self, *, store: RecordStore, notifications: NotificationService, settings: Settings | None = None) -> None:
        self.store = store
        self.notifications = notifications
        self.settings = settings or default_settings

    async def list_permit_types(self) -> list[PermitType]:
        rows = await self.store.select('permit_types', order_by='title')
        return [permit_type_from_row(row) for row in rows]

    async def _assemble(self, permit_rows: list[dict], *, with_evidence: bool) -> list[Permit]:
        if not permit_rows:
            return []
        permit_ids = [row['id'] for row in permit_rows]
        type_ids = {row['permit_type_id'] for row in permit_rows if row.get('permit_type_id') is not None}
        applicant_ids = {row['applicant_id'] for row in permit_rows if row.get('applicant_id')}

        permit_types = {}
        if type_ids:
            permit_types = {
                row['id']: permit_type_from_row(row) for row in await self.store.select('permit_types', {'id': type_ids})
            }
        applicants = {}
        if applicant_ids:
            applicants = {row['id']: row for row in await self.store.select('profiles', {'id': applicant_ids})}

        payments_by_permit = defaultdict(list)
        images_by_permit = defaultdict(list)
        if with_evidence:
            for row in await self.store.select('payments', {'permit_id': permit_ids}, order_by='created_at', descending=True):
                payments_by_permit[row['permit_id']].append(payment_from_row(row))
            for row in await self.store.select('uploaded_images', {'permit_id': permit_ids}, order_by='uploaded_at', descending=True):
                images_by_permit[row['permit_id']].append(image_from_row(row))

        return [
            permit_from_row(
                row,
                permit_types=permit_types,
                applicants=applicants,
                payments=payments_by_permit.get(row['id']),
                images=images_by_permit.get(row['id']),
            )
            for row in permit_rows
        ]

    async def list_user_permits(self, user_id: str) -> list[Permit]:
        rows = await self.store.select('permits', {'applicant_id': user_id}, order_by='created_at', descending=True)
        return await self._assemble(rows, with_evidence=True)

    async def list_all_permits(self) -> list[Permit]:
        rows = await self.store.select('permits', order_by='created_at', descending=True)
        return await self._assemble(rows, with_evidence=False)

    async def list_approved_permits(self) -> list[Permit]:
        rows = await self.store.select(
            'permits', {'status': PermitStatus.APPROVED.value}, order_by='updated_at', descending=True
        )
        return await self._assemble(rows, with_evidence=True)

    async def get_permit_detail(self, permit_id: str) -> PermitDetail:
        rows = await self.store.select('permits', {'id': permit_id}, limit=1)
        if not rows:
            raise NotFound('Permit not found')
        permit = (await self._assemble(rows, with_evidence=True))[0]

        async def family_data(table: str) -> dict | None:
            found = await self.store.select(table, {'permit_id': permit_id}, limit=1)
            return found[0].get('data') if found else None

        audit_rows = await self.store.select('permit_audit', {'permit_id': permit_id}, order_by='created_at', descending=True)
        return PermitDetail(
            permit=permit,
            business_data=await family_data('business_permit_details'),
            building_data=await family_data('building_permit_details'),
            motorela_data=await family_data('motorela_permits'),
            audit_trail=tuple(audit_from_row(row) for row in audit_rows),
        )

    async def update_permit_status(
        self,
        permit_id: str,
        status: PermitStatus,
        *,
        actor_id: str | None,
        admin_comment: str | None = None,
    ) -> NotificationRecord | None:
        """Transition a permit and notify the applicant of approvals and rejections.

        The transition is committed before the notification is attempted, so a
        DeliveryFailed here leaves the new status in place.
        """
        updated = await self.store.update(
            'permits',
            {'status': status.value, 'admin_comment': admin_comment, 'updated_at': _now()},
            {'id': permit_id},
        )
        if not updated:
            raise NotFound('Permit not found')
        await record_permit_audit(
            self.store, permit_id=permit_id, action=f'STATUS_{status.value.upper()}', actor_id=actor_id, note=admin_comment
        )
        logger.info('permit %s moved to %s by %s', permit_id, status.value, actor_id)

        if status == PermitStatus.APPROVED:
            return await self.send_approval_notification(permit_id)
        if status == PermitStatus.REJECTED:
            return await self.send_rejection_notification(permit_id, admin_comment)
        return None

    async def send_approval_notification(self, permit_id: str) -> NotificationRecord | None:
        detail = await self.get_permit_detail(permit_id)
        permit = detail.permit
        if not permit.applicant_id:
            logger.error('permit %s has no applicant, approval notification skipped', permit_id)
            return None
        if permit.status != PermitStatus.APPROVED.value:
            logger.warning('permit %s is %s, sending approval notification anyway', permit_id, permit.status)

        type_title = permit.permit_type.title if permit.permit_type else 'Permit'
        if has_completed_payment(permit):
            title = 'Permit Ready'
            body = (
                f'Your {type_title} application has been approved and payment is completed. '
                'Your permit is ready to receive. Please use the GCash QR code below for reference.'
            )
            kind = NotificationKind.PERMIT_READY
        else:
            title = 'Application Approved'
            body = (
                f'Your {type_title} application has been approved. Please complete your payment '
                'using the GCash QR code below to proceed with your permit.'
            )
            kind = NotificationKind.PAYMENT_REQUIRED
        return await self.notifications.send(
            permit.applicant_id, permit_id, title, body, kind, qr_code_url=self.settings.payment_qr_code_url
        )

    async def send_rejection_notification(self, permit_id: str, admin_comment: str | None = None) -> NotificationRecord | None:
        detail = await self.get_permit_detail(permit_id)
        permit = detail.permit
        if not permit.applicant_id:
            logger.error('permit %s has no applicant, rejection notification skipped', permit_id)
            return None

        type_title = permit.permit_type.title if permit.permit_type else 'Permit'
        body = f'Your {type_title} application has been rejected.'
        if admin_comment:
            body += f' Reason: {admin_comment}'
        body += ' Please review your application and resubmit if necessary.'
        return await self.notifications.send(
            permit.applicant_id, permit_id, 'Application Rejected', body, NotificationKind.APPLICATION_REJECTED
        )

    async def update_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        actor_id: str | None,
        payment_reference: str | None = None,
    ) -> NotificationRecord | None:
        values: dict = {'payment_status': status.value}
        if payment_reference:
            values['payment_reference'] = payment_reference.strip()
        rows = await self.store.select('payments', {'id': payment_id}, limit=1)
        if not rows:
            raise NotFound('Payment not found')
        await self.store.update('payments', values, {'id': payment_id})

        permit_id = rows[0]['permit_id']
        await record_permit_audit(
            self.store, permit_id=permit_id, action=f'PAYMENT_{status.value.upper()}', actor_id=actor_id, note=payment_reference
        )
        if status != PaymentStatus.COMPLETED:
            return None

        permit_rows = await self.store.select('permits', {'id': permit_id}, limit=1)
        if permit_rows and permit_rows[0].get('status') == PermitStatus.APPROVED.value:
            return await self.send_approval_notification(permit_id)
        return None

    async def dashboard_stats(self) -> DashboardStats:
        permit_rows = await self.store.select('permits')
        by_status = defaultdict(int)
        for row in permit_rows:
            by_status[row.get('status')] += 1
        return DashboardStats(
            total_users=await self.store.count('profiles'),
            total_permits=len(permit_rows),
            total_payments=await self.store.count('payments'),
            pending_permits=by_status[PermitStatus.PENDING.value],
            approved_permits=by_status[PermitStatus.APPROVED.value],
            rejected_permits=by_status[PermitStatus.REJECTED.value],
        )


def parse_permit_status(value: str) -> PermitStatus:
    try:
        return PermitStatus(value.strip().lower())
    except ValueError as exc:
        raise ValidationError(f'Unknown permit status {value!r}') from exc


def parse_payment_status(value: str) -> PaymentStatus:
    try:
        return PaymentStatus(value.strip().lower())
    except ValueError as exc:
        raise ValidationError(f'Unknown payment status {value!r}') from exc
