from __future__ import annotations

import unicodedata
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, Response

from permithub.auth import Role
from permithub.dependencies import get_dispatcher, get_permit_service
from permithub.errors import NotFound, ValidationError
from permithub.security.access_gate import AccessDecision, require_page
from permithub.services.action_dispatcher import ActionDispatcher
from permithub.services.permit_filter_service import (
    PermitFilter,
    filter_permits,
    permit_type_facets,
    summarize_payments,
)
from permithub.services.permit_service import PermitService, parse_payment_status, parse_permit_status
from permithub.services.permit_status_service import aggregate

router = APIRouter(prefix='/admin', tags=['admin'])
admin_access = require_page(Role.ADMIN)


def _attachment_disposition(filename: str) -> str:
    if filename.isascii():
        return f'attachment; filename="{filename}"'
    # Header values are latin-1; non-ASCII names go in filename* per RFC 5987.
    fallback = unicodedata.normalize('NFKD', filename).encode('ascii', 'ignore').decode('ascii')
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


class _BufferedViewer:
    def __init__(self) -> None:
        self.parts: list[str] = []
        self.closed = False

    def write(self, content: str) -> None:
        if self.closed:
            raise RuntimeError('viewer already closed')
        self.parts.append(content)

    def close(self) -> None:
        self.closed = True


class HttpDocumentDelivery:
    """Delivers a rendered permit as the HTTP response.

    A client that reports blocked popups gets the document as an attachment.
    """

    def __init__(self, *, popup_blocked: bool = False) -> None:
        self.popup_blocked = popup_blocked
        self._viewer: _BufferedViewer | None = None
        self._download: Response | None = None

    def open_viewer(self) -> _BufferedViewer | None:
        if self.popup_blocked:
            return None
        self._viewer = _BufferedViewer()
        return self._viewer

    def offer_download(self, *, filename: str, content: str, media_type: str) -> None:
        self._download = Response(
            content=content,
            media_type=media_type,
            headers={'Content-Disposition': _attachment_disposition(filename)},
        )

    def response(self) -> Response:
        if self._download is not None:
            return self._download
        if self._viewer is None:
            raise RuntimeError('nothing was delivered')
        return HTMLResponse(''.join(self._viewer.parts))


def _optional_type_id(raw: str | None) -> int | None:
    # "All Permit Types" posts an empty value.
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError('Invalid permit type') from exc


async def _approved_permit(permits: PermitService, permit_id: str):
    for permit in await permits.list_approved_permits():
        if permit.id == permit_id:
            return permit
    raise NotFound('Approved permit not found')


@router.get('')
async def home(
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
):
    return {
        'admin': decision.profile.short_name if decision.profile else None,
        'stats': await permits.dashboard_stats(),
    }


@router.get('/permits')
async def all_permits(
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
):
    return {'permits': aggregate(await permits.list_all_permits())}


@router.get('/permits/{permit_id}')
async def permit_detail(
    permit_id: str,
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
):
    return await permits.get_permit_detail(permit_id)


@router.post('/permits/{permit_id}/status')
async def permit_status_submit(
    permit_id: str,
    request: Request,
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
):
    form = await request.form()
    status = parse_permit_status(str(form.get('status', '')))
    comment = str(form.get('admin_comment', '') or '').strip() or None
    notification = await permits.update_permit_status(
        permit_id, status, actor_id=decision.principal.id, admin_comment=comment
    )
    return {'permit_id': permit_id, 'status': status.value, 'notified': notification is not None}


@router.post('/payments/{payment_id}/status')
async def payment_status_submit(
    payment_id: str,
    request: Request,
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
):
    form = await request.form()
    status = parse_payment_status(str(form.get('status', '')))
    reference = str(form.get('payment_reference', '') or '').strip() or None
    notification = await permits.update_payment_status(
        payment_id, status, actor_id=decision.principal.id, payment_reference=reference
    )
    return {'payment_id': payment_id, 'status': status.value, 'notified': notification is not None}


@router.get('/approved-permits')
async def approved_permits(
    q: str = '',
    permit_type_id: str | None = None,
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    views = aggregate(await permits.list_approved_permits())
    visible = filter_permits(views, PermitFilter(search_query=q, permit_type_id=_optional_type_id(permit_type_id)))
    return {
        'permits': visible,
        'permit_types': permit_type_facets(views),
        'summary': summarize_payments(visible),
        'notifying': sorted(dispatcher.in_flight.ids()),
    }


@router.post('/approved-permits/{permit_id}/notify')
async def notify_pickup(
    permit_id: str,
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    permit = await _approved_permit(permits, permit_id)
    record = await dispatcher.notify_ready_for_pickup(permit)
    return {'notification': record, 'message': 'Pickup notification sent successfully!'}


@router.get('/approved-permits/{permit_id}/print')
async def print_permit(
    permit_id: str,
    popup_blocked: bool = False,
    decision: AccessDecision = Depends(admin_access),
    permits: PermitService = Depends(get_permit_service),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    permit = await _approved_permit(permits, permit_id)
    delivery = HttpDocumentDelivery(popup_blocked=popup_blocked)
    await dispatcher.print_permit(permit, delivery)
    return delivery.response()
