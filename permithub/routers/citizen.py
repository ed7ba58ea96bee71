from __future__ import annotations

from fastapi import APIRouter, Depends

from permithub.auth import Role
from permithub.dependencies import get_notification_service, get_permit_service
from permithub.security.access_gate import AccessDecision, require_page
from permithub.services.notification_service import NotificationService
from permithub.services.permit_service import PermitService
from permithub.services.permit_status_service import aggregate

router = APIRouter(tags=['citizen'])
citizen_access = require_page(Role.CITIZEN)


@router.get('/dashboard')
async def dashboard(
    decision: AccessDecision = Depends(citizen_access),
    permits: PermitService = Depends(get_permit_service),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_id = decision.principal.id
    return {
        'profile': decision.profile,
        'permits': aggregate(await permits.list_user_permits(user_id)),
        'permit_types': await permits.list_permit_types(),
        'unread_notifications': await notifications.unread_count(user_id),
    }


@router.get('/notifications')
async def notifications_list(
    decision: AccessDecision = Depends(citizen_access),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_id = decision.principal.id
    return {
        'notifications': await notifications.list_for_user(user_id),
        'unread': await notifications.unread_count(user_id),
    }


@router.post('/notifications/read-all')
async def notifications_read_all(
    decision: AccessDecision = Depends(citizen_access),
    notifications: NotificationService = Depends(get_notification_service),
):
    await notifications.mark_all_as_read(decision.principal.id)
    return {'unread': 0}


@router.post('/notifications/{notification_id}/read')
async def notification_read(
    notification_id: str,
    decision: AccessDecision = Depends(citizen_access),
    notifications: NotificationService = Depends(get_notification_service),
):
    await notifications.mark_as_read(decision.principal.id, notification_id)
    return {'unread': await notifications.unread_count(decision.principal.id)}


@router.delete('/notifications/{notification_id}')
async def notification_delete(
    notification_id: str,
    decision: AccessDecision = Depends(citizen_access),
    notifications: NotificationService = Depends(get_notification_service),
):
    await notifications.delete(decision.principal.id, notification_id)
    return {'deleted': notification_id}
