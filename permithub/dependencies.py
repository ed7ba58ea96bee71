from fastapi import Depends, Request

from permithub.services.action_dispatcher import ActionDispatcher
from permithub.services.auth_provider import AuthProvider
from permithub.services.notification_service import NotificationService
from permithub.services.permit_service import PermitService
from permithub.services.record_store import RecordStore
from permithub.services.session_resolver import SessionResolver


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_auth(request: Request) -> AuthProvider:
    return request.state.auth


def get_session_resolver(auth: AuthProvider = Depends(get_auth), store: RecordStore = Depends(get_store)) -> SessionResolver:
    return SessionResolver(auth=auth, store=store)


def get_notification_service(store: RecordStore = Depends(get_store)) -> NotificationService:
    return NotificationService(store)


def get_permit_service(
    store: RecordStore = Depends(get_store),
    notifications: NotificationService = Depends(get_notification_service),
) -> PermitService:
    return PermitService(store=store, notifications=notifications)


def get_dispatcher(
    request: Request,
    auth: AuthProvider = Depends(get_auth),
    permits: PermitService = Depends(get_permit_service),
    notifications: NotificationService = Depends(get_notification_service),
) -> ActionDispatcher:
    # In-flight tracking is scoped to the staff member's session.
    dispatchers: dict[str, ActionDispatcher] = request.app.state.dispatchers
    key = auth.session_token or ''
    dispatcher = dispatchers.get(key)
    if dispatcher is None:
        dispatcher = ActionDispatcher(permits=permits, notifications=notifications)
        dispatchers[key] = dispatcher
    return dispatcher


def drop_dispatcher(request: Request, session_token: str | None) -> None:
    request.app.state.dispatchers.pop(session_token or '', None)
