"""
Socket.IO event handlers.

Clients identify themselves either in the connect auth payload
(`{userId, platform}`) or with an explicit `authenticate` event, then join
tournament groups and send periodic heartbeats.
"""
import logging

from flask import current_app, request
from flask_socketio import SocketIO, emit, join_room, leave_room

from shared.errors import InvalidPlatform
from shared.events import Platform, isoformat, utc_now
from shared.transport import tournament_room

logger = logging.getLogger(__name__)


def _sync_service():
    return current_app.sync_service


def _push_service():
    return current_app.push_service


def _current_user_id():
    connection = _sync_service().get_connection(request.sid)
    return connection.user_id if connection else None


def _authenticate(data: dict) -> bool:
    user_id = data.get('userId')
    if not user_id:
        emit('auth_error', {'message': 'User ID required'})
        return False

    try:
        platform = Platform.parse(data.get('platform'))
    except InvalidPlatform as e:
        emit('auth_error', {'message': str(e)})
        return False

    user_id = str(user_id)
    service = _sync_service()
    service.register_connection(request.sid, user_id, platform)

    push_token = data.get('pushToken')
    if push_token:
        _push_service().register_device_token(user_id, push_token, platform)

    emit('authenticated', {
        'userId': user_id,
        'platform': platform.value,
        'platforms': service.active_platforms(user_id),
        'timestamp': isoformat(utc_now())
    })
    return True


def register_socket_handlers(socketio: SocketIO):
    """Attach the sync event handlers to a SocketIO instance."""

    @socketio.on('connect')
    def on_connect(auth=None):
        logger.info(f"Client connected: {request.sid}")
        if auth and auth.get('userId'):
            _authenticate(auth)

    @socketio.on('authenticate')
    def on_authenticate(data):
        _authenticate(data or {})

    @socketio.on('join_tournament')
    def on_join_tournament(data):
        data = data or {}
        tournament_id = data.get('tournamentId')
        if not tournament_id:
            emit('error', {'message': 'tournamentId required'})
            return

        service = _sync_service()
        service.touch(request.sid)
        tournament_id = str(tournament_id)
        user_id = data.get('userId') or _current_user_id()

        if user_id:
            service.subscribe(str(user_id), tournament_id)
        else:
            # Anonymous viewers only get the broadcast group, no subscription
            join_room(tournament_room(tournament_id))
            logger.info(f"Connection {request.sid} joined tournament {tournament_id} (anonymous)")

        emit('tournament_joined', {'tournamentId': tournament_id, 'timestamp': isoformat(utc_now())})

    @socketio.on('leave_tournament')
    def on_leave_tournament(data):
        data = data or {}
        tournament_id = data.get('tournamentId')
        if not tournament_id:
            emit('error', {'message': 'tournamentId required'})
            return

        service = _sync_service()
        service.touch(request.sid)
        tournament_id = str(tournament_id)
        user_id = data.get('userId') or _current_user_id()

        if user_id:
            service.unsubscribe(str(user_id), tournament_id)
        else:
            leave_room(tournament_room(tournament_id))

        emit('tournament_left', {'tournamentId': tournament_id, 'timestamp': isoformat(utc_now())})

    @socketio.on('heartbeat')
    def on_heartbeat(data=None):
        _sync_service().touch(request.sid)

    @socketio.on('sync_request')
    def on_sync_request(data):
        data = data or {}
        _sync_service().touch(request.sid)
        emit('sync_response', {
            'type': data.get('type'),
            'lastSyncId': data.get('lastSyncId'),
            'timestamp': isoformat(utc_now())
        })

    @socketio.on('update_push_token')
    def on_update_push_token(data):
        data = data or {}
        _sync_service().touch(request.sid)
        user_id = data.get('userId') or _current_user_id()
        token = data.get('token')
        if not user_id or not token:
            emit('push_token_updated', {'success': False, 'error': 'userId and token required'})
            return

        try:
            _push_service().register_device_token(str(user_id), token, data.get('platform'))
        except InvalidPlatform as e:
            emit('push_token_updated', {'success': False, 'error': str(e)})
            return

        emit('push_token_updated', {'success': True})

    @socketio.on('disconnect')
    def on_disconnect(reason=None):
        logger.info(f"Client disconnected: {request.sid}")
        _sync_service().unregister_connection(request.sid)

    @socketio.on_error_default
    def on_error(e):
        event = getattr(request, 'event', None) or {}
        logger.error(f"Socket event {event.get('message')} from {request.sid} failed: {e}")
