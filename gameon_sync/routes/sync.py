from flask import Blueprint, request, jsonify, current_app

from shared.events import EventChannel, isoformat, utc_now

bp = Blueprint('sync', __name__, url_prefix='/api/sync')


def get_user_id():
    # TODO: Take the user from the verified JWT once auth middleware lands
    return request.headers.get('X-User-Id') or request.args.get('user_id')


def parse_channel(value, default: EventChannel):
    if value is None:
        return default, None
    try:
        return EventChannel(value), None
    except ValueError:
        return None, f'Unknown channel: {value}'


@bp.before_request
def require_user():
    if request.endpoint in ('sync.api_publish_tournament_event', 'sync.api_publish_user_event'):
        return None
    if not get_user_id():
        return jsonify({'error': 'X-User-Id header required'}), 401


# ==================== Session status ====================

@bp.route('/status', methods=['GET'])
def api_status():
    """Sync status and active sessions of the calling user."""
    user_id = get_user_id()
    service = current_app.sync_service

    return jsonify({
        'user_id': user_id,
        'is_online': service.is_online(user_id),
        'active_sessions': len(service.get_user_connections(user_id)),
        'platforms': service.active_platforms(user_id),
        'last_sync': isoformat(utc_now())
    })


@bp.route('/stats', methods=['GET'])
def api_stats():
    """Platform-wide sync and push statistics."""
    return jsonify({
        'sync': current_app.sync_service.get_stats(),
        'push_notifications': current_app.push_service.get_stats(),
        'timestamp': isoformat(utc_now())
    })


@bp.route('/user-sessions', methods=['GET'])
def api_user_sessions():
    """The calling user's sessions across platforms."""
    user_id = get_user_id()
    service = current_app.sync_service
    sessions = service.user_sessions(user_id)

    return jsonify({
        'user_id': user_id,
        'total_sessions': len(sessions),
        'platforms': service.active_platforms(user_id),
        'sessions': sessions
    })


# ==================== Devices ====================

@bp.route('/register-device', methods=['POST'])
def api_register_device():
    """Register a device token for push notifications."""
    data = request.get_json(silent=True) or {}
    token = data.get('token')
    if not token:
        return jsonify({'error': 'Device token is required'}), 400

    user_id = get_user_id()
    platform = data.get('platform', 'web')
    current_app.push_service.register_device_token(user_id, token, platform)

    return jsonify({
        'message': 'Device registered successfully',
        'user_id': user_id,
        'platform': platform,
        'registered': True
    })


@bp.route('/unregister-device', methods=['DELETE'])
def api_unregister_device():
    """Unregister a device token from every platform."""
    data = request.get_json(silent=True) or {}
    token = data.get('token')
    if not token:
        return jsonify({'error': 'Device token is required'}), 400

    user_id = get_user_id()
    current_app.push_service.unregister_device_token(user_id, token)

    return jsonify({
        'message': 'Device unregistered successfully',
        'user_id': user_id,
        'unregistered': True
    })


@bp.route('/test-notification', methods=['POST'])
def api_test_notification():
    """Send a test push notification to the calling user."""
    if not current_app.config.get('ALLOW_TEST_NOTIFICATIONS'):
        return jsonify({'error': 'Test notifications not available in production'}), 403

    result = current_app.push_service.test_notification(get_user_id())
    return jsonify({'message': 'Test notification sent', 'result': result.to_dict()})


# ==================== Subscriptions ====================

@bp.route('/subscriptions', methods=['POST'])
def api_subscribe():
    """Subscribe the calling user to a tournament."""
    data = request.get_json(silent=True) or {}
    tournament_id = data.get('tournament_id')
    if not tournament_id:
        return jsonify({'error': 'tournament_id required'}), 400

    user_id = get_user_id()
    added = current_app.sync_service.subscribe(user_id, str(tournament_id))
    return jsonify({
        'message': 'Subscribed successfully' if added else 'Already subscribed',
        'tournament_id': tournament_id
    })


@bp.route('/subscriptions', methods=['DELETE'])
def api_unsubscribe():
    """Unsubscribe the calling user from a tournament."""
    data = request.get_json(silent=True) or {}
    tournament_id = data.get('tournament_id')
    if not tournament_id:
        return jsonify({'error': 'tournament_id required'}), 400

    current_app.sync_service.unsubscribe(get_user_id(), str(tournament_id))
    return jsonify({'message': 'Unsubscribed successfully', 'tournament_id': tournament_id})


# ==================== Publishing ====================

@bp.route('/force-sync', methods=['POST'])
def api_force_sync():
    """Push a user_sync event to every session of the calling user."""
    data = request.get_json(silent=True) or {}
    sync_type = data.get('type', 'user_data')
    user_id = get_user_id()

    extra = data.get('data') or {}
    if not isinstance(extra, dict):
        return jsonify({'error': 'data must be an object'}), 400

    payload = dict(extra)
    payload['forced'] = True
    payload['requestedAt'] = isoformat(utc_now())

    sync_id = current_app.sync_service.sync_user_update(user_id, f'force_{sync_type}', payload)
    return jsonify({
        'message': 'Force sync initiated',
        'sync_id': sync_id,
        'type': sync_type,
        'user_id': user_id
    })


@bp.route('/tournaments/<tournament_id>/events', methods=['POST'])
def api_publish_tournament_event(tournament_id: str):
    """Broadcast a tournament or slot change to the tournament's subscribers."""
    data = request.get_json(silent=True) or {}
    update_type = data.get('type')
    if not update_type:
        return jsonify({'error': 'Event type is required'}), 400

    channel, error = parse_channel(data.get('channel'), EventChannel.TOURNAMENT_SYNC)
    if error:
        return jsonify({'error': error}), 400

    sync_id = current_app.sync_service.publish_to_topic(
        tournament_id, channel, update_type, data.get('data')
    )
    return jsonify({'sync_id': sync_id, 'channel': channel.value, 'tournament_id': tournament_id}), 202


@bp.route('/users/<user_id>/events', methods=['POST'])
def api_publish_user_event(user_id: str):
    """
    Deliver a user or wallet change to every session of a user.
    An optional `notification` is also pushed to the user's devices; a
    failed push never fails the request.
    """
    data = request.get_json(silent=True) or {}
    update_type = data.get('type')
    if not update_type:
        return jsonify({'error': 'Event type is required'}), 400

    channel, error = parse_channel(data.get('channel'), EventChannel.USER_SYNC)
    if error:
        return jsonify({'error': error}), 400

    sync_id = current_app.sync_service.publish_to_user(
        user_id,
        channel,
        update_type,
        data.get('data'),
        exclude_connection=data.get('exclude_connection')
    )

    response = {'sync_id': sync_id, 'channel': channel.value, 'user_id': user_id}
    notification = data.get('notification')
    if notification:
        result = current_app.push_service.send_to_user(
            user_id, notification, {'type': update_type}
        )
        response['push'] = result.to_dict()

    return jsonify(response), 202
