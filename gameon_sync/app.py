import os
import logging

import redis
from flask import Flask, jsonify
from flask_socketio import SocketIO

from shared.errors import SyncError
from shared.transport import SocketIOTransport
from .config import config
from .push_notifications import DeviceTokenStore, PushNotificationService, create_provider
from .socket_events import register_socket_handlers
from .sweeper import IdleSweeper
from .sync_service import SyncService

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the sync service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config['default']))

    # Initialize extensions
    socketio = SocketIO(
        app,
        cors_allowed_origins=app.config['CORS_ALLOWED_ORIGINS'],
        async_mode=app.config['SOCKETIO_ASYNC_MODE'],
        message_queue=app.config['SOCKETIO_MESSAGE_QUEUE']
    )

    # Initialize services
    sync_service = SyncService(
        SocketIOTransport(socketio),
        auto_join_subscriptions=app.config['AUTO_JOIN_SUBSCRIPTIONS']
    )
    push_service = PushNotificationService(
        DeviceTokenStore(app.config['MAX_TOKENS_PER_PLATFORM']),
        create_provider(app.config['PUSH_PROVIDER'], app.config['FIREBASE_CREDENTIALS']),
        default_icon=app.config['DEFAULT_NOTIFICATION_ICON']
    )

    # Store services on app for access in routes and socket handlers
    app.socketio = socketio
    app.sync_service = sync_service
    app.push_service = push_service
    app.sweeper = IdleSweeper(
        socketio,
        sync_service,
        timeout_seconds=app.config['IDLE_TIMEOUT_SECONDS'],
        interval_seconds=app.config['SWEEP_INTERVAL_SECONDS']
    )

    register_socket_handlers(socketio)

    from .routes import sync
    app.register_blueprint(sync.bp)

    register_error_handlers(app)
    register_health_routes(app)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(SyncError)
    def handle_sync_error(e):
        return jsonify({'error': str(e)}), 400


def register_health_routes(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        queue_url = app.config.get('SOCKETIO_MESSAGE_QUEUE')
        if not queue_url:
            queue_status = 'not configured'
        else:
            try:
                redis.from_url(queue_url, socket_connect_timeout=2).ping()
                queue_status = 'connected'
            except redis.exceptions.RedisError as e:
                logger.warning(f"Message queue unreachable: {e}")
                queue_status = 'disconnected'

        stats = app.sync_service.get_stats()
        healthy = queue_status != 'disconnected'

        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'message_queue': queue_status,
            'connections': stats['total_connections'],
            'users': stats['total_users'],
            'tournaments': stats['total_tournaments'],
            'push_enabled': app.push_service.is_enabled
        }), 200 if healthy else 503
