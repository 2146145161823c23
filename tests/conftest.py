"""
Pytest configuration and fixtures for sync service tests.
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from gameon_sync.app import create_app
from gameon_sync.session_registry import SessionRegistry
from gameon_sync.subscription_manager import SubscriptionManager
from gameon_sync.sync_service import SyncService
from shared.transport import Transport


class RecordingTransport(Transport):
    """In-memory transport that records every delivery."""

    def __init__(self):
        self.sent = []
        self.broadcasts = []
        self.rooms = {}
        self.failing = set()

    def send(self, connection_id, event, payload):
        if connection_id in self.failing:
            raise ConnectionError(f"{connection_id} is closed")
        self.sent.append((connection_id, event, payload))

    def broadcast(self, room, event, payload):
        self.broadcasts.append((room, event, payload))

    def join(self, connection_id, room):
        self.rooms.setdefault(room, set()).add(connection_id)

    def leave(self, connection_id, room):
        members = self.rooms.get(room, set())
        members.discard(connection_id)
        if not members:
            self.rooms.pop(room, None)

    def members(self, room):
        return self.rooms.get(room, set())

    def received_by(self, connection_id, event=None):
        """Payloads delivered to one connection, directly or through its rooms."""
        payloads = [p for cid, e, p in self.sent if cid == connection_id and (event is None or e == event)]
        for room, e, p in self.broadcasts:
            if connection_id in self.members(room) and (event is None or e == event):
                payloads.append(p)
        return payloads


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def registry(clock):
    return SessionRegistry(clock=clock)


@pytest.fixture
def subscriptions():
    return SubscriptionManager()


@pytest.fixture
def sync_service(transport, registry, subscriptions):
    return SyncService(transport, registry=registry, subscriptions=subscriptions)


@pytest.fixture
def app():
    """Create a fresh application for each test."""
    return create_app('testing')


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def socket_client(app):
    """Factory for Socket.IO test clients; all are disconnected on teardown."""
    clients = []

    def connect(user_id=None, platform='web', **auth):
        if user_id is not None:
            auth = dict(auth, userId=user_id, platform=platform)
        sio = app.socketio.test_client(app, auth=auth or None)
        clients.append(sio)
        return sio

    yield connect

    for sio in clients:
        if sio.is_connected():
            sio.disconnect()


@pytest.fixture
def user_headers():
    return {'X-User-Id': 'user-1'}

