import logging

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "/"


def tournament_room(tournament_id: str) -> str:
    return f"tournament_{tournament_id}"


class Transport:
    """
    The real-time channel the sync layer delivers through.

    Implementations send a named event to one connection or to a broadcast
    group, and manage group membership of individual connections.
    """

    def send(self, connection_id: str, event: str, payload: dict):
        raise NotImplementedError

    def broadcast(self, room: str, event: str, payload: dict):
        raise NotImplementedError

    def join(self, connection_id: str, room: str):
        raise NotImplementedError

    def leave(self, connection_id: str, room: str):
        raise NotImplementedError


class SocketIOTransport(Transport):
    """Transport backed by a Flask-SocketIO server."""

    def __init__(self, socketio, namespace: str = DEFAULT_NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def send(self, connection_id: str, event: str, payload: dict):
        self.socketio.emit(event, payload, to=connection_id, namespace=self.namespace)

    def broadcast(self, room: str, event: str, payload: dict):
        self.socketio.emit(event, payload, to=room, namespace=self.namespace)

    def join(self, connection_id: str, room: str):
        self.socketio.server.enter_room(connection_id, room, namespace=self.namespace)
        logger.debug(f"Connection {connection_id} joined {room}")

    def leave(self, connection_id: str, room: str):
        self.socketio.server.leave_room(connection_id, room, namespace=self.namespace)
        logger.debug(f"Connection {connection_id} left {room}")
