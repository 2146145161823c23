from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple
import logging

from shared.events import Platform, isoformat, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    connection_id: str
    user_id: str
    platform: Platform
    connected_at: datetime
    last_seen: datetime

    def idle_for(self, now: datetime) -> timedelta:
        return now - self.last_seen

    def to_dict(self) -> dict:
        return {
            'connection_id': self.connection_id,
            'user_id': self.user_id,
            'platform': self.platform.value,
            'connected_at': isoformat(self.connected_at),
            'last_seen': isoformat(self.last_seen),
        }


class SessionRegistry:
    """
    Maps connection ids to the user and platform that own them.

    A user is online while at least one connection is registered; the
    per-user session set is deleted as soon as it becomes empty.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self._connections: Dict[str, Connection] = {}
        self._sessions: Dict[str, Set[str]] = {}

    def register(self, connection_id: str, user_id: str, platform=Platform.WEB) -> Tuple[Connection, bool]:
        """
        Register a connection for a user.

        Returns:
            (connection, first) where `first` is True when the user was
            offline before this call.
        """
        platform = Platform.parse(platform)

        existing = self._connections.get(connection_id)
        if existing and existing.user_id != user_id:
            self._discard_session(existing.user_id, connection_id)

        first = not self.is_online(user_id)
        now = self.clock()
        connection = Connection(
            connection_id=connection_id,
            user_id=user_id,
            platform=platform,
            connected_at=existing.connected_at if existing and existing.user_id == user_id else now,
            last_seen=now
        )
        self._connections[connection_id] = connection
        self._sessions.setdefault(user_id, set()).add(connection_id)

        logger.info(f"User {user_id} connected on {platform.value} (connection {connection_id})")
        return connection, first

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove a connection. Unknown ids are ignored and return None."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        self._discard_session(connection.user_id, connection_id)
        logger.info(
            f"User {connection.user_id} disconnected from {connection.platform.value} "
            f"(connection {connection_id})"
        )
        return connection

    def _discard_session(self, user_id: str, connection_id: str):
        sessions = self._sessions.get(user_id)
        if sessions is None:
            return
        sessions.discard(connection_id)
        if not sessions:
            del self._sessions[user_id]

    def touch(self, connection_id: str) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        connection.last_seen = self.clock()
        return True

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections_for(self, user_id: str) -> List[str]:
        return list(self._sessions.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._sessions.get(user_id))

    def active_platforms(self, user_id: str) -> List[str]:
        platforms = {
            self._connections[cid].platform.value
            for cid in self._sessions.get(user_id, ())
            if cid in self._connections
        }
        return sorted(platforms)

    def idle_connections(self, timeout: timedelta, now: Optional[datetime] = None) -> List[str]:
        """Connection ids whose last activity is at least `timeout` old."""
        now = now or self.clock()
        return [
            cid for cid, connection in self._connections.items()
            if connection.idle_for(now) >= timeout
        ]

    def user_count(self) -> int:
        return len(self._sessions)

    def connection_count(self) -> int:
        return len(self._connections)

    def stats(self) -> dict:
        platform_stats: Dict[str, int] = {}
        for connection in self._connections.values():
            key = connection.platform.value
            platform_stats[key] = platform_stats.get(key, 0) + 1

        return {
            'total_users': self.user_count(),
            'total_connections': self.connection_count(),
            'platform_stats': platform_stats,
        }
