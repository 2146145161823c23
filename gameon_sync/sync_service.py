from datetime import timedelta
from threading import RLock
from typing import Any, Iterable, List, Optional, Union
import logging

from shared.errors import ScopeMismatch
from shared.events import (
    EventChannel,
    Platform,
    Scope,
    SyncEvent,
    isoformat,
    session_event,
    slot_sync_event,
    tournament_sync_event,
    user_sync_event,
    utc_now,
    wallet_sync_event,
)
from shared.transport import Transport, tournament_room
from .session_registry import Connection, SessionRegistry
from .subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)


class SyncService:
    """
    Cross-platform real-time sync.

    Tracks each user's live connections, keeps tournament broadcast groups in
    step with subscriptions and fans sync events out to the right connections.
    Delivery is fire-and-forget: a failed send to one connection is logged
    and dropped, never retried.

    All bookkeeping happens under one lock because Flask-SocketIO may run
    handlers on several threads. Sends happen outside of it.
    """

    def __init__(
        self,
        transport: Transport,
        registry: SessionRegistry = None,
        subscriptions: SubscriptionManager = None,
        auto_join_subscriptions: bool = False
    ):
        self.transport = transport
        self.registry = registry or SessionRegistry()
        self.subscriptions = subscriptions or SubscriptionManager()
        self.auto_join_subscriptions = auto_join_subscriptions
        self._lock = RLock()

    # ==================== Sessions ====================

    def register_connection(self, connection_id: str, user_id: str, platform=Platform.WEB) -> Connection:
        """
        Register a connection and tell the user's other sessions about it.

        A connection id that already belonged to another user is taken away
        from that user first: it leaves their tournament groups and their
        remaining sessions see it disconnect.
        """
        with self._lock:
            previous = self.registry.get(connection_id)
            connection, first = self.registry.register(connection_id, user_id, platform)
            topics = self.subscriptions.get_user_subscriptions(user_id) if self.auto_join_subscriptions else []
            moved_from = previous if previous is not None and previous.user_id != user_id else None
            stale_topics = self.subscriptions.get_user_subscriptions(moved_from.user_id) if moved_from else []

        if moved_from is not None:
            logger.info(f"Connection {connection_id} moved from user {moved_from.user_id} to {user_id}")
            for tournament_id in stale_topics:
                self._leave(connection_id, tournament_room(tournament_id))
            self.publish(session_event(
                EventChannel.USER_SESSION_DISCONNECTED,
                moved_from.user_id,
                connection_id,
                moved_from.platform
            ))

        if first:
            logger.info(f"User {user_id} is now online")

        for tournament_id in topics:
            self._join(connection_id, tournament_room(tournament_id))

        self.publish(
            session_event(EventChannel.USER_SESSION_CONNECTED, user_id, connection_id, connection.platform),
            exclude_connection=connection_id
        )
        return connection

    def unregister_connection(self, connection_id: str) -> Optional[Connection]:
        """Drop a connection. Unknown ids are ignored."""
        with self._lock:
            detached = self._detach(connection_id)
        if detached is None:
            logger.debug(f"Ignoring unregister for unknown connection {connection_id}")
            return None
        return self._announce_detached(*detached)

    def _detach(self, connection_id: str):
        """Remove a connection from the registry. Caller holds the lock."""
        connection = self.registry.unregister(connection_id)
        if connection is None:
            return None
        topics = self.subscriptions.get_user_subscriptions(connection.user_id)
        still_online = self.registry.is_online(connection.user_id)
        return connection, topics, still_online

    def _announce_detached(self, connection: Connection, topics: List[str], still_online: bool) -> Connection:
        for tournament_id in topics:
            self._leave(connection.connection_id, tournament_room(tournament_id))

        if not still_online:
            logger.info(f"User {connection.user_id} is now offline")

        self.publish(session_event(
            EventChannel.USER_SESSION_DISCONNECTED,
            connection.user_id,
            connection.connection_id,
            connection.platform
        ))
        return connection

    def touch(self, connection_id: str) -> bool:
        with self._lock:
            return self.registry.touch(connection_id)

    def sweep_idle(self, timeout: Union[timedelta, int, float]) -> List[str]:
        """
        Unregister every connection idle for at least `timeout`.
        Returns the ids that were removed.
        """
        if not isinstance(timeout, timedelta):
            timeout = timedelta(seconds=timeout)

        with self._lock:
            stale = self.registry.idle_connections(timeout)

        removed = []
        for connection_id in stale:
            with self._lock:
                # a heartbeat may have arrived since the scan
                connection = self.registry.get(connection_id)
                if connection is None or connection.idle_for(self.registry.clock()) < timeout:
                    continue
                detached = self._detach(connection_id)

            logger.info(f"Cleaning up inactive connection: {connection_id}")
            self._announce_detached(*detached)
            removed.append(connection_id)
        return removed

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self.registry.get(connection_id)

    def get_user_connections(self, user_id: str) -> List[str]:
        with self._lock:
            return self.registry.connections_for(user_id)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return self.registry.is_online(user_id)

    def active_platforms(self, user_id: str) -> List[str]:
        with self._lock:
            return self.registry.active_platforms(user_id)

    def user_sessions(self, user_id: str) -> List[dict]:
        with self._lock:
            return [
                self.registry.get(cid).to_dict()
                for cid in self.registry.connections_for(user_id)
                if self.registry.get(cid) is not None
            ]

    # ==================== Subscriptions ====================

    def subscribe(self, user_id: str, tournament_id: str) -> bool:
        """
        Subscribe a user and join every connection they have open right now
        to the tournament's broadcast group.
        """
        with self._lock:
            added = self.subscriptions.subscribe(user_id, tournament_id)
            connections = self.registry.connections_for(user_id)

        room = tournament_room(tournament_id)
        for connection_id in connections:
            self._join(connection_id, room)
        return added

    def unsubscribe(self, user_id: str, tournament_id: str) -> bool:
        with self._lock:
            removed = self.subscriptions.unsubscribe(user_id, tournament_id)
            connections = self.registry.connections_for(user_id)

        room = tournament_room(tournament_id)
        for connection_id in connections:
            self._leave(connection_id, room)
        return removed

    # ==================== Fan-out ====================

    def publish(self, event: SyncEvent, exclude_connection: Optional[str] = None) -> str:
        """Deliver an already-built event according to its channel's scope."""
        if event.scope is Scope.TOPIC:
            self.transport.broadcast(tournament_room(event.scope_id), event.channel.value, event.to_dict())
            logger.info(f"Tournament {event.scope_id} {event.channel.value}: {event.type}")
            return event.sync_id

        with self._lock:
            targets = [
                cid for cid in self.registry.connections_for(event.scope_id)
                if cid != exclude_connection
            ]
        delivered = self._deliver(targets, event)
        logger.info(
            f"User {event.scope_id} {event.channel.value}: {event.type} "
            f"({delivered}/{len(targets)} connections)"
        )
        return event.sync_id

    def publish_to_user(
        self,
        user_id: str,
        channel: EventChannel,
        update_type: str,
        data: Any = None,
        exclude_connection: Optional[str] = None
    ) -> str:
        channel = EventChannel(channel)
        if channel.scope is not Scope.USER:
            raise ScopeMismatch(channel.value, Scope.USER.value)

        if channel is EventChannel.WALLET_SYNC:
            event = wallet_sync_event(user_id, update_type, data)
        else:
            event = SyncEvent(channel, update_type, user_id, data)
        return self.publish(event, exclude_connection=exclude_connection)

    def publish_to_topic(
        self,
        tournament_id: str,
        channel: EventChannel,
        update_type: str,
        data: Any = None
    ) -> str:
        channel = EventChannel(channel)
        if channel.scope is not Scope.TOPIC:
            raise ScopeMismatch(channel.value, Scope.TOPIC.value)

        return self.publish(SyncEvent(channel, update_type, tournament_id, data))

    def sync_tournament_update(self, tournament_id: str, update_type: str, data: dict = None) -> str:
        return self.publish(tournament_sync_event(tournament_id, update_type, data))

    def sync_slot_update(self, tournament_id: str, update_type: str, data: dict = None) -> str:
        return self.publish(slot_sync_event(tournament_id, update_type, data))

    def sync_user_update(self, user_id: str, update_type: str, data: dict = None) -> str:
        return self.publish(user_sync_event(user_id, update_type, data))

    def sync_wallet_update(self, user_id: str, update_type: str, data: dict = None) -> str:
        return self.publish(wallet_sync_event(user_id, update_type, data))

    def _deliver(self, connection_ids: Iterable[str], event: SyncEvent) -> int:
        payload = event.to_dict()
        delivered = 0
        for connection_id in connection_ids:
            try:
                self.transport.send(connection_id, event.channel.value, payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropped {event.channel.value} {event.sync_id} for {connection_id}: {e}")
        return delivered

    def _join(self, connection_id: str, room: str):
        try:
            self.transport.join(connection_id, room)
        except Exception as e:
            logger.warning(f"Could not join {connection_id} to {room}: {e}")

    def _leave(self, connection_id: str, room: str):
        try:
            self.transport.leave(connection_id, room)
        except Exception as e:
            logger.warning(f"Could not remove {connection_id} from {room}: {e}")

    # ==================== Stats ====================

    def get_stats(self) -> dict:
        with self._lock:
            stats = self.registry.stats()
            stats.update(self.subscriptions.stats())
        stats['timestamp'] = isoformat(utc_now())
        return stats
