from enum import Enum
from dataclasses import dataclass, field
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Optional, Any
import copy
import json
import time
import uuid

from .errors import InvalidPlatform


class Platform(str, Enum):
    WEB = "web"
    MOBILE = "mobile"

    @classmethod
    def parse(cls, value) -> "Platform":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.WEB
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidPlatform(value) from None


class Scope(str, Enum):
    USER = "user"
    TOPIC = "topic"


class EventChannel(str, Enum):
    # Tournament-scoped, delivered through the tournament broadcast group
    TOURNAMENT_SYNC = "tournament_sync"
    SLOT_SYNC = "slot_sync"

    # User-scoped, delivered to each of the user's connections
    USER_SYNC = "user_sync"
    WALLET_SYNC = "wallet_sync"

    # Multi-device awareness
    USER_SESSION_CONNECTED = "user_session_connected"
    USER_SESSION_DISCONNECTED = "user_session_disconnected"

    @property
    def scope(self) -> Scope:
        if self in (EventChannel.TOURNAMENT_SYNC, EventChannel.SLOT_SYNC):
            return Scope.TOPIC
        return Scope.USER

    @property
    def scope_key(self) -> str:
        return "tournamentId" if self.scope is Scope.TOPIC else "userId"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_sync_id() -> str:
    """Unique id clients use to drop duplicate deliveries."""
    return f"sync_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class SyncEvent:
    channel: EventChannel
    type: str
    scope_id: str
    data: Any = field(default_factory=dict)
    timestamp: str = None
    sync_id: str = None

    def __post_init__(self):
        # frozen dataclass: defaults have to be filled through object.__setattr__
        data = {} if self.data is None else copy.deepcopy(self.data)
        object.__setattr__(self, "data", data)
        if self.timestamp is None:
            object.__setattr__(self, "timestamp", isoformat(utc_now()))
        if self.sync_id is None:
            object.__setattr__(self, "sync_id", generate_sync_id())

    @property
    def scope(self) -> Scope:
        return self.channel.scope

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            self.channel.scope_key: self.scope_id,
            "data": self.data,
            "timestamp": self.timestamp,
            "syncId": self.sync_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, channel, data: dict) -> "SyncEvent":
        channel = EventChannel(channel)
        return cls(
            channel=channel,
            type=data["type"],
            scope_id=data[channel.scope_key],
            data=data.get("data", {}),
            timestamp=data.get("timestamp"),
            sync_id=data.get("syncId"),
        )


def tournament_sync_event(tournament_id: str, update_type: str, data: Any = None) -> SyncEvent:
    return SyncEvent(EventChannel.TOURNAMENT_SYNC, update_type, tournament_id, data)


def slot_sync_event(tournament_id: str, update_type: str, data: Any = None) -> SyncEvent:
    return SyncEvent(EventChannel.SLOT_SYNC, update_type, tournament_id, data)


def user_sync_event(user_id: str, update_type: str, data: Any = None) -> SyncEvent:
    return SyncEvent(EventChannel.USER_SYNC, update_type, user_id, data)


def wallet_payload(data: Any) -> Any:
    """
    Wallet updates carry `balance` and `transaction` keys. Payloads that are
    not mappings are passed through untouched.
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        return data
    data = dict(data)
    data["balance"] = data.get("newBalance") or data.get("balance")
    data["transaction"] = data.get("transaction")
    return data


def wallet_sync_event(user_id: str, update_type: str, data: Any = None) -> SyncEvent:
    return SyncEvent(EventChannel.WALLET_SYNC, update_type, user_id, wallet_payload(data))


def session_event(channel: EventChannel, user_id: str, connection_id: str,
                  platform: Any) -> SyncEvent:
    platform = platform.value if isinstance(platform, Platform) else platform
    update_type = "session_connected" if channel is EventChannel.USER_SESSION_CONNECTED else "session_disconnected"
    return SyncEvent(
        channel,
        update_type,
        user_id,
        {
            "platform": platform,
            "connectionId": connection_id,
            "timestamp": isoformat(utc_now()),
        },
    )
