from typing import Dict, List, Set
import logging

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """
    Manages user subscriptions to tournaments.
    Keeps both directions indexed; empty sets are pruned immediately.
    """

    def __init__(self):
        self._subscribers: Dict[str, Set[str]] = {}
        self._subscriptions: Dict[str, Set[str]] = {}

    def subscribe(self, user_id: str, tournament_id: str) -> bool:
        """Subscribe a user to a tournament. Returns False if already subscribed."""
        subscribers = self._subscribers.setdefault(tournament_id, set())
        if user_id in subscribers:
            return False

        subscribers.add(user_id)
        self._subscriptions.setdefault(user_id, set()).add(tournament_id)
        logger.info(f"User {user_id} subscribed to tournament {tournament_id}")
        return True

    def unsubscribe(self, user_id: str, tournament_id: str) -> bool:
        """Unsubscribe a user from a tournament. Returns False if not subscribed."""
        subscribers = self._subscribers.get(tournament_id)
        if not subscribers or user_id not in subscribers:
            return False

        subscribers.discard(user_id)
        if not subscribers:
            del self._subscribers[tournament_id]

        tournaments = self._subscriptions.get(user_id)
        if tournaments is not None:
            tournaments.discard(tournament_id)
            if not tournaments:
                del self._subscriptions[user_id]

        logger.info(f"User {user_id} unsubscribed from tournament {tournament_id}")
        return True

    def get_user_subscriptions(self, user_id: str) -> List[str]:
        """Get all tournament IDs a user is subscribed to."""
        return sorted(self._subscriptions.get(user_id, ()))

    def get_tournament_subscribers(self, tournament_id: str) -> List[str]:
        """Get all user IDs subscribed to a tournament."""
        return sorted(self._subscribers.get(tournament_id, ()))

    def is_subscribed(self, user_id: str, tournament_id: str) -> bool:
        return user_id in self._subscribers.get(tournament_id, ())

    def topic_count(self) -> int:
        return len(self._subscribers)

    def stats(self) -> dict:
        return {
            'total_tournaments': self.topic_count(),
            'total_subscriptions': sum(len(s) for s in self._subscribers.values()),
        }
