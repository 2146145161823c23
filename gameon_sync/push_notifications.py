from dataclasses import dataclass, field, asdict
from threading import Lock
from typing import Dict, Iterable, List, Optional
import logging

from shared.events import Platform, isoformat, utc_now

logger = logging.getLogger(__name__)

MAX_TOKENS_PER_PLATFORM = 5


@dataclass
class PushResult:
    success: bool
    reason: Optional[str] = None
    success_count: int = 0
    failure_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ProviderResponse:
    success_count: int
    failure_count: int
    invalid_tokens: List[str] = field(default_factory=list)


class DeviceTokenStore:
    """Push tokens per user and platform, newest last."""

    def __init__(self, max_per_platform: int = MAX_TOKENS_PER_PLATFORM):
        if max_per_platform < 1:
            raise ValueError(f"max_per_platform must be at least 1, got {max_per_platform}")
        self.max_per_platform = max_per_platform
        self._tokens: Dict[str, Dict[str, List[str]]] = {}
        self._lock = Lock()

    def register_token(self, user_id: str, token: str, platform=Platform.WEB) -> bool:
        """
        Add a token for a user. Duplicates are ignored; only the newest
        `max_per_platform` tokens of a platform are kept.
        """
        platform = Platform.parse(platform)
        with self._lock:
            user_tokens = self._tokens.setdefault(user_id, {p.value: [] for p in Platform})
            tokens = user_tokens[platform.value]
            if token in tokens:
                return False

            tokens.append(token)
            if len(tokens) > self.max_per_platform:
                del tokens[:-self.max_per_platform]

        logger.info(f"Registered {platform.value} token for user {user_id}")
        return True

    def unregister_token(self, user_id: str, token: str) -> bool:
        return self.remove_tokens(user_id, [token]) > 0

    def remove_tokens(self, user_id: str, tokens: Iterable[str]) -> int:
        """Remove tokens from every platform list of a user."""
        doomed = set(tokens)
        with self._lock:
            user_tokens = self._tokens.get(user_id)
            if user_tokens is None:
                return 0

            removed = 0
            for platform, current in user_tokens.items():
                kept = [t for t in current if t not in doomed]
                removed += len(current) - len(kept)
                user_tokens[platform] = kept

            if not any(user_tokens.values()):
                del self._tokens[user_id]

        if removed:
            logger.info(f"Removed {removed} token(s) for user {user_id}")
        return removed

    def get_tokens(self, user_id: str) -> Dict[str, List[str]]:
        with self._lock:
            user_tokens = self._tokens.get(user_id)
            if user_tokens is None:
                return {p.value: [] for p in Platform}
            return {platform: list(tokens) for platform, tokens in user_tokens.items()}

    def all_tokens(self, user_id: str) -> List[str]:
        tokens = self.get_tokens(user_id)
        return tokens[Platform.WEB.value] + tokens[Platform.MOBILE.value]

    def stats(self) -> dict:
        with self._lock:
            web = sum(len(t[Platform.WEB.value]) for t in self._tokens.values())
            mobile = sum(len(t[Platform.MOBILE.value]) for t in self._tokens.values())
            users = len(self._tokens)

        return {
            'total_users': users,
            'total_web_tokens': web,
            'total_mobile_tokens': mobile,
            'total_tokens': web + mobile,
        }


class LoggingPushProvider:
    """Logs the message instead of sending it. Every token counts as delivered."""

    def send_multicast(self, tokens: List[str], notification: dict, data: dict) -> ProviderResponse:
        logger.info(f"Would send notification to {len(tokens)} device(s): {notification} {data}")
        return ProviderResponse(success_count=len(tokens), failure_count=0)


class FirebasePushProvider:
    """Delivers through Firebase Cloud Messaging."""

    def __init__(self, credentials_path: str = None):
        import firebase_admin
        from firebase_admin import credentials

        try:
            self.app = firebase_admin.get_app()
        except ValueError:
            cred = credentials.Certificate(credentials_path) if credentials_path else None
            self.app = firebase_admin.initialize_app(cred)
        logger.info("Firebase push provider initialized")

    def send_multicast(self, tokens: List[str], notification: dict, data: dict) -> ProviderResponse:
        from firebase_admin import exceptions, messaging

        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(
                title=notification.get('title'),
                body=notification.get('body'),
            ),
            webpush=messaging.WebpushConfig(
                notification=messaging.WebpushNotification(icon=notification.get('icon'))
            ),
            # FCM data values must be strings
            data={key: str(value) for key, value in data.items() if value is not None},
        )
        response = messaging.send_each_for_multicast(message, app=self.app)

        invalid = []
        for token, result in zip(tokens, response.responses):
            if result.success:
                continue
            if isinstance(result.exception, (
                messaging.UnregisteredError,
                messaging.SenderIdMismatchError,
                exceptions.InvalidArgumentError,
            )):
                invalid.append(token)
            else:
                logger.warning(f"Push to {token[:12]}... failed: {result.exception}")

        return ProviderResponse(
            success_count=response.success_count,
            failure_count=response.failure_count,
            invalid_tokens=invalid
        )


def create_provider(name: str, credentials_path: str = None):
    """Build the push provider named in config. Returns None when disabled."""
    name = (name or 'disabled').lower()
    if name == 'log':
        return LoggingPushProvider()
    if name == 'firebase':
        try:
            return FirebasePushProvider(credentials_path)
        except Exception as e:
            logger.error(f"Failed to initialize Firebase push provider: {e}")
            return None
    if name != 'disabled':
        logger.warning(f"Unknown push provider {name!r}, push notifications disabled")
    return None


TOURNAMENT_TEMPLATES = {
    'tournament_started': ('Tournament Started!', '{tournamentTitle} has begun. Join now!', '/tournament-icon.png'),
    'tournament_ending_soon': ('Tournament Ending Soon', '{tournamentTitle} ends in {timeLeft}', '/warning-icon.png'),
    'slot_available': ('Slot Available', 'A slot opened in {tournamentTitle}', '/slot-icon.png'),
    'tournament_result': ('Tournament Results', 'Results for {tournamentTitle} are out!', '/trophy-icon.png'),
    'payment_received': ('Payment Received', 'You received ₹{amount} for {tournamentTitle}', '/money-icon.png'),
}

WALLET_TEMPLATES = {
    'wallet_credited': ('Wallet Credited', '₹{amount} added to your wallet', '/wallet-icon.png'),
    'wallet_debited': ('Wallet Debited', '₹{amount} deducted from your wallet', '/wallet-icon.png'),
    'low_balance': ('Low Wallet Balance', 'Your wallet balance is ₹{balance}. Recharge now!', '/warning-icon.png'),
    'payment_failed': ('Payment Failed', 'Your payment could not be processed. Please try again.', '/error-icon.png'),
}


class _Blank(dict):
    def __missing__(self, key):
        return ''


def render_notification(templates: dict, kind: str, data: dict, fallback: tuple) -> dict:
    title, body, icon = templates.get(kind, fallback)
    return {'title': title, 'body': body.format_map(_Blank(data)), 'icon': icon}


class PushNotificationService:
    """
    Best-effort push notifications for web and mobile devices.

    Nothing here raises to the caller: a missing token, a disabled provider
    or a provider failure all come back as a PushResult with success=False.
    """

    def __init__(self, store: DeviceTokenStore = None, provider=None, default_icon: str = '/logo192.png'):
        self.store = store or DeviceTokenStore()
        self.provider = provider
        self.default_icon = default_icon

    @property
    def is_enabled(self) -> bool:
        return self.provider is not None

    def register_device_token(self, user_id: str, token: str, platform=Platform.WEB) -> bool:
        return self.store.register_token(user_id, token, platform)

    def unregister_device_token(self, user_id: str, token: str) -> bool:
        return self.store.unregister_token(user_id, token)

    def send_to_user(self, user_id: str, notification: dict, data: dict = None) -> PushResult:
        if not self.is_enabled:
            logger.info(f"Push disabled, notification for user {user_id} not sent: {notification}")
            return PushResult(success=False, reason='service disabled')

        tokens = self.store.all_tokens(user_id)
        if not tokens:
            logger.info(f"No active tokens for user {user_id}")
            return PushResult(success=False, reason='no tokens')

        notification = dict(notification)
        notification.setdefault('icon', self.default_icon)
        payload = dict(data or {})
        payload['userId'] = str(user_id)
        payload['timestamp'] = isoformat(utc_now())

        try:
            response = self.provider.send_multicast(tokens, notification, payload)
        except Exception as e:
            logger.error(f"Failed to send notification to user {user_id}: {e}")
            return PushResult(success=False, reason='provider error', failure_count=len(tokens), error=str(e))

        if response.invalid_tokens:
            self.store.remove_tokens(user_id, response.invalid_tokens)

        logger.info(
            f"Sent notification to user {user_id}: "
            f"{response.success_count}/{len(tokens)} successful"
        )
        return PushResult(
            success=response.success_count > 0,
            success_count=response.success_count,
            failure_count=response.failure_count
        )

    def send_to_users(self, user_ids: Iterable[str], notification: dict, data: dict = None) -> dict:
        results = {user_id: self.send_to_user(user_id, notification, data) for user_id in user_ids}
        success_count = sum(1 for r in results.values() if r.success)
        logger.info(f"Bulk notification sent: {success_count}/{len(results)} successful")

        return {
            'success': success_count > 0,
            'success_count': success_count,
            'failure_count': len(results) - success_count,
            'results': {user_id: r.to_dict() for user_id, r in results.items()},
        }

    def send_tournament_notification(self, tournament_id: str, user_ids: Iterable[str],
                                     kind: str, data: dict = None) -> dict:
        data = dict(data or {})
        notification = render_notification(
            TOURNAMENT_TEMPLATES, kind, data,
            ('GameOn Update', 'You have a new update', self.default_icon)
        )
        return self.send_to_users(user_ids, notification, {'type': kind, 'tournamentId': tournament_id, **data})

    def send_wallet_notification(self, user_id: str, kind: str, data: dict = None) -> PushResult:
        data = dict(data or {})
        notification = render_notification(
            WALLET_TEMPLATES, kind, data,
            ('Wallet Update', 'Your wallet has been updated', '/wallet-icon.png')
        )
        return self.send_to_user(user_id, notification, {'type': kind, **data})

    def send_system_notification(self, user_ids: Iterable[str], message: str, data: dict = None) -> dict:
        notification = {'title': 'GameOn System', 'body': message, 'icon': self.default_icon}
        return self.send_to_users(user_ids, notification, {'type': 'system', **(data or {})})

    def test_notification(self, user_id: str) -> PushResult:
        return self.send_to_user(
            user_id,
            {'title': 'Test Notification', 'body': 'This is a test notification from GameOn!'},
            {'type': 'test'}
        )

    def get_stats(self) -> dict:
        stats = self.store.stats()
        stats['is_enabled'] = self.is_enabled
        stats['timestamp'] = isoformat(utc_now())
        return stats
