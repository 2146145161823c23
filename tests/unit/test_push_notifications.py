"""
Unit tests for DeviceTokenStore and PushNotificationService.
"""
import pytest
from gameon_sync.push_notifications import (
    DeviceTokenStore,
    LoggingPushProvider,
    ProviderResponse,
    PushNotificationService,
    create_provider,
)
from shared.errors import InvalidPlatform


@pytest.fixture
def store():
    return DeviceTokenStore()


@pytest.fixture
def provider(mocker):
    mock = mocker.MagicMock()
    mock.send_multicast.side_effect = lambda tokens, notification, data: ProviderResponse(
        success_count=len(tokens), failure_count=0
    )
    return mock


@pytest.fixture
def push_service(store, provider):
    return PushNotificationService(store, provider)


class TestRegisterToken:
    """Tests for DeviceTokenStore.register_token."""

    def test_register(self, store):
        assert store.register_token("user-1", "tok1", "mobile") is True
        assert store.get_tokens("user-1") == {'web': [], 'mobile': ['tok1']}

    def test_duplicate_not_reinserted(self, store):
        """Registering the same token twice keeps one copy."""
        store.register_token("user-b", "tok1", "mobile")
        assert store.register_token("user-b", "tok1", "mobile") is False

        assert store.get_tokens("user-b")['mobile'] == ["tok1"]

    def test_capped_at_five_oldest_evicted(self, store):
        """A sixth token evicts the oldest one."""
        for i in range(1, 7):
            store.register_token("user-1", f"tok{i}", "web")

        tokens = store.get_tokens("user-1")['web']
        assert len(tokens) == 5
        assert "tok1" not in tokens
        assert tokens == ["tok2", "tok3", "tok4", "tok5", "tok6"]

    def test_platforms_capped_independently(self, store):
        for i in range(6):
            store.register_token("user-1", f"web{i}", "web")
        store.register_token("user-1", "mob0", "mobile")

        assert len(store.all_tokens("user-1")) == 6

    def test_custom_cap(self):
        store = DeviceTokenStore(max_per_platform=2)
        for i in range(4):
            store.register_token("user-1", f"tok{i}", "web")

        assert store.get_tokens("user-1")['web'] == ["tok2", "tok3"]

    def test_cap_must_be_positive(self):
        with pytest.raises(ValueError):
            DeviceTokenStore(max_per_platform=0)

    def test_invalid_platform(self, store):
        with pytest.raises(InvalidPlatform):
            store.register_token("user-1", "tok1", "fax")


class TestUnregisterToken:
    """Tests for DeviceTokenStore.unregister_token."""

    def test_removed_from_any_platform(self, store):
        """Caller need not know which platform the token was on."""
        store.register_token("user-1", "shared", "web")
        store.register_token("user-1", "shared", "mobile")
        store.register_token("user-1", "keep", "mobile")

        assert store.unregister_token("user-1", "shared") is True
        assert store.get_tokens("user-1") == {'web': [], 'mobile': ['keep']}

    def test_unknown_user(self, store):
        assert store.unregister_token("nobody", "tok") is False

    def test_empty_user_pruned(self, store):
        store.register_token("user-1", "tok1", "web")
        store.unregister_token("user-1", "tok1")

        assert store.stats()['total_users'] == 0


class TestSendToUser:
    """Tests for PushNotificationService.send_to_user."""

    def test_no_tokens(self, push_service, provider):
        """Users without tokens get a 'no tokens' result, not an error."""
        result = push_service.send_to_user("user-1", {'title': 'Hi', 'body': 'There'})

        assert result.success is False
        assert result.reason == 'no tokens'
        provider.send_multicast.assert_not_called()

    def test_sends_to_all_platforms(self, push_service, provider, store):
        store.register_token("user-1", "web-tok", "web")
        store.register_token("user-1", "mob-tok", "mobile")

        result = push_service.send_to_user("user-1", {'title': 'Hi', 'body': 'There'}, {'type': 'x'})

        assert result.success is True
        assert result.success_count == 2
        tokens, notification, data = provider.send_multicast.call_args[0]
        assert tokens == ["web-tok", "mob-tok"]
        assert notification['icon'] == '/logo192.png'
        assert data['userId'] == "user-1"
        assert data['type'] == 'x'

    def test_only_invalid_tokens_evicted(self, push_service, provider, store):
        """Partial failure evicts just the tokens the provider called invalid."""
        store.register_token("user-1", "good", "web")
        store.register_token("user-1", "bad", "web")
        store.register_token("user-1", "flaky", "mobile")
        provider.send_multicast.side_effect = None
        provider.send_multicast.return_value = ProviderResponse(
            success_count=1, failure_count=2, invalid_tokens=["bad"]
        )

        result = push_service.send_to_user("user-1", {'title': 't', 'body': 'b'})

        assert result.success is True
        assert result.failure_count == 2
        assert store.all_tokens("user-1") == ["good", "flaky"]

    def test_provider_exception_degrades(self, push_service, provider, store):
        """Provider failures come back as a result object."""
        store.register_token("user-1", "tok", "web")
        provider.send_multicast.side_effect = RuntimeError("FCM down")

        result = push_service.send_to_user("user-1", {'title': 't', 'body': 'b'})

        assert result.success is False
        assert result.error == "FCM down"
        assert store.all_tokens("user-1") == ["tok"]

    def test_disabled_service(self, store):
        service = PushNotificationService(store, provider=None)
        store.register_token("user-1", "tok", "web")

        result = service.send_to_user("user-1", {'title': 't', 'body': 'b'})
        assert result.success is False
        assert result.reason == 'service disabled'


class TestTemplates:
    """Tests for templated notifications."""

    def test_wallet_notification(self, push_service, provider, store):
        store.register_token("user-1", "tok", "web")
        push_service.send_wallet_notification("user-1", 'wallet_credited', {'amount': 100})

        _, notification, data = provider.send_multicast.call_args[0]
        assert notification['title'] == 'Wallet Credited'
        assert '100' in notification['body']
        assert data['type'] == 'wallet_credited'

    def test_unknown_wallet_kind_uses_fallback(self, push_service, provider, store):
        store.register_token("user-1", "tok", "web")
        push_service.send_wallet_notification("user-1", 'mystery')

        _, notification, _ = provider.send_multicast.call_args[0]
        assert notification['title'] == 'Wallet Update'

    def test_tournament_notification_to_many(self, push_service, store):
        store.register_token("user-1", "tok1", "web")
        store.register_token("user-2", "tok2", "mobile")

        summary = push_service.send_tournament_notification(
            "T1", ["user-1", "user-2", "user-3"], 'tournament_started', {'tournamentTitle': 'Cup'}
        )

        assert summary['success'] is True
        assert summary['success_count'] == 2
        assert summary['failure_count'] == 1
        assert summary['results']['user-3']['reason'] == 'no tokens'

    def test_missing_template_field_left_blank(self, push_service, provider, store):
        store.register_token("user-1", "tok", "web")
        push_service.send_tournament_notification("T1", ["user-1"], 'tournament_ending_soon', {})

        _, notification, _ = provider.send_multicast.call_args[0]
        assert notification['body'] == ' ends in '


class TestProviders:
    """Tests for provider construction."""

    def test_log_provider(self):
        provider = create_provider('log')
        assert isinstance(provider, LoggingPushProvider)
        assert provider.send_multicast(["a", "b"], {}, {}).success_count == 2

    def test_disabled(self):
        assert create_provider('disabled') is None

    def test_unknown_name_disables(self):
        assert create_provider('carrier-pigeon') is None

    def test_stats(self, push_service, store):
        store.register_token("user-1", "tok1", "web")
        store.register_token("user-1", "tok2", "mobile")

        stats = push_service.get_stats()
        assert stats['total_tokens'] == 2
        assert stats['is_enabled'] is True
