"""Test notification dispatch."""
import pytest

from congregation.services.notification_service import NotificationKind, NotificationService

def test_log_backend_keeps_nothing():
    notifier = NotificationService.from_config({'NOTIFICATION_BACKEND': 'log'})

    for n in range(50):
        assert notifier.notify(n, NotificationKind.WELCOME, {'n': n}) is True

    assert notifier.sent() == []
    assert not hasattr(notifier, 'outbox')

def test_memory_backend_records_messages():
    notifier = NotificationService.from_config({'NOTIFICATION_BACKEND': 'memory'})

    notifier.notify(1, NotificationKind.WELCOME, {'qr_data': '{}'})
    notifier.notify(2, NotificationKind.FOLLOW_UP_ASSIGNED, {'follow_up_id': 9})

    assert [n.target_id for n in notifier.sent()] == [1, 2]
    assert [n.target_id for n in notifier.sent(NotificationKind.FOLLOW_UP_ASSIGNED)] == [2]
    assert notifier.sent()[0].to_dict()['kind'] == 'welcome'

def test_each_memory_notifier_has_its_own_outbox():
    first = NotificationService.from_config({'NOTIFICATION_BACKEND': 'memory'})
    second = NotificationService.from_config({'NOTIFICATION_BACKEND': 'memory'})

    first.notify(1, NotificationKind.WELCOME, {})

    assert len(first.sent()) == 1
    assert second.sent() == []

def test_failing_backend_is_swallowed():
    def broken(notification):
        raise ConnectionError('smtp down')

    notifier = NotificationService(broken)

    assert notifier.notify(1, NotificationKind.WELCOME, {}) is False

def test_unknown_backend():
    with pytest.raises(ValueError):
        NotificationService.from_config({'NOTIFICATION_BACKEND': 'pigeon'})
