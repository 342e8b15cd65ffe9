"""Tests for the notification dedup state machine and dispatcher."""

from conftest import FakeNotifier, entry

from unbind.errors import CapabilityUnavailable
from unbind.notifications import (
    NotificationDedup,
    NotificationDispatcher,
    PortState,
    build_notification,
)

FAVORITES = {3000: "API"}


def primed(*ports):
    """A dedup machine whose baseline scan saw ``ports``."""
    dedup = NotificationDedup()
    assert dedup.observe([entry(p) for p in ports], FAVORITES) == []
    return dedup


def test_baseline_scan_never_notifies():
    dedup = NotificationDedup()

    notifications = dedup.observe([entry(3000, pid=10)], FAVORITES)

    assert notifications == []
    assert dedup.baseline_taken
    assert dedup.state_of(3000) is PortState.PRESENT_NOTIFIED


def test_baseline_with_no_ports_still_counts():
    dedup = NotificationDedup()
    dedup.observe([], FAVORITES)

    notifications = dedup.observe([entry(3000, pid=10)], FAVORITES)

    assert [n.port for n in notifications] == [3000]


def test_favorite_appearing_after_baseline_notifies_once():
    dedup = primed()

    first = dedup.observe([entry(3000, pid=10, name="node")], FAVORITES)
    again = dedup.observe([entry(3000, pid=10, name="node")], FAVORITES)

    assert len(first) == 1
    assert first[0].title == "Favorite port :3000 is now in use"
    assert "API" in first[0].body
    assert "node" in first[0].body
    assert "10" in first[0].body
    assert again == []
    assert dedup.state_of(3000) is PortState.PRESENT_NOTIFIED


def test_port_notifies_again_after_being_free():
    dedup = primed()

    present = dedup.observe([entry(3000)], FAVORITES)
    absent = dedup.observe([], FAVORITES)
    back = dedup.observe([entry(3000)], FAVORITES)

    assert len(present) == 1
    assert absent == []
    assert len(back) == 1


def test_absent_port_leaves_marker_set():
    dedup = primed()
    dedup.observe([entry(3000)], FAVORITES)

    dedup.observe([entry(8080)], FAVORITES)

    assert dedup.state_of(3000) is PortState.ABSENT
    assert dedup.notified_ports() == frozenset()


def test_non_favorite_ports_are_not_tracked():
    dedup = primed()

    notifications = dedup.observe([entry(8080), entry(9090)], FAVORITES)

    assert notifications == []
    assert dedup.notified_ports() == frozenset()


def test_baseline_marks_every_present_port():
    dedup = primed(3000, 8080)
    assert dedup.notified_ports() == frozenset({3000, 8080})


def test_port_present_at_baseline_stays_quiet_when_favorited():
    dedup = primed(8080)

    assert dedup.observe([entry(8080)], {8080: "Proxy"}) == []
    assert dedup.state_of(8080) is PortState.PRESENT_NOTIFIED


def test_rebinding_under_new_pid_does_not_renotify():
    dedup = primed()
    dedup.observe([entry(3000, pid=10)], FAVORITES)

    assert dedup.observe([entry(3000, pid=11)], FAVORITES) == []


def test_favoriting_a_port_occupied_after_baseline_notifies_once():
    dedup = primed()
    assert dedup.observe([entry(3000)], {}) == []

    notifications = dedup.observe([entry(3000)], FAVORITES)
    again = dedup.observe([entry(3000)], FAVORITES)

    assert [n.port for n in notifications] == [3000]
    assert again == []


def test_port_listed_twice_notifies_once_with_first_entry():
    dedup = primed()

    notifications = dedup.observe(
        [entry(3000, pid=10, name="node"), entry(3000, pid=11, name="deno")], FAVORITES
    )

    assert len(notifications) == 1
    assert "PID 10" in notifications[0].body


def test_reset_makes_next_scan_a_baseline():
    dedup = primed()
    dedup.reset()

    assert dedup.observe([entry(3000)], FAVORITES) == []


def test_build_notification_payload():
    notification = build_notification(entry(3000, pid=10, name="node"), "API")

    assert notification.port == 3000
    assert notification.title == "Favorite port :3000 is now in use"
    assert notification.body == "API\nProcess: node (PID 10)"


class TestDispatcher:
    """Tests for NotificationDispatcher."""

    def test_dispatches_when_granted(self):
        notifier = FakeNotifier(granted=True)
        dispatcher = NotificationDispatcher(notifier)

        assert dispatcher.dispatch(build_notification(entry(3000), "API"))
        assert notifier.dispatched == [
            ("Favorite port :3000 is now in use", "API\nProcess: node (PID 100)")
        ]
        assert notifier.requests == 0

    def test_requests_grant_once(self):
        notifier = FakeNotifier(granted=False, grant_on_request=True)
        dispatcher = NotificationDispatcher(notifier)

        assert dispatcher.dispatch(build_notification(entry(3000), "API"))
        assert notifier.requests == 1
        assert len(notifier.dispatched) == 1

    def test_denied_grant_skips_delivery(self):
        notifier = FakeNotifier(granted=False, grant_on_request=False)
        dispatcher = NotificationDispatcher(notifier)

        assert not dispatcher.dispatch(build_notification(entry(3000), "API"))
        assert notifier.dispatched == []

    def test_capability_errors_are_swallowed(self):
        notifier = FakeNotifier()
        notifier.error = CapabilityUnavailable("no notification daemon")
        dispatcher = NotificationDispatcher(notifier)

        assert not dispatcher.dispatch(build_notification(entry(3000), "API"))

    def test_unexpected_errors_are_swallowed(self):
        notifier = FakeNotifier()
        notifier.error = RuntimeError("boom")
        dispatcher = NotificationDispatcher(notifier)

        assert not dispatcher.dispatch(build_notification(entry(3000), "API"))
