"""
Tests for the broadcast coordinator.

Tests cover:
1. Snapshot-on-join
2. Role and team addressing
3. Slow subscriber handling
"""

import pytest

from draft_auction.auction.broadcast import (
    ADMIN_GROUP,
    BID_ACCEPTED,
    REJECTED,
    STATE_SNAPSHOT,
    TEAM_UPDATED,
    TEAMS_GROUP,
    BroadcastCoordinator,
    team_group,
)
from draft_auction.auction.errors import ValidationError

from helpers import drain


# =============================================================================
# Fixtures
# =============================================================================


class SnapshotSource:
    """Stands in for the state machine's committed snapshot."""

    def __init__(self):
        self.version = 1

    def __call__(self) -> dict:
        return {'status': 'not_started', 'version': self.version}


@pytest.fixture
def source():
    return SnapshotSource()


@pytest.fixture
def coordinator(source):
    return BroadcastCoordinator(source, queue_size=8)


# =============================================================================
# Membership
# =============================================================================


class TestJoin:
    """Subscribers always start from the current state."""

    def test_snapshot_is_first_message(self, coordinator, source):
        source.version = 7
        subscriber = coordinator.join('spectator')

        messages = drain(subscriber)
        assert len(messages) == 1
        assert messages[0]['event'] == STATE_SNAPSHOT
        assert messages[0]['version'] == 7
        assert messages[0]['payload']['auction_state']['version'] == 7

    def test_unknown_role(self, coordinator):
        with pytest.raises(ValidationError) as exc:
            coordinator.join('auctioneer')
        assert exc.value.code == 'UnknownRole'

    def test_team_requires_id(self, coordinator):
        with pytest.raises(ValidationError) as exc:
            coordinator.join('team')
        assert exc.value.code == 'MissingTeam'

    def test_groups(self, coordinator):
        admin = coordinator.join('admin')
        team = coordinator.join('team', team_id=2)

        assert admin.groups == [ADMIN_GROUP]
        assert team.groups == [TEAMS_GROUP, team_group('2')]
        assert coordinator.subscriber_count() == 2
        assert coordinator.subscriber_count(team_group('2')) == 1

    def test_leave(self, coordinator):
        subscriber = coordinator.join('team', team_id='1')
        coordinator.leave(subscriber)

        assert coordinator.subscriber_count() == 0
        assert coordinator.publish(BID_ACCEPTED, {}, 2) == 0


# =============================================================================
# Delivery
# =============================================================================


class TestDelivery:
    """Fan-out and addressed messages."""

    def test_publish_reaches_every_role_once(self, coordinator):
        subscribers = [
            coordinator.join('admin'),
            coordinator.join('team', team_id='1'),
            coordinator.join('spectator'),
        ]
        for subscriber in subscribers:
            drain(subscriber)

        delivered = coordinator.publish(BID_ACCEPTED, {'amount': 60000}, 2)

        assert delivered == 3
        for subscriber in subscribers:
            messages = drain(subscriber)
            assert [m['event'] for m in messages] == [BID_ACCEPTED]
            assert messages[0]['payload']['amount'] == 60000

    def test_events_keep_publish_order(self, coordinator):
        subscriber = coordinator.join('spectator')
        for version in range(2, 6):
            coordinator.publish(BID_ACCEPTED, {}, version)

        versions = [m['version'] for m in drain(subscriber)]
        assert versions == [1, 2, 3, 4, 5]

    def test_send_to_team(self, coordinator):
        alpha = coordinator.join('team', team_id='1')
        bravo = coordinator.join('team', team_id='2')
        spectator = coordinator.join('spectator')
        for subscriber in (alpha, bravo, spectator):
            drain(subscriber)

        assert coordinator.send_to_team('2', TEAM_UPDATED, {'team': {}}, 3) == 1

        assert drain(alpha) == []
        assert drain(spectator) == []
        assert [m['event'] for m in drain(bravo)] == [TEAM_UPDATED]

    def test_send_to_one_subscriber(self, coordinator, source):
        subscriber = coordinator.join('spectator')
        other = coordinator.join('spectator')
        drain(subscriber)
        drain(other)

        source.version = 4
        coordinator.send_to(subscriber, STATE_SNAPSHOT, {})
        coordinator.send_to(subscriber, REJECTED, {'action': 'bid'})

        messages = drain(subscriber)
        assert [m['event'] for m in messages] == [STATE_SNAPSHOT, REJECTED]
        assert messages[0]['version'] == 4
        assert drain(other) == []


# =============================================================================
# Slow subscribers
# =============================================================================


class TestBackpressure:
    """A subscriber that stops draining is dropped, not waited on."""

    def test_full_queue_drops_subscriber(self, source):
        coordinator = BroadcastCoordinator(source, queue_size=2)
        slow = coordinator.join('spectator')
        fast = coordinator.join('spectator')

        coordinator.publish(BID_ACCEPTED, {}, 2)
        drain(fast)
        coordinator.publish(BID_ACCEPTED, {}, 3)

        assert slow.dropped
        assert drain(slow) == [None]
        assert coordinator.subscriber_count() == 1
        assert [m['version'] for m in drain(fast)] == [3]

    def test_close_all(self, coordinator):
        subscriber = coordinator.join('admin')
        coordinator.close_all()

        assert drain(subscriber) == [None]
        assert coordinator.subscriber_count() == 0
