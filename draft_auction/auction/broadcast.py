"""
Fan-out of auction events to real-time subscribers.

Subscribers join one audience group by declared role (admin, teams,
spectators); team subscribers are also addressable by team id. Every
subscriber owns a FIFO queue, and publish() enqueues synchronously, so
subscribers see events in exactly the order the state machine committed
them. The transport (a WebSocket pump in the API server) drains the queue.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .. import config
from .errors import ValidationError

logger = logging.getLogger(__name__)

# Roles a subscriber may declare
ADMIN = 'admin'
TEAM = 'team'
SPECTATOR = 'spectator'
ROLES = (ADMIN, TEAM, SPECTATOR)

# Audience groups
ADMIN_GROUP = 'admin'
TEAMS_GROUP = 'teams'
SPECTATORS_GROUP = 'spectators'
ROLE_GROUPS = {ADMIN: ADMIN_GROUP, TEAM: TEAMS_GROUP, SPECTATOR: SPECTATORS_GROUP}

# Event names pushed to clients
STATE_SNAPSHOT = 'state-snapshot'
LOT_STARTED = 'lot-started'
PAUSED = 'paused'
RESUMED = 'resumed'
BID_ACCEPTED = 'bid-accepted'
LOT_SETTLED_SOLD = 'lot-settled-sold'
LOT_SETTLED_UNSOLD = 'lot-settled-unsold'
TIMER_TICK = 'timer-tick'
AUTO_ENDED = 'auto-ended'
PLAYER_ADDED = 'player-added'
PLAYER_UPDATED = 'player-updated'
PLAYER_REMOVED = 'player-removed'
PLAYER_REVERTED = 'player-reverted'
TEAM_UPDATED = 'team-updated'
REJECTED = 'rejected'


def team_group(team_id: str) -> str:
    return f"team:{team_id}"


def make_message(event: str, payload: dict, version: int) -> dict:
    return {
        'event': event,
        'version': version,
        'payload': payload,
        'sent_at': datetime.now().isoformat()
    }


@dataclass
class Subscriber:
    """One real-time client connection."""

    subscriber_id: int
    role: str
    team_id: Optional[str]
    queue: asyncio.Queue = field(repr=False)
    dropped: bool = False

    @property
    def groups(self) -> List[str]:
        groups = [ROLE_GROUPS[self.role]]
        if self.role == TEAM and self.team_id:
            groups.append(team_group(self.team_id))
        return groups


class BroadcastCoordinator:
    """Role-partitioned fan-out with snapshot-on-join."""

    def __init__(
        self,
        snapshot_provider: Callable[[], dict],
        queue_size: int = config.SUBSCRIBER_QUEUE_SIZE
    ):
        """
        Initialize the coordinator.

        Args:
            snapshot_provider: Returns the current committed state as a
                dict (with its 'version'); called synchronously on join
            queue_size: Pending messages per subscriber before it is dropped
        """
        self._snapshot_provider = snapshot_provider
        self.queue_size = queue_size
        self._groups: Dict[str, Dict[int, Subscriber]] = {}
        self._ids = itertools.count(1)

    # ===== Membership =====

    def join(self, role: str, team_id: Optional[str] = None) -> Subscriber:
        """
        Register a subscriber and enqueue the current state for it.

        The snapshot is queued before the subscriber is added to any group,
        with no await in between, so it is always the first message and no
        event committed afterwards can be missed or arrive ahead of it.

        Raises:
            ValidationError: If the role is unknown or a team joins without an id
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role!r}", code='UnknownRole')
        if role == TEAM and not team_id:
            raise ValidationError("Team subscribers must give a team_id", code='MissingTeam')

        subscriber = Subscriber(
            subscriber_id=next(self._ids),
            role=role,
            team_id=str(team_id) if team_id else None,
            queue=asyncio.Queue(maxsize=self.queue_size)
        )
        subscriber.queue.put_nowait(self.snapshot_message())

        for group in subscriber.groups:
            self._groups.setdefault(group, {})[subscriber.subscriber_id] = subscriber

        logger.info(
            f"Subscriber {subscriber.subscriber_id} joined as {role}"
            + (f" (team {team_id})" if subscriber.team_id else "")
        )
        return subscriber

    def leave(self, subscriber: Subscriber) -> None:
        for group in subscriber.groups:
            members = self._groups.get(group)
            if members is not None:
                members.pop(subscriber.subscriber_id, None)
                if not members:
                    del self._groups[group]
        logger.info(f"Subscriber {subscriber.subscriber_id} left")

    def subscriber_count(self, group: Optional[str] = None) -> int:
        if group is not None:
            return len(self._groups.get(group, {}))
        return sum(
            len(self._groups.get(g, {}))
            for g in (ADMIN_GROUP, TEAMS_GROUP, SPECTATORS_GROUP)
        )

    # ===== Delivery =====

    def snapshot_message(self) -> dict:
        snapshot = self._snapshot_provider()
        return make_message(
            STATE_SNAPSHOT,
            {'auction_state': snapshot},
            snapshot.get('version', 0)
        )

    def publish(self, event: str, payload: dict, version: int) -> int:
        """
        Deliver an event to every audience group.

        Returns:
            Number of subscribers the event was queued for
        """
        message = make_message(event, payload, version)
        recipients = self._members(ADMIN_GROUP, TEAMS_GROUP, SPECTATORS_GROUP)
        for subscriber in recipients:
            self._deliver(subscriber, message)

        logger.debug(f"Published {event} v{version} to {len(recipients)} subscribers")
        return len(recipients)

    def send_to(self, subscriber: Subscriber, event: str, payload: dict) -> None:
        """
        Queue a message for one subscriber only.

        Used for replies to that client (resync snapshots, rejections); goes
        through the same queue so it stays ordered with broadcast events.
        """
        if subscriber.dropped:
            return
        if event == STATE_SNAPSHOT:
            message = self.snapshot_message()
        else:
            message = make_message(event, payload, self._snapshot_provider().get('version', 0))
        self._deliver(subscriber, message)

    def send_to_team(self, team_id: str, event: str, payload: dict, version: int) -> int:
        """Deliver an addressed message to one team's subscribers."""
        message = make_message(event, payload, version)
        recipients = self._members(team_group(str(team_id)))
        for subscriber in recipients:
            self._deliver(subscriber, message)
        return len(recipients)

    def close_all(self) -> None:
        """Detach every subscriber so transports can close their connections."""
        for subscriber in self._members(ADMIN_GROUP, TEAMS_GROUP, SPECTATORS_GROUP):
            self._drop(subscriber)
        self._groups.clear()

    def _members(self, *groups: str) -> List[Subscriber]:
        seen = {}
        for group in groups:
            for sid, subscriber in self._groups.get(group, {}).items():
                seen[sid] = subscriber
        return list(seen.values())

    def _deliver(self, subscriber: Subscriber, message: dict) -> None:
        try:
            subscriber.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                f"Subscriber {subscriber.subscriber_id} fell {self.queue_size} "
                f"messages behind; dropping it"
            )
            self.leave(subscriber)
            self._drop(subscriber)

    def _drop(self, subscriber: Subscriber) -> None:
        """Empty the queue and leave a None sentinel for the transport."""
        subscriber.dropped = True
        while not subscriber.queue.empty():
            subscriber.queue.get_nowait()
        subscriber.queue.put_nowait(None)
