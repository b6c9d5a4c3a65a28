"""
Core data structures for the live draft auction.

These dataclasses represent the durable records held by the ledger store:
players up for auction, bidding teams, and the single auction-state record.
Committed records are never mutated in place; changes are made with
dataclasses.replace() and handed to the ledger as a whole.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

from .. import config


class AuctionStatus(str, Enum):
    """Lifecycle of the auction-state record."""

    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    PAUSED = 'paused'


@dataclass
class Player:
    """A player that can be put up as a lot."""

    player_id: str
    name: str
    year: int
    position: str                          # One of config.PLAYER_POSITIONS
    base_price: int = config.DEFAULT_BASE_PRICE
    played_last_year: bool = False
    sold_to_team_id: Optional[str] = None
    sold_price: Optional[int] = None

    @property
    def is_sold(self) -> bool:
        return self.sold_to_team_id is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Player':
        """Create Player from dictionary."""
        return cls(
            player_id=str(data['player_id']),
            name=data['name'],
            year=int(data['year']),
            position=data['position'],
            base_price=int(data.get('base_price', config.DEFAULT_BASE_PRICE)),
            played_last_year=bool(data.get('played_last_year', False)),
            sold_to_team_id=data.get('sold_to_team_id'),
            sold_price=data.get('sold_price')
        )


@dataclass
class Team:
    """A bidding team's budget and remaining roster capacity."""

    team_id: str
    name: str
    budget: int = config.DEFAULT_TEAM_BUDGET
    slots_left: int = config.DEFAULT_TEAM_SLOTS

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Team':
        """Create Team from dictionary."""
        return cls(
            team_id=str(data['team_id']),
            name=data['name'],
            budget=int(data.get('budget', config.DEFAULT_TEAM_BUDGET)),
            slots_left=int(data.get('slots_left', config.DEFAULT_TEAM_SLOTS))
        )


@dataclass
class AuctionState:
    """The singleton auction record. Owned by AuctionStateMachine."""

    status: AuctionStatus = AuctionStatus.NOT_STARTED
    current_lot_id: Optional[str] = None
    current_bid: int = 0
    current_bidder_id: Optional[str] = None
    bid_increment: int = config.DEFAULT_BID_INCREMENT
    time_remaining_seconds: int = config.DEFAULT_TIMER_SECONDS
    timer_duration: int = config.DEFAULT_TIMER_SECONDS
    version: int = 0

    @property
    def lot_active(self) -> bool:
        return self.status in (AuctionStatus.IN_PROGRESS, AuctionStatus.PAUSED)

    @property
    def minimum_next_bid(self) -> int:
        return self.current_bid + self.bid_increment

    def validate(self) -> None:
        """
        Check the auction-state invariants.

        Raises:
            ValueError: If the record is inconsistent
        """
        if self.current_bidder_id is not None and self.current_bid <= 0:
            raise ValueError(
                f"Bidder {self.current_bidder_id} recorded with bid {self.current_bid}"
            )
        if self.current_lot_id is None and (self.current_bid != 0 or self.current_bidder_id):
            raise ValueError("Bid recorded with no active lot")
        if self.lot_active and self.current_lot_id is None:
            raise ValueError(f"Status {self.status.value} with no current lot")
        if not self.lot_active and self.current_lot_id is not None:
            raise ValueError(f"Lot {self.current_lot_id} set while {self.status.value}")
        if self.bid_increment <= 0:
            raise ValueError(f"Non-positive bid increment: {self.bid_increment}")
        if self.time_remaining_seconds < 0:
            raise ValueError(f"Negative time remaining: {self.time_remaining_seconds}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'AuctionState':
        """Create AuctionState from dictionary."""
        return cls(
            status=AuctionStatus(data.get('status', AuctionStatus.NOT_STARTED.value)),
            current_lot_id=data.get('current_lot_id'),
            current_bid=int(data.get('current_bid', 0)),
            current_bidder_id=data.get('current_bidder_id'),
            bid_increment=int(data.get('bid_increment', config.DEFAULT_BID_INCREMENT)),
            time_remaining_seconds=int(
                data.get('time_remaining_seconds', config.DEFAULT_TIMER_SECONDS)
            ),
            timer_duration=int(data.get('timer_duration', config.DEFAULT_TIMER_SECONDS)),
            version=int(data.get('version', 0))
        )


def idle_auction_state(
    default_duration: int = config.DEFAULT_TIMER_SECONDS,
    bid_increment: int = config.DEFAULT_BID_INCREMENT,
    version: int = 0
) -> AuctionState:
    """
    Build the reset auction state used at first boot and after settlement.

    Args:
        default_duration: Countdown value to leave ready for the next lot
        bid_increment: Increment carried over for display
        version: Version number for the new record

    Returns:
        AuctionState with no active lot
    """
    return AuctionState(
        status=AuctionStatus.NOT_STARTED,
        current_lot_id=None,
        current_bid=0,
        current_bidder_id=None,
        bid_increment=bid_increment,
        time_remaining_seconds=default_duration,
        timer_duration=default_duration,
        version=version
    )
