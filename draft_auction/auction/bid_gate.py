"""
Bid admission rules.

A bid is checked against the auction state and the bidding team's ledger
record before it is allowed to become the current bid. The checks run in a
fixed order so a client always gets the most fundamental rejection first.
"""

from dataclasses import replace
from typing import Optional

from .. import config
from .auction_records import AuctionState, AuctionStatus, Team
from .errors import (
    AuctionNotActive,
    BelowIncrement,
    BidTooLow,
    InsufficientBudget,
    NoSlotsLeft,
    ValidationError,
)


def validate_bid_input(team_id, amount) -> int:
    """
    Check that a bid is well-formed.

    Returns:
        The bid amount as an int

    Raises:
        ValidationError: If team_id is missing or amount is not a positive integer
    """
    if not team_id:
        raise ValidationError("Bid requires a team", code='MissingTeam')
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Invalid bid amount: {amount!r}", code='InvalidAmount')
    if amount <= 0:
        raise ValidationError(f"Invalid bid amount: {amount}", code='InvalidAmount')
    return amount


def admit_bid(
    state: AuctionState,
    team: Optional[Team],
    team_id: str,
    amount: int,
    default_duration: int = config.DEFAULT_TIMER_SECONDS
) -> AuctionState:
    """
    Validate a bid and build the auction state that accepting it produces.

    Rejection order:
    1. AuctionNotActive if the auction is not in progress
    2. BidTooLow if amount <= current bid
    3. BelowIncrement if amount < current bid + increment
    4. InsufficientBudget if amount > team budget
    5. NoSlotsLeft if the team has no roster slot left

    Args:
        state: Current committed auction state
        team: Ledger record of the bidding team (None if unknown)
        team_id: Id the bid was submitted for
        amount: Proposed bid
        default_duration: Countdown value restored on acceptance (anti-snipe)

    Returns:
        New AuctionState with the bid recorded and the countdown refreshed.
        The caller is responsible for committing it.

    Raises:
        ValidationError, AuctionNotActive, BidTooLow, BelowIncrement,
        InsufficientBudget, NoSlotsLeft
    """
    amount = validate_bid_input(team_id, amount)
    if team is None:
        raise ValidationError(f"Unknown team: {team_id}", code='UnknownTeam')

    if state.status != AuctionStatus.IN_PROGRESS:
        raise AuctionNotActive("No active auction")

    if amount <= state.current_bid:
        raise BidTooLow(f"Bid must be higher than current bid ({state.current_bid})")

    if amount < state.minimum_next_bid:
        raise BelowIncrement(f"Bid must be at least {state.minimum_next_bid}")

    if amount > team.budget:
        raise InsufficientBudget(
            f"Insufficient budget: {team.budget} < {amount}"
        )

    if team.slots_left <= 0:
        raise NoSlotsLeft(f"No slots left for {team.name}")

    return replace(
        state,
        current_bid=amount,
        current_bidder_id=team.team_id,
        time_remaining_seconds=default_duration,
        version=state.version + 1
    )
