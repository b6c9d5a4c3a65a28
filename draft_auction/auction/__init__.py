"""
Live auction subsystem.

This package runs the timed auction: one lot at a time, bids admitted against
team budgets, a countdown that settles the lot at zero, and a real-time feed
of every committed change.
"""

from .auction_records import AuctionState, AuctionStatus, Player, Team
from .ledger_store import LedgerChanges, LedgerStore
from .history_store import SettlementHistory, SettlementRecord
from .countdown import CountdownScheduler
from .broadcast import BroadcastCoordinator, Subscriber
from .state_machine import AuctionStateMachine
from .auth import Principal, TokenRegistry
from .auction_client import AuctionClient, AuctionRequestError

__all__ = [
    'AuctionState',
    'AuctionStatus',
    'Player',
    'Team',
    'LedgerChanges',
    'LedgerStore',
    'SettlementHistory',
    'SettlementRecord',
    'CountdownScheduler',
    'BroadcastCoordinator',
    'Subscriber',
    'AuctionStateMachine',
    'Principal',
    'TokenRegistry',
    'AuctionClient',
    'AuctionRequestError',
]
