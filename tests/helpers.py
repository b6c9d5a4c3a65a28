"""Shared test doubles and polling helpers."""

import asyncio

from draft_auction.auction.auction_records import Player, Team
from draft_auction.auction.errors import StorageFailure
from draft_auction.auction.ledger_store import LedgerStore


class FlakyLedger(LedgerStore):
    """Ledger whose writes can be switched to fail."""

    def __init__(self, *args, **kwargs):
        self.fail_writes = False
        super().__init__(*args, **kwargs)

    def _persist(self, auction_state, players, teams):
        if self.fail_writes:
            raise StorageFailure("Ledger write failed: disk unavailable")
        super()._persist(auction_state, players, teams)


def seed_ledger(ledger: LedgerStore) -> LedgerStore:
    ledger.add_teams([
        Team(team_id='1', name='Alpha', budget=1000000, slots_left=12),
        Team(team_id='2', name='Bravo', budget=1000000, slots_left=12),
        Team(team_id='3', name='Charlie', budget=60000, slots_left=1),
    ])
    ledger.add_players([
        Player(player_id='1', name='Arjun', year=2, position='Striker', base_price=50000),
        Player(player_id='2', name='Bela', year=3, position='GK', base_price=50000),
        Player(player_id='3', name='Chen', year=1, position='Midfield', base_price=80000,
               played_last_year=True),
    ])
    return ledger


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.005):
    """Poll predicate inside the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached before timeout")
        await asyncio.sleep(interval)


def drain(subscriber) -> list:
    """Pop every queued message for a subscriber."""
    messages = []
    while not subscriber.queue.empty():
        messages.append(subscriber.queue.get_nowait())
    return messages
