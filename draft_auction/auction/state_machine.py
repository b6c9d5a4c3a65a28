"""
Auction state machine - the single writer of the auction-state record.

States:
  not_started → in_progress ⇄ paused → (settlement) → not_started

Every mutation (start, bid, pause, resume, end, revert, player edits, timer
tick and the automatic settlement at zero) runs inside one asyncio.Lock, held across the
ledger write. The order inside the critical section is always:

1. validate against the committed state
2. commit the new records to the ledger
3. adopt the new state and rebuild the read snapshot
4. re-arm or cancel the countdown
5. broadcast

so nothing is broadcast that the ledger did not accept, and subscribers see
mutations in commit order.
"""

import asyncio
import copy
import logging
from dataclasses import replace
from typing import Optional

from .. import config
from .auction_records import AuctionState, AuctionStatus, Player, idle_auction_state
from .bid_gate import admit_bid
from .broadcast import (
    AUTO_ENDED,
    BID_ACCEPTED,
    LOT_SETTLED_SOLD,
    LOT_SETTLED_UNSOLD,
    LOT_STARTED,
    PAUSED,
    PLAYER_ADDED,
    PLAYER_REMOVED,
    PLAYER_REVERTED,
    PLAYER_UPDATED,
    RESUMED,
    TEAM_UPDATED,
    TIMER_TICK,
    BroadcastCoordinator,
)
from .countdown import CountdownScheduler
from .errors import (
    InternalInconsistency,
    InvalidLot,
    LotAlreadyActive,
    NoActiveLot,
    NotPaused,
    NotRunning,
    NotSold,
    PlayerLocked,
    StorageFailure,
    UnknownRecord,
    ValidationError,
)
from .history_store import REVERTED, SOLD, UNSOLD, SettlementHistory
from .ledger_store import LedgerChanges, LedgerStore

logger = logging.getLogger(__name__)


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value


class AuctionStateMachine:
    """Owns the auction-state record, the countdown and the broadcast fan-out."""

    def __init__(
        self,
        ledger: LedgerStore,
        history: Optional[SettlementHistory] = None,
        default_duration: int = config.DEFAULT_TIMER_SECONDS,
        default_increment: int = config.DEFAULT_BID_INCREMENT,
        tick_interval: float = config.TICK_INTERVAL_SECONDS,
        queue_size: int = config.SUBSCRIBER_QUEUE_SIZE
    ):
        """
        Initialize the state machine from the ledger's auction-state record.

        Args:
            ledger: Ledger store holding players, teams and the auction state
            history: Settlement log (in-memory if None)
            default_duration: Countdown value after settlement and on every accepted bid
            default_increment: Bid increment used when start_lot is given none
            tick_interval: Seconds between countdown ticks
            queue_size: Pending messages per real-time subscriber
        """
        self.ledger = ledger
        self.history = history or SettlementHistory()
        self.default_duration = default_duration
        self.default_increment = default_increment

        self._lock = asyncio.Lock()
        self._state: AuctionState = ledger.get_auction_state()
        self._snapshot = self._build_snapshot()

        self.scheduler = CountdownScheduler(self._tick, interval=tick_interval)
        self.broadcaster = BroadcastCoordinator(self.snapshot, queue_size=queue_size)

    # ===== Reads =====

    @property
    def state(self) -> AuctionState:
        """Last committed auction state."""
        return self._state

    def snapshot(self) -> dict:
        """
        Denormalized view of the last committed state.

        Safe to call at any time: it is rebuilt only after a commit succeeds,
        so a reader never sees a half-applied mutation.
        """
        return copy.deepcopy(self._snapshot)

    def _build_snapshot(self) -> dict:
        state = self._state
        data = state.to_dict()

        lot = self.ledger.get_player(state.current_lot_id) if state.current_lot_id else None
        data['current_lot'] = lot.to_dict() if lot else None

        bidder = self.ledger.get_team(state.current_bidder_id) if state.current_bidder_id else None
        data['current_bidder'] = (
            {'team_id': bidder.team_id, 'name': bidder.name} if bidder else None
        )
        data['minimum_next_bid'] = state.minimum_next_bid if state.lot_active else None
        return data

    # ===== Lifecycle =====

    async def recover(self) -> dict:
        """
        Bring a lot that was running when the process stopped into a safe state.

        A lot found in_progress at boot has no countdown behind it, so it is
        moved to paused with its remaining time intact; an admin resumes it.
        """
        async with self._lock:
            if self._state.status == AuctionStatus.IN_PROGRESS:
                paused = replace(
                    self._state,
                    status=AuctionStatus.PAUSED,
                    version=self._state.version + 1
                )
                await self._commit(LedgerChanges(auction_state=paused))
                logger.warning(
                    f"Lot {paused.current_lot_id} was running at startup; paused with "
                    f"{paused.time_remaining_seconds}s remaining"
                )
            return self.snapshot()

    async def shutdown(self) -> None:
        """Cancel the pending tick and detach all subscribers."""
        await self.scheduler.shutdown()
        self.broadcaster.close_all()

    # ===== Admin operations =====

    async def start_lot(
        self,
        lot_id: str,
        bid_increment: Optional[int] = None,
        timer_duration: Optional[int] = None
    ) -> dict:
        """
        Put a player up for auction.

        Args:
            lot_id: Player id of the lot
            bid_increment: Minimum step between bids (default_increment if None)
            timer_duration: Countdown for this lot (default_duration if None)

        Returns:
            Snapshot of the new state

        Raises:
            ValidationError: If increment or duration is not a positive integer
            LotAlreadyActive: If another lot is in progress or paused
            InvalidLot: If the player is missing or already sold
            StorageFailure: If the ledger write failed
        """
        increment = _positive_int(
            self.default_increment if bid_increment is None else bid_increment, 'bid_increment'
        )
        duration = _positive_int(
            self.default_duration if timer_duration is None else timer_duration, 'timer_duration'
        )

        async with self._lock:
            state = self._state
            if state.lot_active:
                raise LotAlreadyActive(
                    f"Lot {state.current_lot_id} is already {state.status.value}; end it first"
                )

            player = self.ledger.get_player(str(lot_id))
            if player is None:
                raise InvalidLot(f"Player {lot_id} not found")
            if player.is_sold:
                raise InvalidLot(f"Player {player.name} is already sold")

            started = replace(
                state,
                status=AuctionStatus.IN_PROGRESS,
                current_lot_id=player.player_id,
                current_bid=player.base_price,
                current_bidder_id=None,
                bid_increment=increment,
                time_remaining_seconds=duration,
                timer_duration=duration,
                version=state.version + 1
            )
            await self._commit(LedgerChanges(auction_state=started))
            await self.scheduler.arm(duration)

            logger.info(
                f"Lot started: {player.name} (base {player.base_price}, "
                f"increment {increment}, {duration}s)"
            )
            self._publish(LOT_STARTED, {'lot_id': player.player_id, 'player': player.to_dict()})
            return self.snapshot()

    async def pause(self) -> dict:
        """
        Stop the countdown, keeping the remaining time.

        Raises:
            NotRunning: If the auction is not in progress
        """
        async with self._lock:
            state = self._state
            if state.status != AuctionStatus.IN_PROGRESS:
                raise NotRunning(f"Auction is {state.status.value}, not in progress")

            paused = replace(state, status=AuctionStatus.PAUSED, version=state.version + 1)
            await self._commit(LedgerChanges(auction_state=paused))
            await self.scheduler.cancel()

            logger.info(f"Auction paused with {paused.time_remaining_seconds}s remaining")
            self._publish(PAUSED, {'time_remaining_seconds': paused.time_remaining_seconds})
            return self.snapshot()

    async def resume(self) -> dict:
        """
        Restart the countdown from the preserved remaining time.

        Raises:
            NotPaused: If the auction is not paused or has no time left
        """
        async with self._lock:
            state = self._state
            if state.status != AuctionStatus.PAUSED:
                raise NotPaused(f"Auction is {state.status.value}, not paused")
            if state.time_remaining_seconds <= 0:
                raise NotPaused("No time remaining on the paused lot")

            resumed = replace(state, status=AuctionStatus.IN_PROGRESS, version=state.version + 1)
            await self._commit(LedgerChanges(auction_state=resumed))
            await self.scheduler.arm(resumed.time_remaining_seconds)

            logger.info(f"Auction resumed with {resumed.time_remaining_seconds}s remaining")
            self._publish(RESUMED, {'time_remaining_seconds': resumed.time_remaining_seconds})
            return self.snapshot()

    async def end(self) -> dict:
        """
        Settle the current lot now (manual override of the countdown).

        Raises:
            NoActiveLot: If no lot is in progress or paused
            StorageFailure: If the ledger write failed (the lot stays active)
            InternalInconsistency: If the lot or bidder has no ledger record
        """
        async with self._lock:
            if not self._state.lot_active:
                raise NoActiveLot("No active auction to end")
            await self._settle(automatic=False)
            return self.snapshot()

    async def revert(self, player_id: str) -> dict:
        """
        Undo a sale: refund the team's budget and slot, clear the sold fields.

        Raises:
            UnknownRecord: If the player does not exist
            NotSold: If the player is not currently sold
            InternalInconsistency: If the owning team has no ledger record
        """
        async with self._lock:
            player = self.ledger.get_player(str(player_id))
            if player is None:
                raise UnknownRecord(f"Player {player_id} not found", code='UnknownPlayer')
            if not player.is_sold:
                raise NotSold(f"Player {player.name} is not sold")

            team = self.ledger.get_team(player.sold_to_team_id)
            if team is None:
                logger.error(
                    f"Player {player.player_id} sold to missing team {player.sold_to_team_id}"
                )
                raise InternalInconsistency(
                    f"Team {player.sold_to_team_id} for sold player {player.name} not found"
                )

            refund = player.sold_price or 0
            cleared = replace(player, sold_to_team_id=None, sold_price=None)
            refunded = replace(team, budget=team.budget + refund, slots_left=team.slots_left + 1)
            state = replace(self._state, version=self._state.version + 1)

            await self._commit(LedgerChanges(
                auction_state=state, players=[cleared], teams=[refunded]
            ))
            self._record(
                REVERTED, cleared.player_id, cleared.name,
                team_id=refunded.team_id, team_name=refunded.name, price=refund
            )

            logger.info(f"Reverted {player.name}: refunded {refund} to {team.name}")
            self._publish(PLAYER_REVERTED, {
                'player_id': cleared.player_id,
                'team_id': refunded.team_id,
                'refunded': refund,
                'player': cleared.to_dict(),
                'team': refunded.to_dict()
            })
            self._notify_team(refunded)
            return self.snapshot()

    async def add_player(
        self,
        name: str,
        year: int,
        position: str,
        base_price: int = config.DEFAULT_BASE_PRICE,
        played_last_year: bool = False
    ) -> Player:
        """
        Register a single player entered by an admin.

        Raises:
            ValidationError: If a field is missing or the position is not recognised
        """
        if not name or not str(name).strip():
            raise ValidationError("Player name is required")
        if position not in config.PLAYER_POSITIONS:
            raise ValidationError(f"Invalid position: {position!r}", code='InvalidPosition')
        year = _positive_int(year, 'year')
        if isinstance(base_price, bool) or not isinstance(base_price, int) or base_price < 0:
            raise ValidationError(f"Invalid base price: {base_price!r}")

        async with self._lock:
            player = Player(
                player_id=self.ledger.next_player_id(),
                name=str(name).strip(),
                year=year,
                position=position,
                base_price=base_price,
                played_last_year=bool(played_last_year)
            )
            await self._commit(LedgerChanges(players=[player]))

            logger.info(f"Added player {player.player_id}: {player.name} ({position})")
            self._publish(PLAYER_ADDED, {'player': player.to_dict()})
            return player

    async def update_player(self, player_id: str, **fields) -> Player:
        """
        Edit an unsold player's details.

        Args:
            player_id: Player to edit
            **fields: Any of name, year, position, base_price, played_last_year

        Returns:
            The updated player

        Raises:
            ValidationError: If a field is unknown or has an invalid value
            UnknownRecord: If the player does not exist
            PlayerLocked: If the player is the current lot or already sold
        """
        editable = {'name', 'year', 'position', 'base_price', 'played_last_year'}
        unknown = set(fields) - editable
        if unknown:
            raise ValidationError(f"Cannot edit player fields: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValidationError("No player fields to update")

        changes = {}
        if 'name' in fields:
            if not fields['name'] or not str(fields['name']).strip():
                raise ValidationError("Player name is required")
            changes['name'] = str(fields['name']).strip()
        if 'year' in fields:
            changes['year'] = _positive_int(fields['year'], 'year')
        if 'position' in fields:
            if fields['position'] not in config.PLAYER_POSITIONS:
                raise ValidationError(
                    f"Invalid position: {fields['position']!r}", code='InvalidPosition'
                )
            changes['position'] = fields['position']
        if 'base_price' in fields:
            base_price = fields['base_price']
            if isinstance(base_price, bool) or not isinstance(base_price, int) or base_price < 0:
                raise ValidationError(f"Invalid base price: {base_price!r}")
            changes['base_price'] = base_price
        if 'played_last_year' in fields:
            changes['played_last_year'] = bool(fields['played_last_year'])

        async with self._lock:
            player = self._editable_player(player_id)
            updated = replace(player, **changes)
            await self._commit(LedgerChanges(players=[updated]))

            logger.info(f"Updated player {updated.player_id}: {', '.join(sorted(changes))}")
            self._publish(PLAYER_UPDATED, {'player': updated.to_dict()})
            return updated

    async def delete_player(self, player_id: str) -> Player:
        """
        Remove an unsold player from the pool.

        Raises:
            UnknownRecord: If the player does not exist
            PlayerLocked: If the player is the current lot or already sold
        """
        async with self._lock:
            player = self._editable_player(player_id)
            await self._commit(LedgerChanges(removed_player_ids=[player.player_id]))

            logger.info(f"Removed player {player.player_id}: {player.name}")
            self._publish(PLAYER_REMOVED, {'player_id': player.player_id, 'player': player.to_dict()})
            return player

    def _editable_player(self, player_id: str) -> Player:
        player = self.ledger.get_player(str(player_id))
        if player is None:
            raise UnknownRecord(f"Player {player_id} not found", code='UnknownPlayer')
        if player.player_id == self._state.current_lot_id:
            raise PlayerLocked(f"Player {player.name} is the current lot")
        if player.is_sold:
            raise PlayerLocked(f"Player {player.name} is already sold; revert the sale first")
        return player

    # ===== Team operations =====

    async def submit_bid(self, team_id: str, amount: int) -> dict:
        """
        Admit a bid, refresh the countdown to the default duration and broadcast it.

        Raises:
            ValidationError, AuctionNotActive, BidTooLow, BelowIncrement,
            InsufficientBudget, NoSlotsLeft, StorageFailure
        """
        async with self._lock:
            team = self.ledger.get_team(str(team_id)) if team_id else None
            accepted = admit_bid(
                self._state, team, team_id, amount, default_duration=self.default_duration
            )
            await self._commit(LedgerChanges(auction_state=accepted))
            await self.scheduler.arm(accepted.time_remaining_seconds)

            logger.info(f"Bid accepted: {team.name} {amount} on lot {accepted.current_lot_id}")
            self._publish(BID_ACCEPTED, {
                'team_id': team.team_id,
                'team_name': team.name,
                'amount': amount
            })
            return self.snapshot()

    # ===== Countdown =====

    async def _tick(self) -> int:
        """
        Decrement the countdown by one second; settle the lot when it hits zero.

        Returns:
            Seconds remaining (0 tells the scheduler to stop)
        """
        async with self._lock:
            state = self._state
            if state.status != AuctionStatus.IN_PROGRESS:
                return 0

            remaining = max(state.time_remaining_seconds - 1, 0)
            ticked = replace(state, time_remaining_seconds=remaining, version=state.version + 1)
            try:
                await self._commit(LedgerChanges(auction_state=ticked))
            except StorageFailure as e:
                logger.warning(f"Tick not recorded, retrying next interval: {e}")
                return state.time_remaining_seconds

            logger.debug(f"Tick: {remaining}s remaining")
            self._publish(TIMER_TICK, {'time_remaining_seconds': remaining})

            if remaining == 0:
                await self._settle_on_expiry()
            return remaining

    async def _settle_on_expiry(self) -> None:
        """Automatic settlement. Always leaves the auction not_started."""
        try:
            await self._settle(automatic=True)
        except Exception as e:
            logger.exception(f"Automatic settlement of lot {self._state.current_lot_id} failed: {e}")
            await self._force_reset(reason=str(e))

        self._publish(AUTO_ENDED, {})

    async def _force_reset(self, reason: str) -> None:
        """Reset to not_started even when settlement could not be recorded."""
        state = self._state
        reset = idle_auction_state(self.default_duration, state.bid_increment, state.version + 1)
        try:
            await self._commit(LedgerChanges(auction_state=reset))
        except StorageFailure as e:
            logger.error(f"Could not record auction reset, continuing from memory: {e}")
            self._state = reset
            self._snapshot = self._build_snapshot()

        self._publish(LOT_SETTLED_UNSOLD, {
            'lot_id': state.current_lot_id,
            'automatic': True,
            'settlement_failed': True,
            'reason': reason
        })

    # ===== Internals (lock held) =====

    async def _settle(self, automatic: bool) -> None:
        """
        Settle the active lot: sold to the current bidder, or unsold.

        Both outcomes reset the auction state in the same commit.
        """
        state = self._state
        player = self.ledger.get_player(state.current_lot_id)
        if player is None:
            raise InternalInconsistency(f"Current lot {state.current_lot_id} not found")

        reset = idle_auction_state(self.default_duration, state.bid_increment, state.version + 1)

        if state.current_bidder_id is None:
            await self._commit(LedgerChanges(auction_state=reset))
            await self.scheduler.cancel()
            self._record(UNSOLD, player.player_id, player.name, automatic=automatic)

            logger.info(f"Lot settled unsold: {player.name}")
            self._publish(LOT_SETTLED_UNSOLD, {
                'lot_id': player.player_id,
                'player': player.to_dict(),
                'automatic': automatic
            })
            return

        team = self.ledger.get_team(state.current_bidder_id)
        if team is None:
            logger.error(f"Current bidder {state.current_bidder_id} has no team record")
            raise InternalInconsistency(f"Bidder {state.current_bidder_id} not found")

        price = state.current_bid
        if price > team.budget or team.slots_left <= 0:
            raise InternalInconsistency(
                f"{team.name} cannot cover {price} (budget {team.budget}, "
                f"slots {team.slots_left})"
            )

        sold = replace(player, sold_to_team_id=team.team_id, sold_price=price)
        debited = replace(team, budget=team.budget - price, slots_left=team.slots_left - 1)

        await self._commit(LedgerChanges(auction_state=reset, players=[sold], teams=[debited]))
        await self.scheduler.cancel()
        self._record(
            SOLD, sold.player_id, sold.name,
            team_id=debited.team_id, team_name=debited.name,
            price=price, automatic=automatic
        )

        logger.info(f"Lot settled: {sold.name} sold to {debited.name} for {price}")
        self._publish(LOT_SETTLED_SOLD, {
            'lot_id': sold.player_id,
            'player': sold.to_dict(),
            'team_id': debited.team_id,
            'team_name': debited.name,
            'price': price,
            'automatic': automatic
        })
        self._notify_team(debited)

    async def _commit(self, changes: LedgerChanges) -> None:
        """
        Write changes to the ledger, then adopt the new auction state.

        The ledger write runs in a worker thread; the caller keeps holding
        the lock until it returns.
        """
        if changes.auction_state is not None:
            try:
                changes.auction_state.validate()
            except ValueError as e:
                logger.error(f"Refusing to commit inconsistent auction state: {e}")
                raise InternalInconsistency(str(e)) from e

        await asyncio.to_thread(self.ledger.commit, changes)

        if changes.auction_state is not None:
            self._state = changes.auction_state
        self._snapshot = self._build_snapshot()

    def _publish(self, event: str, payload: dict) -> None:
        payload = dict(payload)
        payload['auction_state'] = self.snapshot()
        self.broadcaster.publish(event, payload, self._state.version)

    def _record(self, kind: str, player_id: str, player_name: str, **details) -> None:
        """
        Append to the settlement log after a successful commit.

        The ledger is authoritative: a failed log write is reported and the
        operation still completes and broadcasts.
        """
        try:
            self.history.append(kind, player_id, player_name, **details)
        except OSError as e:
            logger.exception(f"Could not log {kind} for player {player_id} ({player_name}): {e}")

    def _notify_team(self, team) -> None:
        self.broadcaster.send_to_team(
            team.team_id, TEAM_UPDATED, {'team': team.to_dict()}, self._state.version
        )


