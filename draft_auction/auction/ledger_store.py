"""
Durable ledger of players, teams, and the auction-state record.

The ledger is a single JSON document written atomically (temp file + rename),
so a crash never leaves a half-written file behind. All changes belonging to
one auction operation are applied through commit(), which either persists
every record or none of them.
"""

import json
import logging
import threading
import pandas as pd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .. import config
from .auction_records import AuctionState, Player, Team, idle_auction_state
from .errors import StorageFailure, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class LedgerChanges:
    """Records replaced together by a single commit."""

    auction_state: Optional[AuctionState] = None
    players: List[Player] = field(default_factory=list)
    teams: List[Team] = field(default_factory=list)
    removed_player_ids: List[str] = field(default_factory=list)


class LedgerStore:
    """Atomic read/update-by-id store backed by one JSON file."""

    def __init__(
        self,
        filepath: Optional[Path] = None,
        default_duration: int = config.DEFAULT_TIMER_SECONDS
    ):
        """
        Initialize the ledger, loading it from disk when the file exists.

        Args:
            filepath: Path to the ledger JSON file (None keeps it in memory only)
            default_duration: Countdown value for a freshly created auction state

        Raises:
            StorageFailure: If an existing ledger file cannot be read
        """
        self.filepath = Path(filepath) if filepath else None
        self._lock = threading.Lock()

        self._auction_state = idle_auction_state(default_duration)
        self._players: Dict[str, Player] = {}
        self._teams: Dict[str, Team] = {}

        if self.filepath and self.filepath.exists():
            self._load()
        else:
            # First boot: create the singleton auction-state record
            self._persist(self._auction_state, self._players, self._teams)
            logger.info(f"Created new ledger ({self.filepath or 'in-memory'})")

    # ===== Reads =====

    def get_auction_state(self) -> AuctionState:
        with self._lock:
            return self._auction_state

    def get_player(self, player_id: str) -> Optional[Player]:
        with self._lock:
            return self._players.get(str(player_id))

    def get_team(self, team_id: str) -> Optional[Team]:
        with self._lock:
            return self._teams.get(str(team_id))

    def list_players(self) -> List[Player]:
        with self._lock:
            return list(self._players.values())

    def list_teams(self) -> List[Team]:
        with self._lock:
            return list(self._teams.values())

    # ===== Writes =====

    def commit(self, changes: LedgerChanges) -> None:
        """
        Apply all changes atomically.

        Args:
            changes: Auction state and player/team records to replace

        Raises:
            StorageFailure: If the ledger could not be written. The previous
                records remain in effect.
        """
        with self._lock:
            auction_state = changes.auction_state or self._auction_state
            players = dict(self._players)
            teams = dict(self._teams)
            for player in changes.players:
                players[player.player_id] = player
            for team in changes.teams:
                teams[team.team_id] = team
            for player_id in changes.removed_player_ids:
                players.pop(str(player_id), None)

            self._persist(auction_state, players, teams)

            self._auction_state = auction_state
            self._players = players
            self._teams = teams

        logger.debug(
            f"Committed ledger v{auction_state.version}: "
            f"{len(changes.players)} players, {len(changes.teams)} teams, "
            f"{len(changes.removed_player_ids)} removed"
        )

    def add_players(self, players: List[Player]) -> None:
        """
        Insert new player records.

        Raises:
            ValidationError: If a player id already exists
            StorageFailure: If the ledger could not be written
        """
        for player in players:
            if self.get_player(player.player_id) is not None:
                raise ValidationError(f"Player {player.player_id} already exists")
        self.commit(LedgerChanges(players=players))
        logger.info(f"Added {len(players)} players to ledger")

    def add_teams(self, teams: List[Team]) -> None:
        """
        Insert new team records.

        Raises:
            ValidationError: If a team id already exists
            StorageFailure: If the ledger could not be written
        """
        for team in teams:
            if self.get_team(team.team_id) is not None:
                raise ValidationError(f"Team {team.team_id} already exists")
        self.commit(LedgerChanges(teams=teams))
        logger.info(f"Added {len(teams)} teams to ledger")

    def next_player_id(self) -> str:
        """Next free numeric player id."""
        with self._lock:
            numeric = [int(pid) for pid in self._players if pid.isdigit()]
        return str(max(numeric, default=0) + 1)

    def next_team_id(self) -> str:
        """Next free numeric team id."""
        with self._lock:
            numeric = [int(tid) for tid in self._teams if tid.isdigit()]
        return str(max(numeric, default=0) + 1)

    # ===== Reporting =====

    def get_team_summary(self) -> pd.DataFrame:
        """
        Get summary statistics for all teams.

        Returns:
            DataFrame with team_id, team_name, players, spent, budget, slots_left
        """
        players = self.list_players()
        summary_data = []
        for team in self.list_teams():
            roster = [p for p in players if p.sold_to_team_id == team.team_id]
            summary_data.append({
                'team_id': team.team_id,
                'team_name': team.name,
                'players': len(roster),
                'spent': sum(p.sold_price or 0 for p in roster),
                'budget': team.budget,
                'slots_left': team.slots_left
            })

        columns = ['team_id', 'team_name', 'players', 'spent', 'budget', 'slots_left']
        return pd.DataFrame(summary_data, columns=columns).sort_values('team_id')

    # ===== Persistence =====

    def _persist(
        self,
        auction_state: AuctionState,
        players: Dict[str, Player],
        teams: Dict[str, Team]
    ) -> None:
        """Write the full ledger document, or raise StorageFailure."""
        if self.filepath is None:
            return

        document = {
            'auction_state': auction_state.to_dict(),
            'players': {pid: p.to_dict() for pid, p in players.items()},
            'teams': {tid: t.to_dict() for tid, t in teams.items()}
        }

        try:
            self.filepath.parent.mkdir(parents=True, exist_ok=True)

            # Atomic write: write to temp file, then rename
            temp_path = self.filepath.with_suffix('.tmp')
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2)
            temp_path.replace(self.filepath)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write ledger {self.filepath}: {e}")
            raise StorageFailure(f"Ledger write failed: {e}") from e

    def _load(self) -> None:
        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                document = json.load(f)

            self._auction_state = AuctionState.from_dict(document.get('auction_state', {}))
            self._players = {
                str(pid): Player.from_dict(pdata)
                for pid, pdata in document.get('players', {}).items()
            }
            self._teams = {
                str(tid): Team.from_dict(tdata)
                for tid, tdata in document.get('teams', {}).items()
            }
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(f"Failed to load ledger {self.filepath}: {e}")
            raise StorageFailure(f"Ledger load failed: {e}") from e

        logger.info(
            f"Loaded ledger: {len(self._players)} players, {len(self._teams)} teams, "
            f"auction {self._auction_state.status.value} ← {self.filepath}"
        )
