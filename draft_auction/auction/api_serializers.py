"""
API request/response models for the auction request surface.

Transforms ledger records and state-machine snapshots into the JSON bodies
returned by the HTTP endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional
import pandas as pd
from pydantic import BaseModel, Field

from .. import config
from .auction_records import Player, Team


# ========== Requests ==========

class StartLotRequest(BaseModel):
    """Body for POST /auction/start/{player_id}."""
    bid_increment: Optional[int] = Field(None, gt=0, description="Minimum step between bids")
    timer_duration: Optional[int] = Field(None, gt=0, le=3600, description="Countdown in seconds")


class BidRequest(BaseModel):
    """Body for POST /auction/bid."""
    amount: int = Field(..., description="Proposed bid")
    team_id: Optional[str] = Field(
        None, description="Team to bid for (admin only; teams always bid for themselves)"
    )


class AddPlayerRequest(BaseModel):
    """Body for POST /players."""
    name: str = Field(..., min_length=1)
    year: int = Field(..., gt=0)
    position: str = Field(..., description=f"One of {', '.join(config.PLAYER_POSITIONS)}")
    base_price: int = Field(config.DEFAULT_BASE_PRICE, ge=0)
    played_last_year: bool = False


class UpdatePlayerRequest(BaseModel):
    """Body for PUT /players/{player_id}. Omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1)
    year: Optional[int] = Field(None, gt=0)
    position: Optional[str] = None
    base_price: Optional[int] = Field(None, ge=0)
    played_last_year: Optional[bool] = None


# ========== Auction State ==========

class LotResponse(BaseModel):
    """Player currently up for auction."""
    player_id: str
    name: str
    year: int
    position: str
    base_price: int
    played_last_year: bool
    sold_to_team_id: Optional[str] = None
    sold_price: Optional[int] = None


class BidderResponse(BaseModel):
    team_id: str
    name: str


class AuctionStateModel(BaseModel):
    """Denormalized auction state with current lot details."""
    status: str
    current_lot_id: Optional[str] = None
    current_bid: int
    current_bidder_id: Optional[str] = None
    bid_increment: int
    time_remaining_seconds: int
    timer_duration: int
    version: int
    current_lot: Optional[LotResponse] = None
    current_bidder: Optional[BidderResponse] = None
    minimum_next_bid: Optional[int] = None


class AuctionStateResponse(BaseModel):
    """Response for every auction endpoint that succeeds."""
    success: bool = Field(..., description="Whether operation succeeded")
    message: str = Field(..., description="Human-readable status message")
    auction_state: AuctionStateModel


class ErrorDetail(BaseModel):
    code: str
    category: str
    message: str


class ErrorResponse(BaseModel):
    """Response for a rejected operation. Carries the current true state."""
    success: bool = False
    error: ErrorDetail
    auction_state: AuctionStateModel


class AuctionConfigResponse(BaseModel):
    default_timer_seconds: int
    default_bid_increment: int
    default_base_price: int
    positions: List[str]


# ========== Players & Teams ==========

class TeamRef(BaseModel):
    team_id: str
    name: str


class PlayerResponse(BaseModel):
    player_id: str
    name: str
    year: int
    position: str
    base_price: int
    played_last_year: bool
    sold_to_team_id: Optional[str] = None
    sold_price: Optional[int] = None
    team: Optional[TeamRef] = Field(None, description="Owning team when sold")


class PlayersListResponse(BaseModel):
    success: bool = True
    players: List[PlayerResponse]


class PlayerDetailResponse(BaseModel):
    success: bool = True
    player: PlayerResponse


class TeamResponse(BaseModel):
    team_id: str
    name: str
    budget: int
    slots_left: int
    players_count: int


class TeamsListResponse(BaseModel):
    success: bool = True
    teams: List[TeamResponse]


class TeamStats(BaseModel):
    total_spent: int
    players_count: int
    players_by_position: Dict[str, int]
    slots_left: int


class TeamDetail(TeamResponse):
    players: List[PlayerResponse]
    stats: TeamStats


class TeamDetailResponse(BaseModel):
    success: bool = True
    team: TeamDetail


class RevertResponse(BaseModel):
    success: bool = True
    message: str
    player: PlayerResponse
    refunded: int
    team: TeamResponse
    auction_state: AuctionStateModel


class PlayerRemovedResponse(BaseModel):
    success: bool = True
    message: str
    player: PlayerResponse


class LeaderboardEntry(BaseModel):
    team_id: str
    name: str
    total_spent: int
    players_count: int
    budget: int = Field(description="Budget remaining")
    slots_left: int


class LeaderboardResponse(BaseModel):
    """Response for GET /teams/leaderboard."""
    success: bool = True
    leaderboard: List[LeaderboardEntry] = Field(description="Sorted by total_spent descending")


class HistoryResponse(BaseModel):
    """Response for GET /auction/history."""
    success: bool = True
    updated_at: str = Field(description="ISO-8601 timestamp")
    sold_players: List[PlayerResponse] = Field(description="Sorted by sold_price descending")


# ========== Serializer Functions ==========

def serialize_player(player: Player, teams: Dict[str, Team]) -> PlayerResponse:
    team = teams.get(player.sold_to_team_id) if player.sold_to_team_id else None
    return PlayerResponse(
        **player.to_dict(),
        team=TeamRef(team_id=team.team_id, name=team.name) if team else None
    )


def serialize_players(
    players: List[Player],
    teams: List[Team],
    position: Optional[str] = None,
    sold: Optional[bool] = None
) -> PlayersListResponse:
    """
    Filter and serialize players, sorted by name.

    Args:
        players: All ledger players
        teams: All ledger teams (for the owning-team reference)
        position: Optional position filter ('all' or None disables it)
        sold: Optional sold/unsold filter
    """
    team_map = {t.team_id: t for t in teams}
    filtered = []
    for player in players:
        if position and position != 'all' and player.position != position:
            continue
        if sold is not None and player.is_sold != sold:
            continue
        filtered.append(serialize_player(player, team_map))

    filtered.sort(key=lambda p: p.name)
    return PlayersListResponse(players=filtered)


def _team_roster(team: Team, players: List[Player]) -> List[Player]:
    return [p for p in players if p.sold_to_team_id == team.team_id]


def serialize_team(team: Team, players: List[Player]) -> TeamResponse:
    return TeamResponse(
        **team.to_dict(),
        players_count=len(_team_roster(team, players))
    )


def serialize_teams(teams: List[Team], players: List[Player]) -> TeamsListResponse:
    ordered = sorted(teams, key=lambda t: t.name)
    return TeamsListResponse(teams=[serialize_team(t, players) for t in ordered])


def serialize_team_detail(team: Team, players: List[Player]) -> TeamDetailResponse:
    """Team with its roster, total spent and per-position counts."""
    roster = sorted(_team_roster(team, players), key=lambda p: p.name)
    team_map = {team.team_id: team}

    by_position = {position: 0 for position in config.PLAYER_POSITIONS}
    for player in roster:
        by_position[player.position] = by_position.get(player.position, 0) + 1

    detail = TeamDetail(
        **serialize_team(team, players).model_dump(),
        players=[serialize_player(p, team_map) for p in roster],
        stats=TeamStats(
            total_spent=sum(p.sold_price or 0 for p in roster),
            players_count=len(roster),
            players_by_position=by_position,
            slots_left=team.slots_left
        )
    )
    return TeamDetailResponse(team=detail)


def serialize_history(players: List[Player], teams: List[Team]) -> HistoryResponse:
    """Sold players, most expensive first."""
    team_map = {t.team_id: t for t in teams}
    sold = [serialize_player(p, team_map) for p in players if p.is_sold]
    sold.sort(key=lambda p: p.sold_price or 0, reverse=True)
    return HistoryResponse(updated_at=datetime.now().isoformat(), sold_players=sold)


def serialize_leaderboard(summary: pd.DataFrame) -> LeaderboardResponse:
    """
    Rank teams by total spent.

    Args:
        summary: Team summary from LedgerStore.get_team_summary()
    """
    ranked = summary.sort_values(['spent', 'team_name'], ascending=[False, True])
    entries = [
        LeaderboardEntry(
            team_id=str(row['team_id']),
            name=row['team_name'],
            total_spent=int(row['spent']),
            players_count=int(row['players']),
            budget=int(row['budget']),
            slots_left=int(row['slots_left'])
        )
        for row in ranked.to_dict('records')
    ]
    return LeaderboardResponse(leaderboard=entries)
