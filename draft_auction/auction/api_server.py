"""
FastAPI server for the live draft auction.

Provides the validated request surface (state query, admin controls, team
bids, player/team lookups) and the real-time WebSocket feed. The WebSocket
feed is read-only: clients receive events but can never mutate the auction
through it.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional
from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import config
from .api_serializers import (
    AddPlayerRequest,
    AuctionConfigResponse,
    AuctionStateResponse,
    BidRequest,
    ErrorResponse,
    HistoryResponse,
    LeaderboardResponse,
    PlayerDetailResponse,
    PlayerRemovedResponse,
    PlayersListResponse,
    RevertResponse,
    StartLotRequest,
    TeamDetailResponse,
    TeamsListResponse,
    UpdatePlayerRequest,
    serialize_history,
    serialize_leaderboard,
    serialize_player,
    serialize_players,
    serialize_team,
    serialize_team_detail,
    serialize_teams,
)
from .auth import Principal, TokenRegistry
from .broadcast import REJECTED, STATE_SNAPSHOT, BroadcastCoordinator, Subscriber
from .errors import AuctionError, InternalInconsistency, ValidationError
from .history_store import SettlementHistory
from .ledger_store import LedgerStore
from .state_machine import AuctionStateMachine

logger = logging.getLogger(__name__)

SERVICE_NAME = "Live Draft Auction API"
SERVICE_VERSION = "1.0.0"


# ===== Dependencies =====

def get_machine(request: Request) -> AuctionStateMachine:
    return request.app.state.machine


def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> Principal:
    """Resolve the bearer token, or reject with 401."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Access token required")

    principal = request.app.state.registry.resolve(authorization)
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal


def require_team(principal: Principal = Depends(get_principal)) -> Principal:
    if not (principal.is_team or principal.is_admin):
        raise HTTPException(status_code=403, detail="Team access required")
    return principal


def _error_response(machine: AuctionStateMachine, error: AuctionError) -> JSONResponse:
    body = ErrorResponse(error=error.to_dict(), auction_state=machine.snapshot())
    return JSONResponse(status_code=error.http_status, content=body.model_dump())


def _state_response(snapshot: dict, message: str) -> AuctionStateResponse:
    return AuctionStateResponse(success=True, message=message, auction_state=snapshot)


# ===== Application =====

def create_app(
    ledger: Optional[LedgerStore] = None,
    history: Optional[SettlementHistory] = None,
    registry: Optional[TokenRegistry] = None,
    tick_interval: float = config.TICK_INTERVAL_SECONDS,
    default_duration: int = config.DEFAULT_TIMER_SECONDS
) -> FastAPI:
    """
    Build the FastAPI application.

    The ledger, history and credentials are opened on startup (from the
    configured files unless instances are passed in), so importing this
    module touches no files.
    """
    app = FastAPI(
        title=SERVICE_NAME,
        description="Live timed auction for draft players",
        version=SERVICE_VERSION
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===== Lifecycle =====

    @app.on_event("startup")
    async def startup_event():
        """Open the ledger and bring the auction into a consistent state."""
        if registry is None:
            app.state.registry = TokenRegistry.from_file(Path(config.CREDENTIALS_FILE))
        else:
            app.state.registry = registry

        machine = AuctionStateMachine(
            ledger=ledger if ledger is not None else LedgerStore(Path(config.LEDGER_FILE), default_duration),
            history=history if history is not None else SettlementHistory(Path(config.HISTORY_FILE)),
            default_duration=default_duration,
            tick_interval=tick_interval
        )
        await machine.recover()
        app.state.machine = machine

        logger.info(f"{SERVICE_NAME} started")
        logger.info(f"Auction status: {machine.state.status.value}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cancel the countdown and disconnect subscribers."""
        logger.info(f"{SERVICE_NAME} shutting down")
        await app.state.machine.shutdown()

    # ===== Error handling =====

    @app.exception_handler(AuctionError)
    async def auction_error_handler(request: Request, exc: AuctionError):
        machine = request.app.state.machine
        if isinstance(exc, InternalInconsistency):
            logger.error(f"Internal inconsistency on {request.url.path}: {exc}", exc_info=exc)
            exc = InternalInconsistency("Internal error; the operation was not applied")
        else:
            logger.info(f"Rejected {request.url.path}: {exc.code} - {exc.message}")
        return _error_response(machine, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error_response(
            request.app.state.machine,
            ValidationError(f"Invalid request: {details}", code='InvalidRequest')
        )

    # ===== Auction endpoints =====

    @app.get("/auction/state", response_model=AuctionStateResponse)
    def get_auction_state(machine: AuctionStateMachine = Depends(get_machine)):
        """
        Get the current auction state.

        Returns the last committed state, denormalized with the current lot
        and bidder. Never blocks on an in-flight mutation.
        """
        return _state_response(machine.snapshot(), "Current auction state")

    @app.post("/auction/start/{player_id}", response_model=AuctionStateResponse)
    async def start_lot(
        player_id: str,
        request: Optional[StartLotRequest] = None,
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Start the auction for a player.

        Raises:
            409 Conflict: Player sold or missing, or another lot active
            503 Service Unavailable: Ledger write failed
        """
        request = request or StartLotRequest()
        try:
            snapshot = await machine.start_lot(
                player_id,
                bid_increment=request.bid_increment,
                timer_duration=request.timer_duration
            )
            return _state_response(snapshot, "Auction started")

        except AuctionError:
            raise

        except Exception as e:
            logger.error(f"Failed to start auction: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to start auction: {e}")

    @app.post("/auction/pause", response_model=AuctionStateResponse)
    async def pause_auction(
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Pause the countdown of the running lot.

        Raises:
            409 Conflict: If the auction is not in progress
        """
        try:
            return _state_response(await machine.pause(), "Auction paused")

        except AuctionError:
            raise

        except Exception as e:
            logger.error(f"Failed to pause auction: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to pause auction: {e}")

    @app.post("/auction/resume", response_model=AuctionStateResponse)
    async def resume_auction(
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Resume a paused lot from its preserved remaining time.

        Raises:
            409 Conflict: If the auction is not paused
        """
        try:
            return _state_response(await machine.resume(), "Auction resumed")

        except AuctionError:
            raise

        except Exception as e:
            logger.error(f"Failed to resume auction: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to resume auction: {e}")

    @app.post("/auction/end", response_model=AuctionStateResponse)
    async def end_auction(
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Settle the current lot immediately.

        Sells to the current bidder if there is one, otherwise leaves the
        player unsold.

        Raises:
            409 Conflict: If no lot is active
        """
        try:
            return _state_response(await machine.end(), "Auction ended")

        except AuctionError:
            raise

        except Exception as e:
            logger.error(f"Failed to end auction: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to end auction: {e}")

    @app.post("/auction/bid", response_model=AuctionStateResponse)
    async def place_bid(
        request: BidRequest,
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_team)
    ):
        """
        Place a bid on the current lot.

        Teams always bid for themselves; an admin must name the team.

        Raises:
            400 Bad Request: Malformed amount or unknown team
            409 Conflict: Auction not active, bid too low, below increment,
                insufficient budget, or no slots left
        """
        team_id = principal.team_id if principal.is_team else request.team_id
        try:
            snapshot = await machine.submit_bid(team_id, request.amount)
            return _state_response(snapshot, "Bid placed successfully")

        except AuctionError:
            raise

        except Exception as e:
            logger.error(f"Failed to place bid: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to place bid: {e}")

    @app.get("/auction/history", response_model=HistoryResponse)
    def get_auction_history(machine: AuctionStateMachine = Depends(get_machine)):
        """Sold players, most expensive first."""
        return serialize_history(machine.ledger.list_players(), machine.ledger.list_teams())

    @app.get("/auction/config", response_model=AuctionConfigResponse)
    def get_auction_config(machine: AuctionStateMachine = Depends(get_machine)):
        """Defaults a client needs to render bid controls."""
        return AuctionConfigResponse(
            default_timer_seconds=machine.default_duration,
            default_bid_increment=machine.default_increment,
            default_base_price=config.DEFAULT_BASE_PRICE,
            positions=config.PLAYER_POSITIONS
        )

    # ===== Player endpoints =====

    @app.get("/players", response_model=PlayersListResponse)
    def list_players(
        position: Optional[str] = None,
        sold: Optional[bool] = None,
        machine: AuctionStateMachine = Depends(get_machine)
    ):
        """List players, optionally filtered by position and sold flag."""
        return serialize_players(
            machine.ledger.list_players(),
            machine.ledger.list_teams(),
            position=position,
            sold=sold
        )

    @app.get("/players/{player_id}", response_model=PlayerDetailResponse)
    def get_player(player_id: str, machine: AuctionStateMachine = Depends(get_machine)):
        player = machine.ledger.get_player(player_id)
        if player is None:
            raise HTTPException(status_code=404, detail="Player not found")
        teams = {t.team_id: t for t in machine.ledger.list_teams()}
        return PlayerDetailResponse(player=serialize_player(player, teams))

    @app.post("/players", response_model=PlayerDetailResponse)
    async def add_player(
        request: AddPlayerRequest,
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """Add a single player (admin entry)."""
        player = await machine.add_player(
            name=request.name,
            year=request.year,
            position=request.position,
            base_price=request.base_price,
            played_last_year=request.played_last_year
        )
        return PlayerDetailResponse(player=serialize_player(player, {}))

    @app.put("/players/{player_id}", response_model=PlayerDetailResponse)
    async def update_player(
        player_id: str,
        request: UpdatePlayerRequest,
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Edit an unsold player's details.

        Raises:
            400 Bad Request: No fields given or an invalid value
            404 Not Found: Unknown player
            409 Conflict: Player is the current lot or already sold
        """
        player = await machine.update_player(player_id, **request.model_dump(exclude_none=True))
        return PlayerDetailResponse(player=serialize_player(player, {}))

    @app.delete("/players/{player_id}", response_model=PlayerRemovedResponse)
    async def delete_player(
        player_id: str,
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Remove an unsold player from the pool.

        Raises:
            404 Not Found: Unknown player
            409 Conflict: Player is the current lot or already sold
        """
        player = await machine.delete_player(player_id)
        return PlayerRemovedResponse(
            message=f"Removed {player.name}",
            player=serialize_player(player, {})
        )

    @app.post("/players/{player_id}/revert", response_model=RevertResponse)
    async def revert_player(
        player_id: str,
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_admin)
    ):
        """
        Revert a sold player and refund the team.

        Raises:
            404 Not Found: Unknown player
            409 Conflict: Player is not sold
        """
        original = machine.ledger.get_player(player_id)
        try:
            snapshot = await machine.revert(player_id)

        except AuctionError:
            raise

        except Exception as e:
            logger.error(f"Failed to revert player {player_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to revert player: {e}")

        player = machine.ledger.get_player(player_id)
        team = machine.ledger.get_team(original.sold_to_team_id)
        return RevertResponse(
            message=f"Reverted {player.name}",
            player=serialize_player(player, {}),
            refunded=original.sold_price or 0,
            team=serialize_team(team, machine.ledger.list_players()),
            auction_state=snapshot
        )

    # ===== Team endpoints =====

    @app.get("/teams", response_model=TeamsListResponse)
    def list_teams(machine: AuctionStateMachine = Depends(get_machine)):
        return serialize_teams(machine.ledger.list_teams(), machine.ledger.list_players())

    # Fixed paths before /teams/{team_id}
    @app.get("/teams/me", response_model=TeamDetailResponse)
    def get_my_team(
        machine: AuctionStateMachine = Depends(get_machine),
        principal: Principal = Depends(require_team)
    ):
        """The calling team's budget, roster and spend."""
        if not principal.is_team:
            raise HTTPException(status_code=403, detail="Team access required")

        team = machine.ledger.get_team(principal.team_id)
        if team is None:
            raise HTTPException(status_code=404, detail="Team not found")
        return serialize_team_detail(team, machine.ledger.list_players())

    @app.get("/teams/leaderboard", response_model=LeaderboardResponse)
    def get_leaderboard(machine: AuctionStateMachine = Depends(get_machine)):
        """Teams ranked by total spent, highest first."""
        return serialize_leaderboard(machine.ledger.get_team_summary())

    @app.get("/teams/{team_id}", response_model=TeamDetailResponse)
    def get_team(team_id: str, machine: AuctionStateMachine = Depends(get_machine)):
        """Team with roster, total spent and per-position counts."""
        team = machine.ledger.get_team(team_id)
        if team is None:
            raise HTTPException(status_code=404, detail="Team not found")
        return serialize_team_detail(team, machine.ledger.list_players())

    # ===== Real-time feed =====

    @app.websocket("/ws")
    async def auction_feed(
        websocket: WebSocket,
        role: str = 'spectator',
        team_id: Optional[str] = None,
        token: Optional[str] = None
    ):
        """
        Subscribe to live auction events.

        A bearer token (Authorization header, or ?token= for browsers) fixes
        the role and team to the credential's; without one the declared role
        is used. The first message is always a state-snapshot. Clients may send
        {"action": "snapshot"} to resync; any other message is rejected.
        """
        await websocket.accept()
        broadcaster = websocket.app.state.machine.broadcaster

        authorization = websocket.headers.get('authorization')
        if not authorization and token:
            authorization = f"Bearer {token}"
        if authorization:
            principal = websocket.app.state.registry.resolve(authorization)
            if principal is None:
                logger.info("Feed connection rejected: invalid token")
                await websocket.send_json({
                    'event': REJECTED,
                    'payload': {'code': 'InvalidToken', 'message': "Invalid or expired token"}
                })
                await websocket.close(code=1008)
                return
            role, team_id = principal.role, principal.team_id

        try:
            subscriber = broadcaster.join(role, team_id)
        except ValidationError as e:
            await websocket.send_json({'event': REJECTED, 'payload': e.to_dict()})
            await websocket.close(code=1008)
            return

        sender = asyncio.create_task(_pump(websocket, subscriber))
        receiver = asyncio.create_task(_receive(websocket, subscriber, broadcaster))

        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        broadcaster.leave(subscriber)

        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"Subscriber {subscriber.subscriber_id} connection error: {exc}")

    @app.get("/health")
    def health_check():
        """
        Simple health check endpoint.

        Returns:
            Status OK if server is running
        """
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION
        }

    return app


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Forward queued events to the socket until the subscriber is dropped."""
    while True:
        message = await subscriber.queue.get()
        if message is None:
            await websocket.close(code=1013)
            return
        await websocket.send_json(message)


async def _receive(
    websocket: WebSocket,
    subscriber: Subscriber,
    broadcaster: BroadcastCoordinator
) -> None:
    """Handle inbound messages. The feed never accepts mutations."""
    while True:
        text = await websocket.receive_text()
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            message = None

        action = message.get('action') if isinstance(message, dict) else None
        if action == 'snapshot':
            broadcaster.send_to(subscriber, STATE_SNAPSHOT, {})
            continue

        logger.warning(
            f"Subscriber {subscriber.subscriber_id} ({subscriber.role}) sent "
            f"unsupported action {action!r}; ignored"
        )
        broadcaster.send_to(subscriber, REJECTED, {
            'action': action,
            'message': "The live feed is read-only; use the request API for bids and controls"
        })


app = create_app()
