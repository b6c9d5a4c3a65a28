"""
HTTP client for a running auction server.

Wraps the request surface (state query, team bids, admin controls) for the
CLI and for scripted tooling. Rejected operations come back as
AuctionRequestError carrying the server's error code and its current state.
"""

import logging
import time
import requests
from typing import Dict, List, Optional

from .. import config

logger = logging.getLogger(__name__)


class AuctionRequestError(Exception):
    """The server rejected a request."""

    def __init__(self, status_code: int, code: str, message: str, auction_state: Optional[Dict] = None):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.auction_state = auction_state


class AuctionClient:
    """Client for the auction request API."""

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        token: Optional[str] = None,
        timeout: int = config.CLIENT_TIMEOUT_SECONDS
    ):
        """
        Initialize auction client.

        Args:
            base_url: Server root URL
            token: Bearer token (admin or team); None for public reads only
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        # Session for connection pooling
        self.session = requests.Session()
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    # ===== Reads =====

    def get_state(self) -> Dict:
        """
        Fetch the current auction state.

        Returns:
            The auction_state object from the server
        """
        return self._make_request('GET', '/auction/state')['auction_state']

    def get_history(self) -> Dict:
        return self._make_request('GET', '/auction/history')

    def list_players(self, position: Optional[str] = None, sold: Optional[bool] = None) -> Dict:
        params = {}
        if position:
            params['position'] = position
        if sold is not None:
            params['sold'] = str(sold).lower()
        return self._make_request('GET', '/players', params=params)

    def list_teams(self) -> Dict:
        return self._make_request('GET', '/teams')

    def get_my_team(self) -> Dict:
        """Roster and spend of the team this client's token belongs to."""
        return self._make_request('GET', '/teams/me')['team']

    def get_leaderboard(self) -> List[Dict]:
        return self._make_request('GET', '/teams/leaderboard')['leaderboard']

    # ===== Team operations =====

    def submit_bid(self, amount: int, team_id: Optional[str] = None) -> Dict:
        """
        Place a bid on the current lot.

        Args:
            amount: Proposed bid
            team_id: Team to bid for (only honoured for admin tokens)

        Returns:
            The auction_state after the bid

        Raises:
            AuctionRequestError: If the bid was rejected
        """
        body = {'amount': amount}
        if team_id is not None:
            body['team_id'] = team_id
        return self._make_request('POST', '/auction/bid', json=body)['auction_state']

    # ===== Admin operations =====

    def start_lot(
        self,
        player_id: str,
        bid_increment: Optional[int] = None,
        timer_duration: Optional[int] = None
    ) -> Dict:
        body = {}
        if bid_increment is not None:
            body['bid_increment'] = bid_increment
        if timer_duration is not None:
            body['timer_duration'] = timer_duration
        return self._make_request('POST', f'/auction/start/{player_id}', json=body)['auction_state']

    def pause(self) -> Dict:
        return self._make_request('POST', '/auction/pause')['auction_state']

    def resume(self) -> Dict:
        return self._make_request('POST', '/auction/resume')['auction_state']

    def end(self) -> Dict:
        return self._make_request('POST', '/auction/end')['auction_state']

    def revert(self, player_id: str) -> Dict:
        return self._make_request('POST', f'/players/{player_id}/revert')

    def update_player(self, player_id: str, **fields) -> Dict:
        return self._make_request('PUT', f'/players/{player_id}', json=fields)['player']

    def delete_player(self, player_id: str) -> Dict:
        return self._make_request('DELETE', f'/players/{player_id}')['player']

    # ===== Transport =====

    def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict] = None,
        json: Optional[Dict] = None,
        max_retries: int = 3
    ) -> Dict:
        """
        Make HTTP request to the auction server.

        Only GETs are retried on timeout; a mutation is sent once, since a
        retried bid could land after the state it was meant for.

        Raises:
            AuctionRequestError: If the server answered with an error body
            requests.RequestException: On transport failure
        """
        url = f"{self.base_url}{path}"
        attempts = max_retries if method == 'GET' else 1

        for attempt in range(1, attempts + 1):
            try:
                logger.debug(f"{method} {url} (attempt {attempt}/{attempts})")
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    timeout=self.timeout
                )
                break

            except requests.Timeout:
                logger.warning(f"Request timeout (attempt {attempt}/{attempts})")
                if attempt == attempts:
                    raise
                time.sleep(2 ** attempt)  # Exponential backoff

        if response.status_code >= 400:
            raise self._to_error(response)

        return response.json()

    @staticmethod
    def _to_error(response: requests.Response) -> AuctionRequestError:
        try:
            body = response.json()
        except ValueError:
            body = {}

        error = body.get('error') if isinstance(body, dict) else None
        if isinstance(error, dict):
            return AuctionRequestError(
                response.status_code,
                error.get('code', 'Error'),
                error.get('message', ''),
                body.get('auction_state')
            )

        # FastAPI HTTPException bodies (auth failures, 404s)
        detail = body.get('detail', response.text) if isinstance(body, dict) else response.text
        return AuctionRequestError(response.status_code, 'HTTPError', str(detail))

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
