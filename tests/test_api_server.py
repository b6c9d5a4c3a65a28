"""
Tests for the HTTP request surface and the WebSocket feed.

Tests cover:
1. Auth (401 / 403)
2. Admin controls and team bids
3. Rejections carry the current state
4. Player / team / history reads
5. Player edits, own-team view and leaderboard
6. Live feed: snapshot on connect, events, read-only enforcement, credentials
"""

import pytest
from fastapi.testclient import TestClient

from draft_auction.auction.api_server import create_app
from draft_auction.auction.auth import Principal, TokenRegistry
from draft_auction.auction.history_store import SettlementHistory

ADMIN = {'Authorization': 'Bearer admin-token'}
ALPHA = {'Authorization': 'Bearer alpha-token'}
BRAVO = {'Authorization': 'Bearer bravo-token'}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def registry():
    return TokenRegistry({
        'admin-token': Principal(role='admin', name='Auctioneer'),
        'alpha-token': Principal(role='team', team_id='1', name='Alpha'),
        'bravo-token': Principal(role='team', team_id='2', name='Bravo'),
    })


@pytest.fixture
def client(ledger, registry):
    # Long tick interval: no countdown ticks interleave with assertions
    app = create_app(
        ledger=ledger,
        history=SettlementHistory(),
        registry=registry,
        tick_interval=60.0,
        default_duration=30
    )
    with TestClient(app) as test_client:
        yield test_client


def start_lot(client, player_id='1', **body):
    response = client.post(f'/auction/start/{player_id}', json=body, headers=ADMIN)
    assert response.status_code == 200, response.text
    return response.json()['auction_state']


# =============================================================================
# Auth
# =============================================================================


class TestAuth:
    """Role-gated routes."""

    def test_missing_token(self, client):
        assert client.post('/auction/pause').status_code == 401
        assert client.post('/auction/bid', json={'amount': 60000}).status_code == 401

    def test_unknown_token(self, client):
        response = client.post('/auction/pause', headers={'Authorization': 'Bearer forged'})
        assert response.status_code == 401

    def test_team_cannot_use_admin_routes(self, client):
        assert client.post('/auction/start/1', json={}, headers=ALPHA).status_code == 403
        assert client.post('/players/1/revert', headers=ALPHA).status_code == 403

    def test_public_reads(self, client):
        assert client.get('/auction/state').status_code == 200
        assert client.get('/players').status_code == 200
        assert client.get('/teams').status_code == 200
        assert client.get('/health').json()['status'] == 'ok'


# =============================================================================
# Auction flow
# =============================================================================


class TestAuctionFlow:
    """Admin controls and team bids over HTTP."""

    def test_initial_state(self, client):
        body = client.get('/auction/state').json()

        assert body['success'] is True
        assert body['auction_state']['status'] == 'not_started'
        assert body['auction_state']['current_lot'] is None

    def test_start_and_bid(self, client):
        state = start_lot(client, bid_increment=10000, timer_duration=30)
        assert state['status'] == 'in_progress'
        assert state['current_lot']['name'] == 'Arjun'
        assert state['minimum_next_bid'] == 60000

        response = client.post('/auction/bid', json={'amount': 60000}, headers=ALPHA)
        assert response.status_code == 200
        state = response.json()['auction_state']
        assert state['current_bid'] == 60000
        assert state['current_bidder'] == {'team_id': '1', 'name': 'Alpha'}
        assert state['time_remaining_seconds'] == 30

    def test_team_cannot_bid_for_another_team(self, client):
        start_lot(client)

        response = client.post('/auction/bid', json={'amount': 60000, 'team_id': '2'}, headers=ALPHA)

        assert response.status_code == 200
        assert response.json()['auction_state']['current_bidder_id'] == '1'

    def test_admin_bids_for_named_team(self, client):
        start_lot(client)

        response = client.post('/auction/bid', json={'amount': 60000, 'team_id': '2'}, headers=ADMIN)

        assert response.json()['auction_state']['current_bidder_id'] == '2'

    def test_below_increment_rejected_with_state(self, client):
        start_lot(client)
        client.post('/auction/bid', json={'amount': 60000}, headers=ALPHA)

        response = client.post('/auction/bid', json={'amount': 65000}, headers=BRAVO)

        assert response.status_code == 409
        body = response.json()
        assert body['success'] is False
        assert body['error']['code'] == 'BelowIncrement'
        assert body['error']['category'] == 'PreconditionFailed'
        assert '70000' in body['error']['message']
        assert body['auction_state']['current_bid'] == 60000
        assert body['auction_state']['current_bidder_id'] == '1'

    def test_malformed_bids(self, client):
        start_lot(client)

        response = client.post('/auction/bid', json={'amount': 'lots'}, headers=ALPHA)
        assert response.status_code == 400
        assert response.json()['error']['category'] == 'ValidationError'

        response = client.post('/auction/bid', json={'amount': 0}, headers=ALPHA)
        assert response.status_code == 400
        assert response.json()['auction_state']['current_bid'] == 50000

    def test_bid_without_active_lot(self, client):
        response = client.post('/auction/bid', json={'amount': 60000}, headers=ALPHA)

        assert response.status_code == 409
        assert response.json()['error']['code'] == 'AuctionNotActive'

    def test_budget_exhausted(self, client, registry):
        registry.register('charlie-token', Principal(role='team', team_id='3', name='Charlie'))
        start_lot(client)

        response = client.post(
            '/auction/bid', json={'amount': 70000},
            headers={'Authorization': 'Bearer charlie-token'}
        )

        assert response.status_code == 409
        assert response.json()['error']['category'] == 'ResourceExhausted'

    def test_pause_resume_end(self, client):
        start_lot(client)
        client.post('/auction/bid', json={'amount': 60000}, headers=BRAVO)

        paused = client.post('/auction/pause', headers=ADMIN).json()['auction_state']
        assert paused['status'] == 'paused'
        assert client.post('/auction/pause', headers=ADMIN).status_code == 409

        resumed = client.post('/auction/resume', headers=ADMIN).json()['auction_state']
        assert resumed['status'] == 'in_progress'
        assert resumed['time_remaining_seconds'] == paused['time_remaining_seconds']

        ended = client.post('/auction/end', headers=ADMIN).json()['auction_state']
        assert ended['status'] == 'not_started'
        assert client.post('/auction/end', headers=ADMIN).status_code == 409

        player = client.get('/players/1').json()['player']
        assert player['sold_to_team_id'] == '2'
        assert player['team'] == {'team_id': '2', 'name': 'Bravo'}

    def test_start_invalid_lot(self, client):
        response = client.post('/auction/start/404', json={}, headers=ADMIN)

        assert response.status_code == 409
        assert response.json()['error']['code'] == 'InvalidLot'

    def test_start_with_bad_duration(self, client):
        response = client.post('/auction/start/1', json={'timer_duration': 0}, headers=ADMIN)
        assert response.status_code == 400

    def test_config(self, client):
        body = client.get('/auction/config').json()
        assert body['default_timer_seconds'] == 30
        assert body['default_bid_increment'] == 10000
        assert 'Girls' in body['positions']


# =============================================================================
# Players, teams, history
# =============================================================================


class TestRecords:
    """Read endpoints and admin record changes."""

    def sell(self, client, player_id, headers, amount):
        start_lot(client, player_id)
        client.post('/auction/bid', json={'amount': amount}, headers=headers)
        client.post('/auction/end', headers=ADMIN)

    def test_player_filters(self, client):
        self.sell(client, '1', BRAVO, 70000)

        sold = client.get('/players', params={'sold': 'true'}).json()['players']
        assert [p['name'] for p in sold] == ['Arjun']

        keepers = client.get('/players', params={'position': 'GK'}).json()['players']
        assert [p['name'] for p in keepers] == ['Bela']

        everyone = client.get('/players', params={'position': 'all'}).json()['players']
        assert [p['name'] for p in everyone] == ['Arjun', 'Bela', 'Chen']

    def test_unknown_records(self, client):
        assert client.get('/players/404').status_code == 404
        assert client.get('/teams/404').status_code == 404

    def test_team_detail(self, client):
        self.sell(client, '1', BRAVO, 70000)
        self.sell(client, '3', BRAVO, 90000)

        team = client.get('/teams/2').json()['team']

        assert team['budget'] == 840000
        assert team['slots_left'] == 10
        assert team['players_count'] == 2
        assert team['stats']['total_spent'] == 160000
        assert team['stats']['players_by_position']['Striker'] == 1
        assert team['stats']['players_by_position']['Midfield'] == 1

    def test_history_sorted_by_price(self, client):
        self.sell(client, '1', BRAVO, 70000)
        self.sell(client, '3', ALPHA, 90000)

        sold = client.get('/auction/history').json()['sold_players']

        assert [(p['name'], p['sold_price']) for p in sold] == [('Chen', 90000), ('Arjun', 70000)]

    def test_revert(self, client):
        self.sell(client, '1', BRAVO, 70000)

        response = client.post('/players/1/revert', headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body['refunded'] == 70000
        assert body['team']['budget'] == 1000000
        assert body['team']['slots_left'] == 12
        assert body['player']['sold_to_team_id'] is None

        assert client.post('/players/1/revert', headers=ADMIN).status_code == 409
        assert client.post('/players/404/revert', headers=ADMIN).status_code == 404

    def test_add_player(self, client):
        response = client.post(
            '/players',
            json={'name': 'Dara', 'year': 2, 'position': 'Defender'},
            headers=ADMIN
        )

        assert response.status_code == 200
        player = response.json()['player']
        assert player['player_id'] == '4'
        assert player['base_price'] == 50000

        bad = client.post(
            '/players',
            json={'name': 'Eli', 'year': 2, 'position': 'Wizard'},
            headers=ADMIN
        )
        assert bad.status_code == 400

    def test_update_player(self, client):
        response = client.put('/players/2', json={'name': 'Bela K', 'base_price': 70000}, headers=ADMIN)

        assert response.status_code == 200
        player = response.json()['player']
        assert player['name'] == 'Bela K'
        assert player['base_price'] == 70000
        assert player['position'] == 'GK'

        assert client.put('/players/2', json={'year': 2}, headers=ALPHA).status_code == 403
        assert client.put('/players/2', json={}, headers=ADMIN).status_code == 400
        assert client.put('/players/2', json={'position': 'Wizard'}, headers=ADMIN).status_code == 400
        assert client.put('/players/404', json={'year': 2}, headers=ADMIN).status_code == 404

    def test_delete_player(self, client):
        response = client.delete('/players/2', headers=ADMIN)

        assert response.status_code == 200
        assert response.json()['player']['name'] == 'Bela'
        assert client.get('/players/2').status_code == 404
        assert client.delete('/players/2', headers=ADMIN).status_code == 404
        assert client.delete('/players/3', headers=BRAVO).status_code == 403

    def test_current_lot_cannot_be_edited_or_removed(self, client):
        start_lot(client, '1')

        response = client.put('/players/1', json={'year': 4}, headers=ADMIN)
        assert response.status_code == 409
        assert response.json()['error']['code'] == 'PlayerLocked'
        assert response.json()['auction_state']['current_lot_id'] == '1'

        assert client.delete('/players/1', headers=ADMIN).status_code == 409

        client.post('/auction/bid', json={'amount': 60000}, headers=ALPHA)
        client.post('/auction/end', headers=ADMIN)
        assert client.delete('/players/1', headers=ADMIN).status_code == 409

    def test_my_team(self, client):
        self.sell(client, '1', ALPHA, 70000)

        response = client.get('/teams/me', headers=ALPHA)

        assert response.status_code == 200
        team = response.json()['team']
        assert team['team_id'] == '1'
        assert team['budget'] == 930000
        assert [p['name'] for p in team['players']] == ['Arjun']
        assert team['stats']['total_spent'] == 70000

        assert client.get('/teams/me').status_code == 401
        assert client.get('/teams/me', headers=ADMIN).status_code == 403

    def test_leaderboard(self, client):
        self.sell(client, '1', BRAVO, 70000)
        self.sell(client, '3', ALPHA, 90000)

        response = client.get('/teams/leaderboard')

        assert response.status_code == 200
        board = response.json()['leaderboard']
        assert [(t['name'], t['total_spent']) for t in board] == [
            ('Alpha', 90000), ('Bravo', 70000), ('Charlie', 0)
        ]
        assert board[0]['budget'] == 910000
        assert board[0]['players_count'] == 1
        assert board[0]['slots_left'] == 11


# =============================================================================
# Live feed
# =============================================================================


class TestWebSocketFeed:
    """Read-only real-time feed."""

    def test_snapshot_then_events(self, client):
        with client.websocket_connect('/ws?role=spectator') as ws:
            first = ws.receive_json()
            assert first['event'] == 'state-snapshot'
            assert first['payload']['auction_state']['status'] == 'not_started'

            start_lot(client)
            started = ws.receive_json()
            assert started['event'] == 'lot-started'
            assert started['payload']['player']['name'] == 'Arjun'

            client.post('/auction/bid', json={'amount': 60000}, headers=ALPHA)
            bid = ws.receive_json()
            assert bid['event'] == 'bid-accepted'
            assert bid['payload']['amount'] == 60000
            assert bid['version'] > started['version']

    def test_team_receives_addressed_updates(self, client):
        with client.websocket_connect('/ws?role=team&team_id=2') as ws:
            ws.receive_json()
            start_lot(client)
            client.post('/auction/bid', json={'amount': 60000}, headers=BRAVO)
            client.post('/auction/end', headers=ADMIN)

            events = [ws.receive_json()['event'] for _ in range(4)]
            assert events == ['lot-started', 'bid-accepted', 'lot-settled-sold', 'team-updated']

    def test_resync_snapshot(self, client):
        with client.websocket_connect('/ws?role=admin') as ws:
            ws.receive_json()
            start_lot(client)
            ws.receive_json()

            ws.send_json({'action': 'snapshot'})
            snapshot = ws.receive_json()

            assert snapshot['event'] == 'state-snapshot'
            assert snapshot['payload']['auction_state']['status'] == 'in_progress'

    def test_mutations_rejected(self, client):
        start_lot(client)
        with client.websocket_connect('/ws?role=team&team_id=1') as ws:
            ws.receive_json()

            ws.send_json({'action': 'bid', 'amount': 60000})
            reply = ws.receive_json()

            assert reply['event'] == 'rejected'
            assert reply['payload']['action'] == 'bid'

        state = client.get('/auction/state').json()['auction_state']
        assert state['current_bidder_id'] is None

    def test_unknown_role_rejected(self, client):
        with client.websocket_connect('/ws?role=auctioneer') as ws:
            reply = ws.receive_json()
            assert reply['event'] == 'rejected'
            assert reply['payload']['code'] == 'UnknownRole'

    def test_token_sets_role_and_team(self, client):
        # The declared role is ignored when a credential is presented
        with client.websocket_connect('/ws?role=spectator', headers=ALPHA) as ws:
            ws.receive_json()
            start_lot(client)
            client.post('/auction/bid', json={'amount': 60000}, headers=ALPHA)
            client.post('/auction/end', headers=ADMIN)

            events = [ws.receive_json()['event'] for _ in range(4)]
            assert events == ['lot-started', 'bid-accepted', 'lot-settled-sold', 'team-updated']

    def test_token_as_query_parameter(self, client):
        with client.websocket_connect('/ws?token=bravo-token') as ws:
            assert ws.receive_json()['event'] == 'state-snapshot'
            start_lot(client)
            client.post('/auction/bid', json={'amount': 60000}, headers=BRAVO)
            client.post('/auction/end', headers=ADMIN)

            events = [ws.receive_json()['event'] for _ in range(4)]
            assert events[-1] == 'team-updated'

    def test_invalid_token_rejected(self, client):
        with client.websocket_connect('/ws?role=admin', headers={'Authorization': 'Bearer forged'}) as ws:
            reply = ws.receive_json()
            assert reply['event'] == 'rejected'
            assert reply['payload']['code'] == 'InvalidToken'
