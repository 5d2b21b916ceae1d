#!/usr/bin/env python3
"""
Tests for the consumer API
"""

import pytest
from fastapi.testclient import TestClient

from voice_api.app import create_app
from voice_api.config import Settings
from voice_indexer.config import ZERO_ADDRESS
from voice_indexer.store import POSTS_STREAM, TipRecord, WinnerRecord

from conftest import ALICE, BOB, CAROL, tx_hash


def _winner(auction_id, winner=ALICE, bid=10**18, chain_id=31337):
    return WinnerRecord(
        chain_id=chain_id, auction_id=auction_id, winner=winner, winning_bid=bid, text=f'post {auction_id}',
        image_cid='', voice_cid='', block_number=auction_id * 10, transaction_hash=tx_hash(auction_id),
        created_at=1_700_000_000 + auction_id,
    )


def _tip(auction_id, n, tipper, amount):
    return TipRecord(chain_id=31337, auction_id=auction_id, tipper=tipper, amount=amount,
                     block_number=100 + n, transaction_hash=tx_hash(500 + n))


@pytest.fixture
def seeded(store):
    huge = 2**100
    with store.transaction() as conn:
        store.insert_winner(conn, _winner(1, ALICE))
        store.insert_winner(conn, _winner(2, BOB))
        store.insert_winner(conn, _winner(4, ALICE, bid=3 * 10**18))
        # Legacy row written before zero winners were filtered at ingest
        store.insert_winner(conn, _winner(5, ZERO_ADDRESS, bid=0))
        store.insert_empty_auction(conn, 31337, 6)
        store.insert_tip(conn, _tip(1, 1, BOB, huge))
        store.insert_tip(conn, _tip(1, 2, CAROL, 5))
        store.insert_tip(conn, _tip(2, 3, ALICE, 7))
        for auction_id in (1, 2):
            store.recompute_tips(conn, 31337, auction_id)
        store.advance_cursor(conn, 31337, POSTS_STREAM, 1234)
    return store


class StubScheduler:
    def __init__(self):
        self.triggered = []

    def trigger(self, chain_id=None):
        if chain_id not in (None, 31337):
            raise ValueError(f"Chain {chain_id} is not configured for sync")
        self.triggered.append(chain_id)
        return [31337]

    def status(self):
        return {'running': True, 'interval': 30, 'validation': True,
                'networks': [{'chain_id': 31337, 'name': 'Hardhat Local', 'contract_address': None}],
                'in_flight': [], 'last_reports': {}}


def _client(store, scheduler=None):
    settings = Settings(database_url=str(store.engine.url), default_chain_id=31337, run_sync_worker=False)
    return TestClient(create_app(settings, store=store, scheduler=scheduler))


def test_winners_newest_first_without_zero_winner(seeded):
    with _client(seeded) as client:
        response = client.get('/api/winners')

    assert response.status_code == 200
    data = response.json()
    assert data['chain_id'] == 31337
    assert [p['auction_id'] for p in data['posts']] == [4, 2, 1]
    assert data['count'] == 3
    assert data['posts'][2]['tips_received'] == str(2**100 + 5)


def test_winners_for_other_chain_is_empty(seeded):
    with _client(seeded) as client:
        data = client.get('/api/winners', params={'chain_id': 421614}).json()
    assert data['posts'] == []


def test_unsupported_chain_id(seeded):
    with _client(seeded) as client:
        assert client.get('/api/winners', params={'chain_id': 999}).status_code == 400


def test_profile_normalizes_address_and_sums_stats(seeded):
    with _client(seeded) as client:
        data = client.get(f'/api/profile/{ALICE.lower()}').json()

    assert data['address'] == ALICE
    assert [p['auction_id'] for p in data['posts']] == [4, 1]
    assert data['stats'] == {
        'total_wins': 2,
        'total_tips_received': str(2**100 + 5),
        'total_tips_given': '7',
    }
    assert [t['auction_id'] for t in data['tips_given']] == [2]


def test_profile_invalid_address(seeded):
    with _client(seeded) as client:
        assert client.get('/api/profile/0x1234').status_code == 400


def test_tips_by_auction_and_tipper(seeded):
    with _client(seeded) as client:
        by_auction = client.get('/api/tips', params={'auction_id': 1}).json()
        by_tipper = client.get('/api/tips', params={'tipper': CAROL.lower()}).json()
        neither = client.get('/api/tips')

    assert by_auction['count'] == 2
    assert by_auction['total'] == str(2**100 + 5)
    assert by_auction['post_tips_received'] == by_auction['total']
    assert by_tipper['count'] == 1
    assert by_tipper['tips'][0]['tipper'] == CAROL
    assert neither.status_code == 400


def test_leaderboard(seeded):
    with _client(seeded) as client:
        entries = client.get('/api/leaderboard').json()['entries']

    assert [(e['rank'], e['address'], e['total_wins']) for e in entries] == [(1, ALICE, 2), (2, BOB, 1)]
    assert entries[0]['total_spent'] == str(4 * 10**18)


def test_sync_status_reports_gaps(seeded):
    with _client(seeded) as client:
        data = client.get('/api/sync', params={'chain_id': 31337}).json()

    status = data['networks'][0]
    assert status['last_synced_blocks'] == {'posts': 1234, 'tips': None}
    assert status['counts'] == {'posts': 4, 'tips': 3, 'empty_auctions': 1}
    assert status['validation']['last_auction_id'] == 6
    assert status['validation']['missing_auctions'] == [3]
    assert status['validation']['has_gaps'] is True


def test_sync_status_all_chains(seeded):
    with _client(seeded) as client:
        data = client.get('/api/sync').json()
    assert [n['chain_id'] for n in data['networks']] == [31337]


def test_manual_sync_requires_worker(seeded):
    with _client(seeded) as client:
        assert client.post('/api/sync').status_code == 503
        assert client.get('/api/sync-worker').json()['running'] is False


def test_manual_sync_is_queued(seeded):
    scheduler = StubScheduler()
    with _client(seeded, scheduler) as client:
        response = client.post('/api/sync', params={'chain_id': 31337})
        unknown = client.post('/api/sync', params={'chain_id': 421614})
        worker = client.get('/api/sync-worker').json()

    assert response.status_code == 202
    assert response.json()['chain_ids'] == [31337]
    assert scheduler.triggered == [31337]
    assert unknown.status_code == 404
    assert worker['running'] is True
    assert worker['networks'][0]['chain_id'] == 31337


def test_health(seeded):
    with _client(seeded) as client:
        data = client.get('/api/health').json()
    assert data['status'] == 'healthy'
    assert data['database'] == 'connected'
