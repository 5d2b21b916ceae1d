#!/usr/bin/env python3
"""
Tests for incremental event log sync
"""

from sqlalchemy import text

from voice_indexer.config import ZERO_ADDRESS
from voice_indexer.log_syncer import LogSyncer
from voice_indexer.store import POSTS_STREAM, TIPS_STREAM, Store

from conftest import ALICE, BASE_TIMESTAMP, BOB, CAROL, FakeChainClient, make_chain, tip_log, winner_log


def _posts(store, chain_id=31337):
    with store.connect() as conn:
        return conn.execute(text("""
            SELECT auction_id, winner, winning_bid, text, block_number, tips_received, created_at
            FROM posts WHERE chain_id = :c ORDER BY auction_id
        """), {'c': chain_id}).fetchall()


def _cursor(store, stream, chain_id=31337):
    with store.connect() as conn:
        return store.get_cursor(conn, chain_id, stream)


def _tip_count(store):
    with store.connect() as conn:
        return conn.execute(text("SELECT COUNT(*) FROM tips")).scalar()


def test_sync_posts_inserts_winners_and_advances_cursor(store, chain):
    client = FakeChainClient(head=50, winner_logs=[
        winner_log(1, winner=ALICE, block=10, text='first'),
        winner_log(2, winner=BOB, block=20, text='second'),
    ])
    result = LogSyncer(store).sync_posts(chain, client)

    assert result.ok
    assert result.inserted == 2
    assert result.cursor == 50
    assert _cursor(store, POSTS_STREAM) == 50

    rows = _posts(store)
    assert [(r.auction_id, r.winner, r.text) for r in rows] == [(1, ALICE, 'first'), (2, BOB, 'second')]
    assert rows[0].created_at == BASE_TIMESTAMP + 10
    assert rows[0].winning_bid == str(10**18)


def test_replay_is_idempotent(store, chain):
    client = FakeChainClient(
        head=30,
        winner_logs=[winner_log(1, block=5), winner_log(2, block=15)],
        tip_logs=[tip_log(1, amount=3, block=6), tip_log(1, amount=4, block=7)],
    )
    syncer = LogSyncer(store)
    syncer.sync_all(chain, client)
    before = (_posts(store), _tip_count(store))

    # Same range again from scratch
    store.reset_cursor(chain.chain_id)
    results = syncer.sync_all(chain, client)

    assert results[POSTS_STREAM].inserted == 0
    assert results[TIPS_STREAM].inserted == 0
    assert (_posts(store), _tip_count(store)) == before
    assert _posts(store)[0].tips_received == '7'


def test_nothing_to_do_when_cursor_at_head(store, chain):
    client = FakeChainClient(head=10, winner_logs=[winner_log(1, block=5)])
    syncer = LogSyncer(store)
    syncer.sync_posts(chain, client)
    client.fetch_calls.clear()

    result = syncer.sync_posts(chain, client)
    assert result.ok
    assert client.fetch_calls == []
    assert result.cursor == 10


def test_zero_winner_events_are_skipped(store, chain):
    client = FakeChainClient(head=10, winner_logs=[
        winner_log(1, winner=ZERO_ADDRESS, amount=0, block=3),
        winner_log(2, block=4),
    ])
    result = LogSyncer(store).sync_posts(chain, client)

    assert result.inserted == 1
    assert result.skipped == 1
    assert [r.auction_id for r in _posts(store)] == [2]
    with store.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM empty_auctions")).scalar() == 0


def test_range_is_walked_in_windows(store):
    chain = make_chain(block_batch_size=10)
    client = FakeChainClient(head=35, winner_logs=[winner_log(1, block=12), winner_log(2, block=33)])
    result = LogSyncer(store).sync_posts(chain, client)

    assert [(f, t) for _, f, t in client.fetch_calls] == [(1, 10), (11, 20), (21, 30), (31, 35)]
    assert result.inserted == 2
    assert _cursor(store, POSTS_STREAM) == 35


def test_start_block_seeds_cursor(store):
    chain = make_chain(start_block=100)
    client = FakeChainClient(head=120, winner_logs=[winner_log(1, block=90), winner_log(2, block=110)])
    LogSyncer(store).sync_posts(chain, client)

    assert client.fetch_calls[0][1] == 101
    assert [r.auction_id for r in _posts(store)] == [2]


def test_fetch_failure_keeps_cursor_at_last_window(store):
    chain = make_chain(block_batch_size=10)
    client = FakeChainClient(head=30, winner_logs=[winner_log(1, block=5), winner_log(2, block=15)])
    client.fail_fetch_from = {11}
    syncer = LogSyncer(store)

    result = syncer.sync_posts(chain, client)
    assert not result.ok
    assert result.cursor == 10
    assert _cursor(store, POSTS_STREAM) == 10
    assert [r.auction_id for r in _posts(store)] == [1]

    # Transient fault clears, next pass resumes where it stopped
    client.fail_fetch_from = set()
    client.fetch_calls.clear()
    result = syncer.sync_posts(chain, client)
    assert result.ok
    assert client.fetch_calls[0][1:] == (11, 20)
    assert [r.auction_id for r in _posts(store)] == [1, 2]


def test_undecodable_log_rolls_back_window(store):
    chain = make_chain(block_batch_size=10)
    client = FakeChainClient(head=30, winner_logs=[
        winner_log(1, block=5),
        winner_log(2, block=12),
        winner_log(3, winner='0xnot-an-address', block=14),
    ])
    result = LogSyncer(store).sync_posts(chain, client)

    assert not result.ok
    assert 'decode' in result.error
    # Window 11-20 rolled back as a whole, auction 2 included
    assert [r.auction_id for r in _posts(store)] == [1]
    assert _cursor(store, POSTS_STREAM) == 10


class FailingCursorStore(Store):
    """Fails the cursor advance for one window, after its rows were inserted"""

    def __init__(self, engine, fail_at_block):
        super().__init__(engine)
        self.fail_at_block = fail_at_block

    def advance_cursor(self, conn, chain_id, stream_key, block_number):
        if block_number == self.fail_at_block:
            raise RuntimeError("disk I/O error")
        super().advance_cursor(conn, chain_id, stream_key, block_number)


def test_write_failure_rolls_back_inserted_rows(store):
    chain = make_chain(block_batch_size=10)
    client = FakeChainClient(
        head=30,
        winner_logs=[winner_log(1, block=5), winner_log(2, block=12), winner_log(3, block=18)],
        tip_logs=[tip_log(1, amount=4, block=6), tip_log(2, amount=9, block=13)],
    )
    syncer = LogSyncer(FailingCursorStore(store.engine, fail_at_block=20))
    results = syncer.sync_all(chain, client)

    for stream in (POSTS_STREAM, TIPS_STREAM):
        assert 'write failed' in results[stream].error
        assert results[stream].cursor == 10
        assert _cursor(store, stream) == 10
    # Window 11-20 inserted posts 2 and 3 and a tip before failing; none of it survives
    assert [r.auction_id for r in _posts(store)] == [1]
    assert _tip_count(store) == 1

    # Next pass with a healthy store re-applies the window
    LogSyncer(store).sync_all(chain, client)
    assert [r.auction_id for r in _posts(store)] == [1, 2, 3]
    assert _posts(store)[1].tips_received == '9'


def test_undecodable_tip_rolls_back_window(store):
    chain = make_chain(block_batch_size=10)
    client = FakeChainClient(head=30, winner_logs=[winner_log(1, block=2)], tip_logs=[
        tip_log(1, amount=3, block=5),
        tip_log(1, amount=4, block=12),
        tip_log(1, tipper='0xnot-an-address', amount=5, block=15),
    ])
    syncer = LogSyncer(store)
    syncer.sync_posts(chain, client)
    result = syncer.sync_tips(chain, client)

    assert not result.ok
    assert 'decode' in result.error
    assert _cursor(store, TIPS_STREAM) == 10
    assert _tip_count(store) == 1
    assert _posts(store)[0].tips_received == '3'


def test_log_without_auction_id_is_skipped_on_both_streams(store, chain):
    client = FakeChainClient(
        head=10,
        winner_logs=[winner_log(None, block=2), winner_log(1, block=3)],
        tip_logs=[tip_log(None, block=4), tip_log(1, amount=9, block=5)],
    )
    results = LogSyncer(store).sync_all(chain, client)

    assert results[POSTS_STREAM].ok and results[TIPS_STREAM].ok
    assert _cursor(store, POSTS_STREAM) == 10
    assert _cursor(store, TIPS_STREAM) == 10
    assert _tip_count(store) == 1
    assert _posts(store)[0].tips_received == '9'


def test_tip_aggregate_accumulates_across_passes(store, chain):
    client = FakeChainClient(head=10, winner_logs=[winner_log(1, block=2)],
                             tip_logs=[tip_log(1, tipper=BOB, amount=100, block=3)])
    syncer = LogSyncer(store)
    syncer.sync_all(chain, client)
    assert _posts(store)[0].tips_received == '100'

    client.head = 20
    client.tip_logs.append(tip_log(1, tipper=CAROL, amount=250, block=15))
    syncer.sync_all(chain, client)
    assert _posts(store)[0].tips_received == '350'


def test_tips_synced_before_post_are_counted(store, chain):
    # Tip stream ahead of the post stream
    client = FakeChainClient(head=10, tip_logs=[tip_log(1, amount=40, block=8)])
    syncer = LogSyncer(store)
    syncer.sync_tips(chain, client)
    assert _posts(store) == []

    client.winner_logs = [winner_log(1, block=5)]
    syncer.sync_posts(chain, client)
    assert _posts(store)[0].tips_received == '40'


def test_head_read_failure_changes_nothing(store, chain):
    client = FakeChainClient(head=10, winner_logs=[winner_log(1, block=5)])
    client.fail_head = True
    result = LogSyncer(store).sync_posts(chain, client)

    assert not result.ok
    assert client.fetch_calls == []
    assert _cursor(store, POSTS_STREAM) is None


def test_missing_block_timestamp_falls_back_to_clock(store, chain):
    client = FakeChainClient(head=10, winner_logs=[winner_log(1, block=5)])
    client.fail_timestamps = True
    LogSyncer(store, clock=lambda: 1234.5).sync_posts(chain, client)

    assert _posts(store)[0].created_at == 1234


def test_chains_are_isolated(store, chain, other_chain):
    syncer = LogSyncer(store)
    syncer.sync_posts(chain, FakeChainClient(head=10, winner_logs=[winner_log(1, block=5)]))
    syncer.sync_posts(other_chain, FakeChainClient(head=99, winner_logs=[winner_log(1, winner=BOB, block=50)]))

    assert _cursor(store, POSTS_STREAM, 31337) == 10
    assert _cursor(store, POSTS_STREAM, 421614) == 99
    assert _posts(store, 31337)[0].winner == ALICE
    assert _posts(store, 421614)[0].winner == BOB
