"""
Persistent store for the replica: posts (winners), tips, empty-auction
tombstones and per-stream sync cursors.

Every row is addressable by (chain_id, auction_id) or (chain_id, transaction_hash).
Writes use INSERT ... ON CONFLICT DO NOTHING so replays are harmless; the SQL is
valid on both SQLite (the default embedded store) and PostgreSQL.
"""
import time
import logging
from dataclasses import dataclass
from typing import Optional, Set

from sqlalchemy import (
    BigInteger, Column, Index, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text,
    UniqueConstraint, create_engine, event, text,
)
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

POSTS_STREAM = 'last_block_posts'
TIPS_STREAM = 'last_block_tips'
STREAM_KEYS = (POSTS_STREAM, TIPS_STREAM)

# Healed posts have no source log
UNKNOWN_BLOCK_NUMBER = 0
UNKNOWN_TX_HASH = '0x' + '0' * 64

metadata = MetaData()

posts = Table(
    'posts', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('chain_id', Integer, nullable=False),
    Column('auction_id', BigInteger, nullable=False),
    Column('winner', String(42), nullable=False),
    Column('winning_bid', Text, nullable=False),
    Column('text', Text, nullable=False, server_default=''),
    Column('image_cid', Text, nullable=False, server_default=''),
    Column('voice_cid', Text, nullable=False, server_default=''),
    Column('block_number', BigInteger, nullable=False),
    Column('transaction_hash', String(66), nullable=False),
    Column('tips_received', Text, nullable=False, server_default='0'),
    Column('created_at', BigInteger, nullable=False),
    UniqueConstraint('chain_id', 'auction_id', name='uq_posts_chain_auction'),
    Index('idx_posts_winner', 'chain_id', 'winner'),
)

tips = Table(
    'tips', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('chain_id', Integer, nullable=False),
    Column('auction_id', BigInteger, nullable=False),
    Column('tipper', String(42), nullable=False),
    Column('amount', Text, nullable=False),
    Column('block_number', BigInteger, nullable=False),
    Column('transaction_hash', String(66), nullable=False),
    Column('created_at', BigInteger, nullable=False),
    UniqueConstraint('chain_id', 'transaction_hash', name='uq_tips_chain_tx'),
    Index('idx_tips_auction', 'chain_id', 'auction_id'),
    Index('idx_tips_tipper', 'chain_id', 'tipper'),
)

empty_auctions = Table(
    'empty_auctions', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('chain_id', Integer, nullable=False),
    Column('auction_id', BigInteger, nullable=False),
    Column('reason', Text, nullable=False, server_default='no_winner'),
    Column('checked_at', BigInteger, nullable=False),
    UniqueConstraint('chain_id', 'auction_id', name='uq_empty_chain_auction'),
)

indexer_state = Table(
    'indexer_state', metadata,
    Column('chain_id', Integer, nullable=False),
    Column('stream_key', String(64), nullable=False),
    Column('last_block', BigInteger, nullable=False),
    Column('updated_at', BigInteger, nullable=False),
    PrimaryKeyConstraint('chain_id', 'stream_key'),
)


@dataclass(frozen=True)
class WinnerRecord:
    chain_id: int
    auction_id: int
    winner: str
    winning_bid: int
    text: str
    image_cid: str
    voice_cid: str
    block_number: int
    transaction_hash: str
    created_at: int


@dataclass(frozen=True)
class TipRecord:
    chain_id: int
    auction_id: int
    tipper: str
    amount: int
    block_number: int
    transaction_hash: str


def create_store_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine; SQLite gets WAL and a generous busy timeout"""
    if database_url.startswith('sqlite'):
        engine = create_engine(
            database_url,
            connect_args={'check_same_thread': False, 'timeout': 30},
        )

        @event.listens_for(engine, 'connect')
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA journal_mode=WAL')
            cursor.execute('PRAGMA busy_timeout=30000')
            cursor.close()

        return engine

    return create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)


class Store:
    """Thin query layer over the replica tables.

    Methods that write take an open Connection so the caller controls the
    transaction boundary (one block window = one transaction).
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> 'Store':
        return cls(create_store_engine(database_url))

    def init_schema(self) -> None:
        metadata.create_all(self.engine)
        logger.info(f"Database schema ready ({self.engine.url.get_backend_name()})")

    def transaction(self):
        """Context manager yielding a Connection inside BEGIN ... COMMIT/ROLLBACK"""
        return self.engine.begin()

    def connect(self):
        return self.engine.connect()

    # -- cursors -----------------------------------------------------------

    def get_cursor(self, conn: Connection, chain_id: int, stream_key: str) -> Optional[int]:
        row = conn.execute(text("""
            SELECT last_block FROM indexer_state
            WHERE chain_id = :chain_id AND stream_key = :stream_key
        """), {'chain_id': chain_id, 'stream_key': stream_key}).fetchone()
        return row.last_block if row else None

    def advance_cursor(self, conn: Connection, chain_id: int, stream_key: str, block_number: int) -> None:
        """Move the cursor forward to block_number; never moves it backwards"""
        conn.execute(text("""
            INSERT INTO indexer_state (chain_id, stream_key, last_block, updated_at)
            VALUES (:chain_id, :stream_key, :last_block, :updated_at)
            ON CONFLICT (chain_id, stream_key) DO UPDATE SET
                last_block = CASE
                    WHEN excluded.last_block > indexer_state.last_block THEN excluded.last_block
                    ELSE indexer_state.last_block
                END,
                updated_at = excluded.updated_at
        """), {
            'chain_id': chain_id,
            'stream_key': stream_key,
            'last_block': block_number,
            'updated_at': int(time.time()),
        })

    def reset_cursor(self, chain_id: int, stream_key: str = None) -> int:
        """Manual reset: delete cursor rows so the next pass re-reads from start_block"""
        params = {'chain_id': chain_id}
        query = "DELETE FROM indexer_state WHERE chain_id = :chain_id"
        if stream_key:
            query += " AND stream_key = :stream_key"
            params['stream_key'] = stream_key
        with self.transaction() as conn:
            deleted = conn.execute(text(query), params).rowcount
        logger.warning(f"[Chain {chain_id}] Reset {deleted} sync cursor(s) ({stream_key or 'all streams'})")
        return deleted

    # -- writes ------------------------------------------------------------

    def insert_winner(self, conn: Connection, record: WinnerRecord) -> bool:
        """Insert a post; the first writer for (chain_id, auction_id) wins"""
        result = conn.execute(text("""
            INSERT INTO posts (
                chain_id, auction_id, winner, winning_bid, text, image_cid, voice_cid,
                block_number, transaction_hash, tips_received, created_at
            ) VALUES (
                :chain_id, :auction_id, :winner, :winning_bid, :text, :image_cid, :voice_cid,
                :block_number, :transaction_hash, '0', :created_at
            )
            ON CONFLICT (chain_id, auction_id) DO NOTHING
        """), {
            'chain_id': record.chain_id,
            'auction_id': record.auction_id,
            'winner': record.winner,
            'winning_bid': str(record.winning_bid),
            'text': record.text,
            'image_cid': record.image_cid,
            'voice_cid': record.voice_cid,
            'block_number': record.block_number,
            'transaction_hash': record.transaction_hash,
            'created_at': record.created_at,
        })
        return result.rowcount > 0

    def insert_tip(self, conn: Connection, tip: TipRecord) -> bool:
        result = conn.execute(text("""
            INSERT INTO tips (
                chain_id, auction_id, tipper, amount, block_number, transaction_hash, created_at
            ) VALUES (
                :chain_id, :auction_id, :tipper, :amount, :block_number, :transaction_hash, :created_at
            )
            ON CONFLICT (chain_id, transaction_hash) DO NOTHING
        """), {
            'chain_id': tip.chain_id,
            'auction_id': tip.auction_id,
            'tipper': tip.tipper,
            'amount': str(tip.amount),
            'block_number': tip.block_number,
            'transaction_hash': tip.transaction_hash,
            'created_at': int(time.time()),
        })
        return result.rowcount > 0

    def recompute_tips(self, conn: Connection, chain_id: int, auction_id: int) -> int:
        """Overwrite a post's tips aggregate with the sum of its tip rows.

        Summed in Python: amounts are uint256 and overflow SQL integers.
        """
        rows = conn.execute(text("""
            SELECT amount FROM tips WHERE chain_id = :chain_id AND auction_id = :auction_id
        """), {'chain_id': chain_id, 'auction_id': auction_id}).fetchall()
        total = sum(int(row.amount) for row in rows)

        conn.execute(text("""
            UPDATE posts SET tips_received = :total
            WHERE chain_id = :chain_id AND auction_id = :auction_id
        """), {'total': str(total), 'chain_id': chain_id, 'auction_id': auction_id})
        return total

    def insert_empty_auction(self, conn: Connection, chain_id: int, auction_id: int,
                             reason: str = 'no_winner') -> bool:
        result = conn.execute(text("""
            INSERT INTO empty_auctions (chain_id, auction_id, reason, checked_at)
            VALUES (:chain_id, :auction_id, :reason, :checked_at)
            ON CONFLICT (chain_id, auction_id) DO NOTHING
        """), {
            'chain_id': chain_id,
            'auction_id': auction_id,
            'reason': reason,
            'checked_at': int(time.time()),
        })
        return result.rowcount > 0

    # -- classification reads ----------------------------------------------

    def classified_auction_ids(self, conn: Connection, chain_id: int) -> Set[int]:
        """Auction ids with either a post or an empty-auction tombstone"""
        rows = conn.execute(text("""
            SELECT auction_id FROM posts WHERE chain_id = :chain_id
            UNION
            SELECT auction_id FROM empty_auctions WHERE chain_id = :chain_id
        """), {'chain_id': chain_id}).fetchall()
        return {int(row.auction_id) for row in rows}

    def max_classified_auction_id(self, conn: Connection, chain_id: int) -> int:
        """Highest classified auction id for a chain, 0 when nothing is stored"""
        row = conn.execute(text("""
            SELECT
                (SELECT MAX(auction_id) FROM posts WHERE chain_id = :chain_id) AS posts_max,
                (SELECT MAX(auction_id) FROM empty_auctions WHERE chain_id = :chain_id) AS empty_max
        """), {'chain_id': chain_id}).fetchone()
        return max(row.posts_max or 0, row.empty_max or 0)
