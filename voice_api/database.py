#!/usr/bin/env python3
"""
Database access for the API: a request-scoped connection dependency and the
read queries consumers run against the replica.
"""

import logging
from typing import Dict, List, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.engine import Connection

from voice_indexer.config import ZERO_ADDRESS
from voice_indexer.gaps import detect_missing_auctions
from voice_indexer.store import POSTS_STREAM, TIPS_STREAM, Store

logger = logging.getLogger(__name__)

POST_COLUMNS = """
    chain_id, auction_id, winner, winning_bid, text, image_cid, voice_cid,
    block_number, transaction_hash, tips_received, created_at
"""

TIP_COLUMNS = "chain_id, auction_id, tipper, amount, block_number, transaction_hash, created_at"


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_db(request: Request):
    """Dependency to get a database connection"""
    with get_store(request).connect() as conn:
        yield conn


def check_database_connection(store: Store) -> bool:
    """Check if database connection is working"""
    try:
        with store.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


def _sum_amounts(values) -> int:
    # uint256 strings; SQL SUM would overflow
    return sum(int(v or 0) for v in values)


class DatabaseQueries:
    """Centralized read queries over posts, tips and sync state"""

    @staticmethod
    def get_all_posts(db: Connection, chain_id: int) -> List[Dict]:
        """Every post with a real winner, newest auction first"""
        result = db.execute(text(f"""
            SELECT {POST_COLUMNS} FROM posts
            WHERE chain_id = :chain_id
              AND winner IS NOT NULL
              AND LOWER(winner) != :zero
            ORDER BY auction_id DESC
        """), {"chain_id": chain_id, "zero": ZERO_ADDRESS})
        return [dict(row._mapping) for row in result]

    @staticmethod
    def get_posts_by_address(db: Connection, chain_id: int, address: str) -> List[Dict]:
        result = db.execute(text(f"""
            SELECT {POST_COLUMNS} FROM posts
            WHERE chain_id = :chain_id AND winner = :address
            ORDER BY auction_id DESC
        """), {"chain_id": chain_id, "address": address})
        return [dict(row._mapping) for row in result]

    @staticmethod
    def get_tips_by_address(db: Connection, chain_id: int, address: str) -> List[Dict]:
        result = db.execute(text(f"""
            SELECT {TIP_COLUMNS} FROM tips
            WHERE chain_id = :chain_id AND tipper = :address
            ORDER BY created_at DESC, block_number DESC
        """), {"chain_id": chain_id, "address": address})
        return [dict(row._mapping) for row in result]

    @staticmethod
    def get_tips_by_auction(db: Connection, chain_id: int, auction_id: int) -> List[Dict]:
        result = db.execute(text(f"""
            SELECT {TIP_COLUMNS} FROM tips
            WHERE chain_id = :chain_id AND auction_id = :auction_id
            ORDER BY created_at DESC, block_number DESC
        """), {"chain_id": chain_id, "auction_id": auction_id})
        return [dict(row._mapping) for row in result]

    @staticmethod
    def get_user_stats(db: Connection, chain_id: int, address: str) -> Dict:
        """Wins, tips received and tips given for one address on one chain"""
        received = db.execute(text("""
            SELECT tips_received FROM posts WHERE chain_id = :chain_id AND winner = :address
        """), {"chain_id": chain_id, "address": address}).scalars().all()

        given = db.execute(text("""
            SELECT amount FROM tips WHERE chain_id = :chain_id AND tipper = :address
        """), {"chain_id": chain_id, "address": address}).scalars().all()

        return {
            "total_wins": len(received),
            "total_tips_received": str(_sum_amounts(received)),
            "total_tips_given": str(_sum_amounts(given)),
        }

    @staticmethod
    def get_leaderboard(db: Connection, chain_id: int, limit: int = 25) -> List[Dict]:
        """Winners ranked by wins, then by tips received"""
        rows = db.execute(text("""
            SELECT winner, winning_bid, tips_received FROM posts
            WHERE chain_id = :chain_id AND LOWER(winner) != :zero
        """), {"chain_id": chain_id, "zero": ZERO_ADDRESS}).fetchall()

        board: Dict[str, Dict] = {}
        for row in rows:
            entry = board.setdefault(row.winner, {"address": row.winner, "wins": 0, "spent": 0, "tips": 0})
            entry["wins"] += 1
            entry["spent"] += int(row.winning_bid or 0)
            entry["tips"] += int(row.tips_received or 0)

        ranked = sorted(board.values(), key=lambda e: (-e["wins"], -e["tips"], e["address"]))[:limit]
        return [
            {
                "rank": i + 1,
                "address": e["address"],
                "total_wins": e["wins"],
                "total_spent": str(e["spent"]),
                "total_tips_received": str(e["tips"]),
            }
            for i, e in enumerate(ranked)
        ]

    @staticmethod
    def get_known_chain_ids(db: Connection) -> List[int]:
        rows = db.execute(text("""
            SELECT chain_id FROM posts
            UNION SELECT chain_id FROM empty_auctions
            UNION SELECT chain_id FROM indexer_state
        """)).scalars().all()
        return sorted(int(c) for c in rows)

    @staticmethod
    def get_sync_status(db: Connection, store: Store, chain_id: int) -> Dict:
        """Cursors, row counts, last classified auction and interior gaps"""
        counts = {}
        for table in ("posts", "tips", "empty_auctions"):
            counts[table] = db.execute(
                text(f"SELECT COUNT(*) FROM {table} WHERE chain_id = :chain_id"), {"chain_id": chain_id}
            ).scalar() or 0

        missing = detect_missing_auctions(store, chain_id)
        return {
            "chain_id": chain_id,
            "last_synced_blocks": {
                "posts": store.get_cursor(db, chain_id, POSTS_STREAM),
                "tips": store.get_cursor(db, chain_id, TIPS_STREAM),
            },
            "counts": counts,
            "validation": {
                "last_auction_id": store.max_classified_auction_id(db, chain_id),
                "missing_auctions": missing,
                "has_gaps": len(missing) > 0,
                "gap_count": len(missing),
            },
        }

    @staticmethod
    def get_tips_total(db: Connection, chain_id: int, auction_id: int) -> Optional[str]:
        row = db.execute(text("""
            SELECT tips_received FROM posts WHERE chain_id = :chain_id AND auction_id = :auction_id
        """), {"chain_id": chain_id, "auction_id": auction_id}).fetchone()
        return row.tips_received if row else None
