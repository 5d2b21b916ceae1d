"""
Incremental sync of the NewWinner and PostTipped event streams.

Each stream keeps its own cursor per chain. The range [cursor + 1, head] is
walked in windows of block_batch_size; a window is decoded, written and its
cursor advanced inside one transaction, so a failure leaves the cursor at the
last fully applied window and a restart re-applies the (idempotent) remainder.
"""
import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .config import ChainContext
from .events import DecodeError, decode_tip_log, decode_winner_log
from .exceptions import LogDecodeError
from .store import POSTS_STREAM, TIPS_STREAM, Store, TipRecord, WinnerRecord

logger = logging.getLogger(__name__)


@dataclass
class StreamSyncResult:
    """Outcome of one stream's sync for one pass"""
    stream_key: str
    start_cursor: int
    cursor: int
    head: Optional[int] = None
    logs: int = 0
    inserted: int = 0
    skipped: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LogSyncer:
    """Applies contract event logs to the store for any chain it is handed"""

    def __init__(self, store: Store, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def sync_posts(self, chain: ChainContext, client) -> StreamSyncResult:
        return self._sync_stream(chain, client, POSTS_STREAM, client.get_winner_logs, self._apply_winner_logs)

    def sync_tips(self, chain: ChainContext, client) -> StreamSyncResult:
        return self._sync_stream(chain, client, TIPS_STREAM, client.get_tip_logs, self._apply_tip_logs)

    def sync_all(self, chain: ChainContext, client) -> Dict[str, StreamSyncResult]:
        return {
            POSTS_STREAM: self.sync_posts(chain, client),
            TIPS_STREAM: self.sync_tips(chain, client),
        }

    def _sync_stream(self, chain: ChainContext, client, stream_key: str, fetch_logs, apply_logs) -> StreamSyncResult:
        with self.store.connect() as conn:
            cursor = self.store.get_cursor(conn, chain.chain_id, stream_key)
        if cursor is None:
            cursor = chain.start_block

        result = StreamSyncResult(stream_key=stream_key, start_cursor=cursor, cursor=cursor)

        try:
            head = client.get_block_number()
        except Exception as e:
            logger.error(f"[Chain {chain.chain_id}] Failed to read head block for {stream_key}: {e}")
            result.error = f"head read failed: {e}"
            return result

        result.head = head
        if head < cursor + 1:
            logger.debug(f"[Chain {chain.chain_id}] {stream_key} up to date at block {cursor}")
            return result

        logger.info(f"[{head}, -{head - cursor}] [Chain {chain.chain_id}] Syncing {stream_key} from block {cursor + 1}")

        batch_size = max(1, chain.block_batch_size)
        from_block = cursor + 1
        while from_block <= head:
            to_block = min(from_block + batch_size - 1, head)

            try:
                logs = fetch_logs(from_block, to_block)
            except Exception as e:
                logger.error(f"[Chain {chain.chain_id}] Failed to fetch {stream_key} logs {from_block}-{to_block}: {e}")
                result.error = f"log fetch failed: {e}"
                break

            try:
                inserted, skipped = apply_logs(chain, client, logs, stream_key, to_block)
            except LogDecodeError as e:
                logger.critical(
                    f"[Chain {chain.chain_id}] ❌ Undecodable {stream_key} log in blocks {from_block}-{to_block}, "
                    f"window rolled back and cursor held at {result.cursor}: {e}"
                )
                result.error = f"decode failed: {e}"
                break
            except Exception as e:
                logger.error(f"[Chain {chain.chain_id}] Failed to apply {stream_key} logs {from_block}-{to_block}: {e}")
                result.error = f"write failed: {e}"
                break

            result.logs += len(logs)
            result.inserted += inserted
            result.skipped += skipped
            result.cursor = to_block
            from_block = to_block + 1

        return result

    def _decode_all(self, chain: ChainContext, logs: Iterable, decoder) -> List:
        """Decode every log or raise LogDecodeError; logs without an auction id are dropped"""
        events = []
        for log in logs:
            decoded = decoder(log)
            if isinstance(decoded, DecodeError):
                if decoded.skippable:
                    logger.warning(f"[Chain {chain.chain_id}] Skipping {decoded}")
                    continue
                raise LogDecodeError(str(decoded), decoded.block_number, decoded.transaction_hash)
            events.append(decoded)
        return events

    def _resolve_block_timestamps(self, chain: ChainContext, client, block_numbers: Iterable[int]) -> Dict[int, int]:
        timestamps = {}
        for block_number in sorted(set(block_numbers)):
            try:
                timestamps[block_number] = client.get_block_timestamp(block_number)
            except Exception as e:
                logger.warning(f"[Chain {chain.chain_id}] Could not fetch timestamp for block {block_number}, using now: {e}")
                timestamps[block_number] = int(self.clock())
        return timestamps

    def _apply_winner_logs(self, chain: ChainContext, client, logs, stream_key: str, to_block: int):
        events = self._decode_all(chain, logs, decode_winner_log)
        winners = [ev for ev in events if ev.has_winner]
        empty = len(events) - len(winners)

        # Network reads happen before the write transaction opens
        timestamps = self._resolve_block_timestamps(chain, client, (ev.block_number for ev in winners))

        inserted = 0
        with self.store.transaction() as conn:
            for ev in winners:
                record = WinnerRecord(
                    chain_id=chain.chain_id,
                    auction_id=ev.auction_id,
                    winner=ev.winner,
                    winning_bid=ev.amount,
                    text=ev.text,
                    image_cid=ev.image_cid,
                    voice_cid=ev.voice_cid,
                    block_number=ev.block_number,
                    transaction_hash=ev.transaction_hash,
                    created_at=timestamps[ev.block_number],
                )
                if self.store.insert_winner(conn, record):
                    inserted += 1
                    # Tips may have been synced before the post existed
                    self.store.recompute_tips(conn, chain.chain_id, ev.auction_id)
            self.store.advance_cursor(conn, chain.chain_id, stream_key, to_block)

        if events:
            logger.info(f"[{to_block}] [Chain {chain.chain_id}] Synced {inserted} posts ({empty} empty auctions skipped)")
        return inserted, empty

    def _apply_tip_logs(self, chain: ChainContext, client, logs, stream_key: str, to_block: int):
        events = self._decode_all(chain, logs, decode_tip_log)

        inserted = 0
        with self.store.transaction() as conn:
            for ev in events:
                tip = TipRecord(
                    chain_id=chain.chain_id,
                    auction_id=ev.auction_id,
                    tipper=ev.tipper,
                    amount=ev.amount,
                    block_number=ev.block_number,
                    transaction_hash=ev.transaction_hash,
                )
                if self.store.insert_tip(conn, tip):
                    inserted += 1
            for auction_id in sorted({ev.auction_id for ev in events}):
                self.store.recompute_tips(conn, chain.chain_id, auction_id)
            self.store.advance_cursor(conn, chain.chain_id, stream_key, to_block)

        if events:
            logger.info(f"[{to_block}] [Chain {chain.chain_id}] Synced {inserted} new tips ({len(events) - inserted} already known)")
        return inserted, 0
