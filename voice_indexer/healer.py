"""
Backfill of single auction ids straight from the contract.

getAuctionResult is authoritative for winner and bid; the post content (text and
media CIDs) only exists in the NewWinner event, so it is recovered from the log
history when possible and left empty otherwise.
"""
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import ChainContext
from .events import NewWinnerEvent, decode_winner_log, is_zero_address, normalize_address
from .store import UNKNOWN_BLOCK_NUMBER, UNKNOWN_TX_HASH, Store, WinnerRecord

logger = logging.getLogger(__name__)


class HealStatus(str, Enum):
    HEALED = 'healed'
    NO_WINNER = 'no_winner'
    PENDING = 'pending'
    FAILED = 'failed'


@dataclass(frozen=True)
class HealResult:
    auction_id: int
    status: HealStatus
    record: Optional[WinnerRecord] = None
    error: Optional[str] = None


def find_winner_event(client, winner: str, auction_id: int) -> Optional[NewWinnerEvent]:
    """The NewWinner event for (winner, auction_id), or None if the history lacks it"""
    for log in client.find_winner_logs(winner):
        decoded = decode_winner_log(log)
        if isinstance(decoded, NewWinnerEvent) and decoded.auction_id == auction_id:
            return decoded
    return None


def heal_auction(chain: ChainContext, client, store: Store, auction_id: int,
                 clock: Callable[[], float] = time.time) -> HealResult:
    """Classify one auction id as healed, no-winner, still pending, or failed.

    Never raises; nothing is written unless the auction is settled.
    """
    try:
        result = client.get_auction_result(auction_id)
    except Exception as e:
        logger.error(f"[Chain {chain.chain_id}] ✗ Error reading auction {auction_id}: {e}")
        return HealResult(auction_id, HealStatus.FAILED, error=str(e))

    if not result.settled:
        logger.info(f"[Chain {chain.chain_id}] … Auction {auction_id} not settled yet")
        return HealResult(auction_id, HealStatus.PENDING)

    try:
        if is_zero_address(result.winner):
            with store.transaction() as conn:
                store.insert_empty_auction(conn, chain.chain_id, auction_id, 'no_winner')
            logger.info(f"[Chain {chain.chain_id}] ○ Auction {auction_id} has no winner (tracked)")
            return HealResult(auction_id, HealStatus.NO_WINNER)

        winner = normalize_address(result.winner)
        try:
            event = find_winner_event(client, winner, auction_id)
        except Exception as e:
            # Winner and bid are authoritative from the contract read; content is optional
            logger.warning(f"[Chain {chain.chain_id}] NewWinner search for auction {auction_id} failed: {e}")
            event = None
        if event is None:
            logger.warning(f"[Chain {chain.chain_id}] NewWinner event for auction {auction_id} not found, healing without post content")

        record = WinnerRecord(
            chain_id=chain.chain_id,
            auction_id=auction_id,
            winner=winner,
            winning_bid=result.winning_bid,
            text=event.text if event else '',
            image_cid=event.image_cid if event else '',
            voice_cid=event.voice_cid if event else '',
            block_number=UNKNOWN_BLOCK_NUMBER,
            transaction_hash=UNKNOWN_TX_HASH,
            created_at=int(clock()),
        )
        with store.transaction() as conn:
            if store.insert_winner(conn, record):
                store.recompute_tips(conn, chain.chain_id, auction_id)
    except Exception as e:
        logger.error(f"[Chain {chain.chain_id}] ✗ Error healing auction {auction_id}: {e}")
        return HealResult(auction_id, HealStatus.FAILED, error=str(e))

    logger.info(f"[Chain {chain.chain_id}] ✓ Healed auction {auction_id}")
    return HealResult(auction_id, HealStatus.HEALED, record=record)
