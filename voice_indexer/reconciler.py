"""
Catch-up reconciliation against the contract's live auction counter.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .config import ChainContext
from .healer import HealResult, HealStatus, heal_auction
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class HealTally:
    healed: int = 0
    no_winner: int = 0
    pending: int = 0
    failed: int = 0
    failed_ids: List[int] = field(default_factory=list)

    def add(self, result: HealResult) -> None:
        if result.status == HealStatus.HEALED:
            self.healed += 1
        elif result.status == HealStatus.NO_WINNER:
            self.no_winner += 1
        elif result.status == HealStatus.PENDING:
            self.pending += 1
        else:
            self.failed += 1
            self.failed_ids.append(result.auction_id)

    @property
    def total(self) -> int:
        return self.healed + self.no_winner + self.pending + self.failed

    def __str__(self) -> str:
        return f"{self.healed} healed, {self.no_winner} with no winner, {self.pending} pending, {self.failed} failed"


@dataclass
class CatchUpResult:
    current_auction_id: int
    last_settled_auction_id: int
    last_classified_before: int
    tally: HealTally


def heal_missing_auctions(chain: ChainContext, client, store: Store, auction_ids: Iterable[int]) -> HealTally:
    """Heal ids one by one, oldest first; a failed id is counted and skipped"""
    tally = HealTally()
    auction_ids = sorted(auction_ids)
    if not auction_ids:
        return tally

    logger.info(f"[Chain {chain.chain_id}] Attempting to heal {len(auction_ids)} auctions...")
    for auction_id in auction_ids:
        tally.add(heal_auction(chain, client, store, auction_id))
    return tally


def catch_up(chain: ChainContext, client, store: Store) -> Optional[CatchUpResult]:
    """Classify every settled auction past the highest one already stored.

    The auction in progress is currentAuctionId, so the last settled one is
    currentAuctionId - 1. Returns None when the counter cannot be read.
    """
    try:
        current_auction_id = client.current_auction_id()
    except Exception as e:
        logger.error(f"[Chain {chain.chain_id}] Error fetching current auction ID: {e}")
        return None

    last_settled = max(current_auction_id - 1, 0)
    with store.connect() as conn:
        last_classified = store.max_classified_auction_id(conn, chain.chain_id)

    logger.info(f"[Chain {chain.chain_id}] 📊 Current blockchain auction: {current_auction_id}, last classified in DB: {last_classified}")

    tally = HealTally()
    if last_settled > last_classified:
        behind = list(range(last_classified + 1, last_settled + 1))
        logger.warning(f"[Chain {chain.chain_id}] ⚠️  Database is {len(behind)} auctions behind blockchain")
        tally = heal_missing_auctions(chain, client, store, behind)
        logger.info(f"[Chain {chain.chain_id}] ✅ Catch-up: {tally}")
    else:
        logger.debug(f"[Chain {chain.chain_id}] Database is up to date with blockchain")

    return CatchUpResult(
        current_auction_id=current_auction_id,
        last_settled_auction_id=last_settled,
        last_classified_before=last_classified,
        tally=tally,
    )
