"""
Gap detection over classified auction ids.
"""
import logging
from typing import List

from .store import Store

logger = logging.getLogger(__name__)


def detect_missing_auctions(store: Store, chain_id: int) -> List[int]:
    """Auction ids inside [min, max] of the classified ids that have no post or tombstone.

    Only interior gaps: ids past the highest classified one are the catch-up's job.
    """
    with store.connect() as conn:
        known = store.classified_auction_ids(conn, chain_id)

    if not known:
        return []

    lowest, highest = min(known), max(known)
    missing = [auction_id for auction_id in range(lowest, highest + 1) if auction_id not in known]
    if missing:
        logger.debug(f"[Chain {chain_id}] {len(missing)} gaps in auctions {lowest}-{highest}")
    return missing
