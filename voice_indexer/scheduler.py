"""
Periodic multi-chain sync.

One round runs a full pass per enabled chain: event log sync (posts, then tips),
gap detection, gap healing and catch-up. Chains run on a worker pool and never
affect each other; a chain whose previous pass is still in flight is skipped
for that round.
"""
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

from .chain_client import get_client
from .config import ChainContext
from .gaps import detect_missing_auctions
from .log_syncer import LogSyncer, StreamSyncResult
from .reconciler import HealTally, catch_up, heal_missing_auctions
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    chain_id: int
    started_at: float
    finished_at: float = 0.0
    streams: Dict[str, StreamSyncResult] = field(default_factory=dict)
    missing: List[int] = field(default_factory=list)
    gap_tally: Optional[HealTally] = None
    catch_up_tally: Optional[HealTally] = None
    current_auction_id: Optional[int] = None
    last_synced: int = 0
    validated: bool = False

    @property
    def up_to_date(self) -> Optional[bool]:
        if self.current_auction_id is None:
            return None
        return self.current_auction_id == 0 or self.last_synced >= self.current_auction_id - 1

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['up_to_date'] = self.up_to_date
        data['duration'] = round(self.finished_at - self.started_at, 3)
        return data


def sync_chain(chain: ChainContext, client, store: Store, validation: bool = True,
               syncer: LogSyncer = None) -> SyncReport:
    """One full, strictly sequential pass for one chain"""
    syncer = syncer or LogSyncer(store)
    report = SyncReport(chain_id=chain.chain_id, started_at=time.time())
    logger.info(f"🔄 [Chain {chain.chain_id}] Starting sync...")

    report.streams = syncer.sync_all(chain, client)

    if validation:
        report.validated = True
        report.missing = detect_missing_auctions(store, chain.chain_id)
        if report.missing:
            logger.warning(f"[Chain {chain.chain_id}] ⚠️  Found {len(report.missing)} missing auctions: {report.missing}")
            report.gap_tally = heal_missing_auctions(chain, client, store, report.missing)
            logger.info(f"[Chain {chain.chain_id}] ✅ Gap healing: {report.gap_tally}")
        else:
            logger.debug(f"[Chain {chain.chain_id}] No gaps detected")

        caught_up = catch_up(chain, client, store)
        if caught_up is not None:
            report.current_auction_id = caught_up.current_auction_id
            report.catch_up_tally = caught_up.tally

    with store.connect() as conn:
        report.last_synced = store.max_classified_auction_id(conn, chain.chain_id)
    report.finished_at = time.time()

    logger.info(f"🎉 [Chain {chain.chain_id}] Sync complete in {report.finished_at - report.started_at:.2f}s "
                f"(last auction {report.last_synced})")
    return report


class SyncScheduler:
    """Runs sync rounds over all enabled chains on a fixed interval"""

    def __init__(self, chains: List[ChainContext], store: Store, poll_interval: float = 30,
                 validation: bool = True, max_workers: int = None,
                 client_factory: Callable[[ChainContext], object] = get_client):
        self.chains = [chain for chain in chains if chain.enabled]
        self.store = store
        self.poll_interval = poll_interval
        self.validation = validation
        self.client_factory = client_factory
        self.syncer = LogSyncer(store)

        self.last_reports: Dict[int, SyncReport] = {}
        self.running = False
        self._clients: Dict[int, object] = {}
        self._locks = {chain.chain_id: threading.Lock() for chain in self.chains}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # At least one worker per chain, so a hung pass never queues another chain behind it
        self.max_workers = max(1, len(self.chains), max_workers or 0)
        if max_workers and max_workers < len(self.chains):
            logger.warning(f"max_workers={max_workers} is below the {len(self.chains)} enabled chains, using {self.max_workers}")
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix='chain-sync',
        )

        for chain in chains:
            if not chain.enabled:
                logger.debug(f"{chain}: disabled (no contract address)")

    def _client_for(self, chain: ChainContext):
        if chain.chain_id not in self._clients:
            self._clients[chain.chain_id] = self.client_factory(chain)
        return self._clients[chain.chain_id]

    def run_chain(self, chain: ChainContext) -> Optional[SyncReport]:
        """Run one pass for a chain unless one is already in flight"""
        lock = self._locks[chain.chain_id]
        if not lock.acquire(blocking=False):
            logger.info(f"[{chain.name}] Previous sync still running, skipping this round")
            return None

        try:
            client = self._client_for(chain)
            if client is None:
                return None
            report = sync_chain(chain, client, self.store, self.validation, self.syncer)
            self.last_reports[chain.chain_id] = report

            if report.missing:
                logger.info(f"[{chain.name}] ⚠️  Found and healed {len(report.missing)} gaps")
            if report.up_to_date is False:
                logger.info(f"[{chain.name}] ⚠️  Database behind blockchain")
            return report
        except Exception:
            logger.exception(f"[{chain.name}] ❌ Sync failed")
            return None
        finally:
            lock.release()

    def run_round(self, wait: bool = True, chain_ids: List[int] = None) -> Dict[int, Optional[SyncReport]]:
        """Submit a pass for every (or the selected) enabled chain"""
        chains = [c for c in self.chains if chain_ids is None or c.chain_id in chain_ids]
        futures = {chain.chain_id: self._executor.submit(self.run_chain, chain) for chain in chains}
        if not wait:
            return {}
        return {chain_id: future.result() for chain_id, future in futures.items()}

    def trigger(self, chain_id: int = None) -> List[int]:
        """Fire-and-forget round, used by the API's manual sync"""
        chain_ids = [c.chain_id for c in self.chains if chain_id is None or c.chain_id == chain_id]
        if chain_id is not None and not chain_ids:
            raise ValueError(f"Chain {chain_id} is not configured for sync")
        self.run_round(wait=False, chain_ids=chain_ids)
        return chain_ids

    def run_forever(self) -> None:
        """Tick every poll_interval seconds until stop() is called"""
        if not self.chains:
            logger.warning("⚠️  Sync worker NOT started - no contract addresses configured")
            return

        self.running = True
        logger.info(f"🚀 Sync worker started for {len(self.chains)} network(s), interval {self.poll_interval}s, "
                    f"validation {'ENABLED' if self.validation else 'DISABLED'}")
        for chain in self.chains:
            logger.info(f"  - {chain}")

        next_tick = time.monotonic()
        try:
            while not self._stop.is_set():
                logger.debug(f"[{time.strftime('%Y-%m-%dT%H:%M:%S')}] Starting sync round for {len(self.chains)} network(s)")
                self.run_round(wait=False)
                next_tick += self.poll_interval
                self._stop.wait(max(0.0, next_tick - time.monotonic()))
        finally:
            self.running = False

    def start(self) -> None:
        """Run the loop in a background thread"""
        if self._thread and self._thread.is_alive():
            logger.info("⚠️  Sync worker already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name='sync-scheduler', daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        """Ask the loop to exit after the current tick; safe from a signal handler"""
        self._stop.set()

    def stop(self, wait: bool = True) -> None:
        """Stop ticking; in-flight passes finish their current transaction"""
        self.request_stop()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.poll_interval + 5)
        self._executor.shutdown(wait=wait)
        logger.info("✅ Sync worker stopped gracefully")

    def status(self) -> Dict:
        return {
            'running': self.running,
            'interval': self.poll_interval,
            'validation': self.validation,
            'networks': [
                {'chain_id': c.chain_id, 'name': c.name, 'contract_address': c.contract_address}
                for c in self.chains
            ],
            'in_flight': [chain_id for chain_id, lock in self._locks.items() if lock.locked()],
            'last_reports': {chain_id: report.to_dict() for chain_id, report in dict(self.last_reports).items()},
        }
