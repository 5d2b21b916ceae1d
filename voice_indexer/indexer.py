#!/usr/bin/env python3
"""
HighestVoice sync daemon.

Keeps the local replica of posts, tips and empty auctions in step with every
configured chain: log sync, gap healing and catch-up, once per poll interval.
"""

import sys
import signal
import logging
import argparse
from typing import List, Optional, Tuple

from .config import SUPPORTED_NETWORKS, ChainContext, get_chain_contexts, load_config
from .exceptions import ConfigurationError
from .scheduler import SyncScheduler
from .store import POSTS_STREAM, STREAM_KEYS, TIPS_STREAM, Store

logger = logging.getLogger(__name__)

STREAM_ALIASES = {
    'posts': POSTS_STREAM,
    'tips': TIPS_STREAM,
}


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # web3 and urllib3 are chatty at DEBUG
    logging.getLogger('web3').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def parse_reset_target(target: str, chains: List[ChainContext]) -> Tuple[int, Optional[str]]:
    """'<network or chain id>[:<posts|tips|stream key>]' -> (chain_id, stream_key or None)"""
    chain_part, _, stream_part = target.partition(':')
    chain_part = chain_part.strip()

    chain_id = None
    if chain_part.isdigit():
        chain_id = int(chain_part)
    else:
        for chain in chains:
            if chain.network == chain_part:
                chain_id = chain.chain_id
        if chain_id is None and chain_part in SUPPORTED_NETWORKS:
            chain_id = SUPPORTED_NETWORKS[chain_part]['chain_id']
    if chain_id is None:
        raise ConfigurationError(f"Unknown network '{chain_part}'")

    stream_key = None
    if stream_part:
        stream_key = STREAM_ALIASES.get(stream_part.strip(), stream_part.strip())
        if stream_key not in STREAM_KEYS:
            raise ConfigurationError(f"Unknown stream '{stream_part}' (expected posts or tips)")
    return chain_id, stream_key


def build_scheduler(config: dict, store: Store, networks: List[str] = None) -> SyncScheduler:
    settings = config['indexer']
    chains = get_chain_contexts(config, networks)
    return SyncScheduler(
        chains,
        store,
        poll_interval=float(settings['poll_interval']),
        validation=bool(settings['validation']),
        max_workers=settings.get('max_workers'),
    )


def main(argv: List[str] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(description='HighestVoice auction indexer')
    parser.add_argument('--network', '-n',
                        help='Comma-separated list of networks to sync (default: all)',
                        default=None)
    parser.add_argument('--config', '-c',
                        help='Path to config file',
                        default='config.yaml')
    parser.add_argument('--once', action='store_true',
                        help='Run a single sync round and exit')
    parser.add_argument('--init-db', action='store_true', dest='init_db',
                        help='Create the database schema and exit')
    parser.add_argument('--reset-cursor', dest='reset_cursor', default=None,
                        metavar='NETWORK[:STREAM]',
                        help='Delete sync cursor(s) so the next pass re-reads from start_block')

    args = parser.parse_args(argv)

    networks = None
    if args.network:
        networks = [n.strip() for n in args.network.split(',')]

    try:
        config = load_config(args.config)
        configure_logging(config['indexer'].get('log_level', 'INFO'))

        store = Store.from_url(config['database']['url'])
        store.init_schema()
        if args.init_db:
            logger.info("✅ Database initialized")
            return 0

        if args.reset_cursor:
            chain_id, stream_key = parse_reset_target(args.reset_cursor, get_chain_contexts(config))
            store.reset_cursor(chain_id, stream_key)
            return 0

        scheduler = build_scheduler(config, store, networks)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Failed to start indexer: {e}")
        return 1

    if args.once:
        reports = scheduler.run_round(wait=True)
        scheduler.stop()
        failed = [chain_id for chain_id, report in reports.items() if report is None]
        if failed:
            logger.error(f"Sync failed for chain(s): {failed}")
        return 1 if failed else 0

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping after in-flight syncs...")
        scheduler.request_stop()

    signal.signal(signal.SIGTERM, _shutdown)

    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("Indexer stopped by user")
    finally:
        scheduler.stop(wait=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
