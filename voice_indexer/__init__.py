"""
HighestVoice auction indexer: keeps a local replica of winners, tips and
empty auctions in sync with the contract on every configured chain.
"""

from .config import ChainContext, get_chain_contexts, load_config
from .store import Store
from .scheduler import SyncScheduler, sync_chain

__version__ = '0.1.0'

__all__ = [
    'ChainContext',
    'Store',
    'SyncScheduler',
    'get_chain_contexts',
    'load_config',
    'sync_chain',
]
