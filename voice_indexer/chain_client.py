"""
Read-only web3 client for one chain's HighestVoice contract.
"""
import os
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .config import ChainContext

logger = logging.getLogger(__name__)

ABI_PATH = os.path.join(os.path.dirname(__file__), 'abis', 'HighestVoice.json')

# Networks whose blocks carry PoA extraData
POA_CHAIN_IDS = {137, 8453}

# Provider errors that usually go away when the block range shrinks
SPLITTABLE_ERRORS = (
    'too many results',
    'response size',
    'limit',
    'timeout',
    'timed out',
    'gateway',
    'internal error',
    'server error',
    'block range',
)

_abi_cache: Dict[str, list] = {}


def load_abi(path: str = ABI_PATH) -> list:
    """Load a contract ABI from JSON (bare list or Brownie-style artifact)"""
    if path not in _abi_cache:
        with open(path, 'r') as f:
            data = json.load(f)

        if isinstance(data, dict) and 'abi' in data:
            _abi_cache[path] = data['abi']
        elif isinstance(data, list):
            _abi_cache[path] = data
        else:
            raise ValueError(f"Invalid ABI format in {path}")
    return _abi_cache[path]


@dataclass(frozen=True)
class AuctionResult:
    """getAuctionResult(auctionId) -> (settled, winner, winningBid, secondBid)"""
    settled: bool
    winner: str
    winning_bid: int
    second_bid: int


class ChainClient:
    """Contract reads and event log queries for a single chain.

    Construction does no I/O; the HTTP provider connects on first request.
    Every request carries the chain's rpc_timeout.
    """

    MAX_BLOCK_CACHE = 1000

    def __init__(self, chain: ChainContext, abi: list = None):
        self.chain = chain
        self.w3 = Web3(Web3.HTTPProvider(chain.rpc_url, request_kwargs={'timeout': chain.rpc_timeout}))
        if chain.chain_id in POA_CHAIN_IDS:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(chain.contract_address),
            abi=abi or load_abi(),
        )
        self.block_timestamps: Dict[int, int] = {}

    def get_block_number(self) -> int:
        return self.w3.eth.block_number

    def get_block_timestamp(self, block_number: int) -> int:
        """Block timestamp with a bounded per-chain cache"""
        if block_number in self.block_timestamps:
            return self.block_timestamps[block_number]

        if len(self.block_timestamps) >= self.MAX_BLOCK_CACHE:
            oldest_block = min(self.block_timestamps)
            del self.block_timestamps[oldest_block]

        timestamp = int(self.w3.eth.get_block(block_number)['timestamp'])
        self.block_timestamps[block_number] = timestamp
        return timestamp

    def get_winner_logs(self, from_block: int, to_block: int) -> List[Any]:
        return self._get_event_logs_with_split(self.contract.events.NewWinner, from_block, to_block)

    def get_tip_logs(self, from_block: int, to_block: int) -> List[Any]:
        return self._get_event_logs_with_split(self.contract.events.PostTipped, from_block, to_block)

    def find_winner_logs(self, winner: str) -> List[Any]:
        """Every NewWinner log for an (indexed) winner address over the full history"""
        return self._get_event_logs_with_split(
            self.contract.events.NewWinner,
            self.chain.start_block,
            self.get_block_number(),
            argument_filters={'winner': Web3.to_checksum_address(winner)},
        )

    def current_auction_id(self) -> int:
        return int(self.contract.functions.currentAuctionId().call())

    def get_auction_result(self, auction_id: int) -> AuctionResult:
        settled, winner, winning_bid, second_bid = self.contract.functions.getAuctionResult(auction_id).call()
        return AuctionResult(
            settled=bool(settled),
            winner=winner,
            winning_bid=int(winning_bid),
            second_bid=int(second_bid),
        )

    def _get_event_logs_with_split(self, event_cls, from_block: int, to_block: int,
                                   argument_filters: Dict = None, min_span: int = 500) -> List[Any]:
        """Fetch logs with eth_getLogs, halving the range on provider size/limit errors"""
        try:
            filter_args = {'from_block': from_block, 'to_block': to_block}
            if argument_filters:
                filter_args['argument_filters'] = argument_filters
            return list(event_cls.get_logs(**filter_args))
        except Exception as e:
            span = to_block - from_block
            msg = str(e).lower()
            if span > min_span and any(x in msg for x in SPLITTABLE_ERRORS):
                mid = from_block + span // 2
                logger.debug(f"[Chain {self.chain.chain_id}] Splitting log query {from_block}-{to_block} at {mid}: {e}")
                left = self._get_event_logs_with_split(event_cls, from_block, mid, argument_filters, min_span)
                right = self._get_event_logs_with_split(event_cls, mid + 1, to_block, argument_filters, min_span)
                return left + right
            raise


def get_client(chain: ChainContext) -> Optional[ChainClient]:
    """Client for a chain, or None when no contract address is configured"""
    if not chain.enabled:
        logger.debug(f"{chain}: no contract address configured")
        return None
    return ChainClient(chain)
