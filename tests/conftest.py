#!/usr/bin/env python3
"""
Pytest configuration: temporary SQLite store and in-process fake chain clients
"""

import pytest
from web3 import Web3

from voice_indexer.chain_client import AuctionResult
from voice_indexer.config import ZERO_ADDRESS, ChainContext
from voice_indexer.store import Store

ALICE = Web3.to_checksum_address('0x' + 'a1' * 20)
BOB = Web3.to_checksum_address('0x' + 'b2' * 20)
CAROL = Web3.to_checksum_address('0x' + 'c3' * 20)
CONTRACT = Web3.to_checksum_address('0x' + '5f' * 20)

BASE_TIMESTAMP = 1_700_000_000


def tx_hash(n: int) -> str:
    return '0x' + format(n, '064x')


def winner_log(auction_id, winner=ALICE, amount=10**18, block=1, tx=None,
               text='gm', image_cid='', voice_cid='', log_index=0):
    """A NewWinner log as web3 hands it back (args keyed by ABI names)"""
    return {
        'event': 'NewWinner',
        'args': {
            'winner': winner,
            'auctionId': auction_id,
            'amount': amount,
            'text': text,
            'imageCid': image_cid,
            'voiceCid': voice_cid,
        },
        'blockNumber': block,
        'transactionHash': tx or tx_hash(10_000 + (auction_id or 0)),
        'logIndex': log_index,
    }


def tip_log(auction_id, tipper=BOB, amount=10**17, block=1, tx=None, log_index=0):
    return {
        'event': 'PostTipped',
        'args': {
            'auctionId': auction_id,
            'tipper': tipper,
            'amount': amount,
        },
        'blockNumber': block,
        'transactionHash': tx or tx_hash(20_000 + block * 100 + log_index),
        'logIndex': log_index,
    }


def settled(winner=ALICE, winning_bid=10**18, second_bid=0):
    return AuctionResult(settled=True, winner=winner, winning_bid=winning_bid, second_bid=second_bid)


def unsettled():
    return AuctionResult(settled=False, winner=ZERO_ADDRESS, winning_bid=0, second_bid=0)


class FakeChainClient:
    """Stands in for ChainClient: same methods, canned data, no network"""

    def __init__(self, head=0, winner_logs=None, tip_logs=None, results=None, current_auction=0):
        self.head = head
        self.winner_logs = list(winner_logs or [])
        self.tip_logs = list(tip_logs or [])
        self.results = dict(results or {})
        self.current_auction = current_auction

        self.fail_head = False
        self.fail_current = False
        self.fail_timestamps = False
        self.fail_search = False
        self.fail_fetch_from = set()
        self.fail_results = set()
        self.fetch_calls = []

    def get_block_number(self):
        if self.fail_head:
            raise ConnectionError("rpc unavailable")
        return self.head

    def get_block_timestamp(self, block_number):
        if self.fail_timestamps:
            raise ConnectionError("rpc unavailable")
        return BASE_TIMESTAMP + block_number

    def _in_range(self, logs, from_block, to_block):
        if from_block in self.fail_fetch_from:
            raise ConnectionError(f"getLogs failed at {from_block}")
        return [log for log in logs if from_block <= log['blockNumber'] <= to_block]

    def get_winner_logs(self, from_block, to_block):
        self.fetch_calls.append(('NewWinner', from_block, to_block))
        return self._in_range(self.winner_logs, from_block, to_block)

    def get_tip_logs(self, from_block, to_block):
        self.fetch_calls.append(('PostTipped', from_block, to_block))
        return self._in_range(self.tip_logs, from_block, to_block)

    def find_winner_logs(self, winner):
        if self.fail_search:
            raise ConnectionError("query returned more than 10000 results")
        return [log for log in self.winner_logs if log['args']['winner'].lower() == winner.lower()]

    def current_auction_id(self):
        if self.fail_current:
            raise ConnectionError("rpc unavailable")
        return self.current_auction

    def get_auction_result(self, auction_id):
        if auction_id in self.fail_results:
            raise ConnectionError(f"eth_call failed for {auction_id}")
        return self.results.get(auction_id, unsettled())


@pytest.fixture
def store(tmp_path):
    s = Store.from_url(f"sqlite:///{tmp_path / 'replica.db'}")
    s.init_schema()
    yield s
    s.engine.dispose()


def make_chain(network='localhost', chain_id=31337, name='Hardhat Local', contract_address=CONTRACT,
               start_block=0, block_batch_size=5000):
    return ChainContext(
        network=network,
        chain_id=chain_id,
        name=name,
        rpc_url='http://127.0.0.1:8545',
        contract_address=contract_address,
        start_block=start_block,
        block_batch_size=block_batch_size,
    )


@pytest.fixture
def chain():
    return make_chain()


@pytest.fixture
def other_chain():
    return make_chain(network='arbitrum_sepolia', chain_id=421614, name='Arbitrum Sepolia')
