"""
Typed decoding of contract event logs.

web3 hands back loosely-typed AttributeDicts. Every log goes through one of the
decode functions here and comes out either as a validated event model or as a
DecodeError; the syncer decides what to do with errors in a single place.
"""
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from web3 import Web3

from .config import ZERO_ADDRESS

logger = logging.getLogger(__name__)


def normalize_tx_hash(tx_hash: Any) -> str:
    """Normalize transaction hash to a lower-case hex string with 0x prefix.

    Accepts bytes/bytearray/HexBytes or str.
    """
    if isinstance(tx_hash, (bytes, bytearray)):
        s = tx_hash.hex()
    else:
        # HexBytes.hex() returns with or without 0x depending on the hexbytes version
        hx = getattr(tx_hash, 'hex', None)
        s = hx() if callable(hx) else str(tx_hash)
        if not isinstance(s, str):
            s = str(tx_hash)
    s = s.lower()
    return s if s.startswith('0x') else f'0x{s}'


def normalize_address(address: str) -> str:
    """Checksum an address; raises ValueError when it is not one"""
    return Web3.to_checksum_address(address)


def is_zero_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


class _LogEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    auction_id: int = Field(ge=0)
    block_number: int = Field(ge=0)
    transaction_hash: str
    log_index: int = 0

    @field_validator('transaction_hash', mode='before')
    @classmethod
    def _normalize_tx(cls, v):
        if v is None:
            raise ValueError('transaction hash is missing')
        return normalize_tx_hash(v)


class NewWinnerEvent(_LogEvent):
    """NewWinner(address indexed winner, uint256 auctionId, uint256 amount, string text, string imageCid, string voiceCid)"""
    winner: str
    amount: int = Field(ge=0)
    text: str = ''
    image_cid: str = ''
    voice_cid: str = ''

    @field_validator('winner', mode='before')
    @classmethod
    def _checksum_winner(cls, v):
        if not isinstance(v, str):
            raise ValueError(f'winner is not an address: {v!r}')
        return normalize_address(v)

    @field_validator('text', 'image_cid', 'voice_cid', mode='before')
    @classmethod
    def _empty_string_for_none(cls, v):
        return '' if v is None else v

    @property
    def has_winner(self) -> bool:
        return not is_zero_address(self.winner)


class PostTippedEvent(_LogEvent):
    """PostTipped(uint256 indexed auctionId, address indexed tipper, uint256 amount)"""
    tipper: str
    amount: int = Field(ge=0)

    @field_validator('tipper', mode='before')
    @classmethod
    def _checksum_tipper(cls, v):
        if not isinstance(v, str):
            raise ValueError(f'tipper is not an address: {v!r}')
        return normalize_address(v)


@dataclass(frozen=True)
class DecodeError:
    """A log that did not decode.

    `skippable` marks the one tolerated defect, a log without an auction id,
    which is logged and dropped on both streams. Anything else fails the batch.
    """
    event_name: str
    reason: str
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    skippable: bool = False

    def __str__(self) -> str:
        return f"{self.event_name} log at block {self.block_number} tx {self.transaction_hash}: {self.reason}"


WinnerDecodeResult = Union[NewWinnerEvent, DecodeError]
TipDecodeResult = Union[PostTippedEvent, DecodeError]


def _log_position(log: Mapping) -> dict:
    tx_hash = log.get('transactionHash')
    return {
        'block_number': log.get('blockNumber'),
        'transaction_hash': normalize_tx_hash(tx_hash) if tx_hash is not None else None,
        'log_index': log.get('logIndex') or 0,
    }


def _decode(event_name: str, model, log: Mapping, fields: dict):
    position = _log_position(log)
    args = log.get('args')
    if args is None:
        return DecodeError(event_name, 'log has no decoded args',
                           position['block_number'], position['transaction_hash'])

    if args.get('auctionId') is None:
        return DecodeError(event_name, 'auctionId is missing',
                           position['block_number'], position['transaction_hash'], skippable=True)

    data = {field: args.get(arg) for field, arg in fields.items()}
    data.update(position)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = '; '.join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        return DecodeError(event_name, errors, position['block_number'], position['transaction_hash'])


def decode_winner_log(log: Mapping) -> WinnerDecodeResult:
    return _decode('NewWinner', NewWinnerEvent, log, {
        'winner': 'winner',
        'auction_id': 'auctionId',
        'amount': 'amount',
        'text': 'text',
        'image_cid': 'imageCid',
        'voice_cid': 'voiceCid',
    })


def decode_tip_log(log: Mapping) -> TipDecodeResult:
    return _decode('PostTipped', PostTippedEvent, log, {
        'auction_id': 'auctionId',
        'tipper': 'tipper',
        'amount': 'amount',
    })
