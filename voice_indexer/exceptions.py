"""
Exception types raised by the indexer.
"""


class IndexerError(Exception):
    """Base class for indexer errors"""


class ConfigurationError(IndexerError):
    """Invalid indexer configuration (unknown chain id, malformed YAML)"""


class LogDecodeError(IndexerError):
    """A fetched log could not be decoded into its expected event shape.

    Raised while a window is decoded, before its write transaction opens, so
    nothing from that window is written and the cursor stays put. Never
    swallowed: advancing past an undecodable log would lose that event permanently.
    """

    def __init__(self, message: str, block_number=None, transaction_hash=None):
        super().__init__(message)
        self.block_number = block_number
        self.transaction_hash = transaction_hash
