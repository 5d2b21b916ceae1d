#!/usr/bin/env python3
"""
Indexer configuration.

Networks, contract addresses and polling parameters come from a YAML file with
${ENV_VAR} expansion. A network with no contract address is disabled, not broken.
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Any

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_DATABASE_URL = "sqlite:///highest_voice.db"

DEFAULT_INDEXER_SETTINGS = {
    'poll_interval': 30,
    'block_batch_size': 5000,
    'rpc_timeout': 10,
    'validation': True,
    'max_workers': None,
    'log_level': 'INFO',
}

# Fixed allow-list of chains the contract is deployed on
SUPPORTED_NETWORKS = {
    "localhost": {
        "chain_id": 31337,
        "name": "Hardhat Local",
        "rpc_url": "http://127.0.0.1:8545",
    },
    "arbitrum_sepolia": {
        "chain_id": 421614,
        "name": "Arbitrum Sepolia",
        "rpc_url": "https://sepolia-rollup.arbitrum.io/rpc",
    },
    "sepolia": {
        "chain_id": 11155111,
        "name": "Sepolia",
        "rpc_url": "https://rpc.sepolia.org",
    },
    "arbitrum": {
        "chain_id": 42161,
        "name": "Arbitrum One",
        "rpc_url": "https://arb1.arbitrum.io/rpc",
    },
    "polygon": {
        "chain_id": 137,
        "name": "Polygon",
        "rpc_url": "https://polygon-rpc.com",
    },
    "optimism": {
        "chain_id": 10,
        "name": "Optimism",
        "rpc_url": "https://mainnet.optimism.io",
    },
    "base": {
        "chain_id": 8453,
        "name": "Base",
        "rpc_url": "https://mainnet.base.org",
    },
    "mainnet": {
        "chain_id": 1,
        "name": "Ethereum Mainnet",
        "rpc_url": "https://eth.llamarpc.com",
    },
}

SUPPORTED_CHAIN_IDS = {meta["chain_id"] for meta in SUPPORTED_NETWORKS.values()}

_UNEXPANDED_VAR = re.compile(r"^\$\{?[A-Za-z_][A-Za-z0-9_]*\}?$")


@dataclass(frozen=True)
class ChainContext:
    """Everything an operation needs to know about one chain"""
    network: str
    chain_id: int
    name: str
    rpc_url: str
    contract_address: Optional[str]
    start_block: int = 0
    rpc_timeout: int = 10
    block_batch_size: int = 5000

    @property
    def enabled(self) -> bool:
        return self.contract_address is not None

    def __str__(self) -> str:
        return f"{self.name} (Chain {self.chain_id})"


def _clean_value(value: Any) -> Optional[str]:
    """Treat empty strings, 'None' and unexpanded ${VARS} as unset"""
    if value is None:
        return None
    text = str(value).strip()
    if text in ('', 'None', 'none', 'null') or _UNEXPANDED_VAR.match(text):
        return None
    return text


def normalize_contract_address(address_raw: Any) -> Optional[str]:
    """Return the contract address, or None when the chain has none configured"""
    # YAML parses unquoted hex addresses as ints
    if isinstance(address_raw, int) and not isinstance(address_raw, bool):
        address_raw = f"0x{address_raw:040x}" if address_raw > 0 else None

    address = _clean_value(address_raw)
    if address is None or address.lower() in ('0x', ZERO_ADDRESS):
        return None
    return address


def _as_int(value: Any, default: int) -> int:
    cleaned = _clean_value(value)
    if cleaned is None:
        return default
    try:
        return int(cleaned)
    except ValueError:
        raise ConfigurationError(f"Expected an integer, got {value!r}")


def load_config(config_path: str = "config.yaml") -> Dict:
    """Load and expand environment variables in config"""
    load_dotenv()

    try:
        with open(config_path, 'r') as f:
            config_content = f.read()
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}")

    config_content = os.path.expandvars(config_content)

    try:
        config = yaml.safe_load(config_content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    config.setdefault('networks', {})
    indexer_settings = dict(DEFAULT_INDEXER_SETTINGS)
    indexer_settings.update(config.get('indexer') or {})
    config['indexer'] = indexer_settings

    database = config.get('database') or {}
    database['url'] = _clean_value(database.get('url')) or DEFAULT_DATABASE_URL
    config['database'] = database

    logger.info(f"Loaded configuration for {len(config['networks'])} networks")
    return config


def build_chain_context(network_name: str, network_config: Dict, indexer_settings: Dict = None) -> ChainContext:
    """Build the per-chain context from one `networks.<name>` entry"""
    indexer_settings = indexer_settings or DEFAULT_INDEXER_SETTINGS
    network_config = network_config or {}

    meta = SUPPORTED_NETWORKS.get(network_name, {})
    chain_id = _as_int(network_config.get('chain_id'), meta.get('chain_id', 0))
    if chain_id not in SUPPORTED_CHAIN_IDS:
        raise ConfigurationError(f"Unsupported chain id {chain_id} for network '{network_name}'")

    if not meta:
        meta = next(m for m in SUPPORTED_NETWORKS.values() if m['chain_id'] == chain_id)

    return ChainContext(
        network=network_name,
        chain_id=chain_id,
        name=network_config.get('name') or meta['name'],
        rpc_url=_clean_value(network_config.get('rpc_url')) or meta['rpc_url'],
        contract_address=normalize_contract_address(network_config.get('contract_address')),
        start_block=_as_int(network_config.get('start_block'), 0),
        rpc_timeout=_as_int(network_config.get('rpc_timeout'), int(indexer_settings['rpc_timeout'])),
        block_batch_size=_as_int(network_config.get('block_batch_size'), int(indexer_settings['block_batch_size'])),
    )


def get_chain_contexts(config: Dict, networks: List[str] = None) -> List[ChainContext]:
    """Contexts for the requested networks (default: all), enabled or not"""
    configured = config.get('networks') or {}
    if networks is None:
        networks = list(configured.keys())

    contexts = []
    for network_name in networks:
        if network_name not in configured:
            logger.warning(f"Network '{network_name}' is not in the config, skipping")
            continue
        contexts.append(build_chain_context(network_name, configured[network_name], config.get('indexer')))
    return contexts
