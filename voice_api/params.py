#!/usr/bin/env python3
"""
Shared request parameter handling.
"""

from typing import Optional
from fastapi import HTTPException, Query, Request, status

from voice_indexer.config import SUPPORTED_CHAIN_IDS
from voice_indexer.events import normalize_address


def resolve_chain_id(
    request: Request,
    chain_id: Optional[int] = Query(None, description="Chain ID (defaults to the configured default chain)")
) -> int:
    if chain_id is None:
        return request.app.state.settings.default_chain_id
    if chain_id not in SUPPORTED_CHAIN_IDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported chain id {chain_id}")
    return chain_id


def checksum_address(address: str) -> str:
    """Checksum form of a user-supplied address, 400 when malformed"""
    try:
        return normalize_address(address)
    except (ValueError, TypeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid address: {address}")
