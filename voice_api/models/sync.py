#!/usr/bin/env python3
"""
Pydantic models for sync status and the sync worker.
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class SyncCursors(BaseModel):
    posts: Optional[int] = Field(None, description="Last fully synced block of the NewWinner stream")
    tips: Optional[int] = Field(None, description="Last fully synced block of the PostTipped stream")


class SyncCounts(BaseModel):
    posts: int
    tips: int
    empty_auctions: int


class SyncValidation(BaseModel):
    last_auction_id: int = Field(..., description="Highest auction id with a post or an empty-auction record")
    missing_auctions: List[int] = Field(default_factory=list, description="Interior gaps")
    has_gaps: bool
    gap_count: int


class ChainSyncStatus(BaseModel):
    chain_id: int
    last_synced_blocks: SyncCursors
    counts: SyncCounts
    validation: SyncValidation


class SyncStatusResponse(BaseModel):
    networks: List[ChainSyncStatus]
    timestamp: datetime


class SyncTriggerResponse(BaseModel):
    success: bool
    message: str
    chain_ids: List[int]
    timestamp: datetime


class SyncWorkerNetwork(BaseModel):
    chain_id: int
    name: str
    contract_address: Optional[str] = None


class SyncWorkerStatus(BaseModel):
    running: bool
    interval: Optional[float] = None
    validation: Optional[bool] = None
    networks: List[SyncWorkerNetwork] = Field(default_factory=list)
    in_flight: List[int] = Field(default_factory=list)
    last_reports: Dict[int, Dict[str, Any]] = Field(default_factory=dict)
