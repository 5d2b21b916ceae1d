#!/usr/bin/env python3
"""
Sync status, manual sync trigger and worker status routes.
"""

from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.engine import Connection

from voice_indexer.config import SUPPORTED_CHAIN_IDS

from ..database import DatabaseQueries, get_db, get_store
from ..models.sync import SyncStatusResponse, SyncTriggerResponse, SyncWorkerStatus

router = APIRouter(prefix="/api", tags=["sync"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/sync", response_model=SyncStatusResponse)
def get_sync_status(
    request: Request,
    chain_id: Optional[int] = Query(None, description="Single chain (default: every chain with data)"),
    db: Connection = Depends(get_db)
):
    """
    Cursors, row counts, last classified auction and gaps per chain.
    """
    store = get_store(request)
    try:
        chain_ids = [chain_id] if chain_id is not None else DatabaseQueries.get_known_chain_ids(db)
        networks = [DatabaseQueries.get_sync_status(db, store, c) for c in chain_ids]
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch sync status: {str(e)}"
        )
    return {"networks": networks, "timestamp": _now()}


@router.post("/sync", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
def trigger_sync(
    request: Request,
    chain_id: Optional[int] = Query(None, description="Single chain (default: all enabled chains)")
):
    """
    Queue a validated sync round on the in-process worker and return immediately.
    A chain whose previous sync is still running is skipped.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync worker is not running in this process"
        )
    if chain_id is not None and chain_id not in SUPPORTED_CHAIN_IDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported chain id {chain_id}")

    try:
        chain_ids = scheduler.trigger(chain_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return {
        "success": True,
        "message": f"Sync queued for {len(chain_ids)} network(s)",
        "chain_ids": chain_ids,
        "timestamp": _now(),
    }


@router.get("/sync-worker", response_model=SyncWorkerStatus)
def get_sync_worker_status(request: Request):
    """Status of the in-process sync worker"""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"running": False}
    return scheduler.status()
