#!/usr/bin/env python3
"""
Per-address profile and tip routes.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.engine import Connection

from ..database import DatabaseQueries, get_db
from ..models.post import ProfileResponse, TipsResponse
from ..params import checksum_address, resolve_chain_id

router = APIRouter(prefix="/api", tags=["profile"])


@router.get("/profile/{address}", response_model=ProfileResponse)
def get_profile(
    address: str,
    chain_id: int = Depends(resolve_chain_id),
    db: Connection = Depends(get_db)
):
    """
    Posts won by an address, its win/tip stats and the tips it gave.

    - **address**: wallet address (any case)
    """
    address = checksum_address(address)
    try:
        return {
            "chain_id": chain_id,
            "address": address,
            "posts": DatabaseQueries.get_posts_by_address(db, chain_id, address),
            "stats": DatabaseQueries.get_user_stats(db, chain_id, address),
            "tips_given": DatabaseQueries.get_tips_by_address(db, chain_id, address),
        }
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch profile: {str(e)}"
        )


@router.get("/tips", response_model=TipsResponse)
def get_tips(
    tipper: Optional[str] = Query(None, description="Filter by tipper address"),
    auction_id: Optional[int] = Query(None, ge=0, description="Filter by tipped auction"),
    chain_id: int = Depends(resolve_chain_id),
    db: Connection = Depends(get_db)
):
    """
    Tips filtered by tipper or by auction; exactly one filter is required.
    """
    if (tipper is None) == (auction_id is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Pass exactly one of tipper or auction_id"
        )
    if tipper is not None:
        tipper = checksum_address(tipper)

    try:
        post_total = None
        if tipper is not None:
            tips = DatabaseQueries.get_tips_by_address(db, chain_id, tipper)
        else:
            tips = DatabaseQueries.get_tips_by_auction(db, chain_id, auction_id)
            post_total = DatabaseQueries.get_tips_total(db, chain_id, auction_id)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch tips: {str(e)}"
        )

    return {
        "chain_id": chain_id,
        "tips": tips,
        "count": len(tips),
        "total": str(sum(int(t["amount"]) for t in tips)),
        "post_tips_received": post_total,
    }
