#!/usr/bin/env python3
"""
Winner (post) listing and leaderboard routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.engine import Connection

from ..database import DatabaseQueries, get_db
from ..models.post import LeaderboardResponse, WinnersResponse
from ..params import resolve_chain_id

router = APIRouter(prefix="/api", tags=["winners"])


@router.get("/winners", response_model=WinnersResponse)
def get_winners(
    chain_id: int = Depends(resolve_chain_id),
    db: Connection = Depends(get_db)
):
    """
    All posts for a chain, newest auction first.
    Auctions that ended without a winner are not listed.
    """
    try:
        posts = DatabaseQueries.get_all_posts(db, chain_id)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch winners: {str(e)}"
        )
    return {"chain_id": chain_id, "posts": posts, "count": len(posts)}


@router.get("/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(
    limit: int = Query(25, le=100, ge=1, description="Number of addresses to return"),
    chain_id: int = Depends(resolve_chain_id),
    db: Connection = Depends(get_db)
):
    """
    Winners ranked by auctions won, then by tips received.
    """
    try:
        entries = DatabaseQueries.get_leaderboard(db, chain_id, limit)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch leaderboard: {str(e)}"
        )
    return {"chain_id": chain_id, "entries": entries}
