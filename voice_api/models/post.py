#!/usr/bin/env python3
"""
Pydantic models for posts, tips and per-address stats.
Wei amounts are decimal strings; they do not fit in a JSON number.
"""

from pydantic import BaseModel, Field
from typing import List, Optional


class Post(BaseModel):
    """A winning auction's post"""
    chain_id: int = Field(..., description="Chain ID")
    auction_id: int = Field(..., description="Auction ID")
    winner: str = Field(..., description="Winner address (checksummed)")
    winning_bid: str = Field(..., description="Winning bid in wei")
    text: str = Field("", description="Post text")
    image_cid: str = Field("", description="IPFS CID of the post image")
    voice_cid: str = Field("", description="IPFS CID of the post voice recording")
    block_number: int = Field(..., description="Block of the NewWinner event, 0 when recovered from contract state")
    transaction_hash: str = Field(..., description="Transaction of the NewWinner event, zero hash when recovered")
    tips_received: str = Field("0", description="Sum of tips to this post in wei")
    created_at: int = Field(..., description="Unix timestamp")


class Tip(BaseModel):
    """A single tip to a post"""
    chain_id: int = Field(..., description="Chain ID")
    auction_id: int = Field(..., description="Auction ID of the tipped post")
    tipper: str = Field(..., description="Tipper address (checksummed)")
    amount: str = Field(..., description="Tip amount in wei")
    block_number: int = Field(..., description="Block number")
    transaction_hash: str = Field(..., description="Transaction hash")
    created_at: int = Field(..., description="Unix timestamp the tip was recorded")


class UserStats(BaseModel):
    total_wins: int = Field(..., description="Number of auctions won")
    total_tips_received: str = Field(..., description="Tips received across all posts, in wei")
    total_tips_given: str = Field(..., description="Tips given, in wei")


class WinnersResponse(BaseModel):
    chain_id: int
    posts: List[Post]
    count: int


class ProfileResponse(BaseModel):
    chain_id: int
    address: str
    posts: List[Post]
    stats: UserStats
    tips_given: List[Tip]


class TipsResponse(BaseModel):
    chain_id: int
    tips: List[Tip]
    count: int
    total: str = Field(..., description="Sum of the listed tips in wei")
    post_tips_received: Optional[str] = Field(None, description="Stored aggregate on the post (auction filter only)")


class LeaderboardEntry(BaseModel):
    rank: int
    address: str
    total_wins: int
    total_spent: str = Field(..., description="Sum of winning bids in wei")
    total_tips_received: str


class LeaderboardResponse(BaseModel):
    chain_id: int
    entries: List[LeaderboardEntry]
