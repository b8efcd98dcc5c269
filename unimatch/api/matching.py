"""
UniMatch — Matching API

Discovery feed, likes, dislikes, unmatches and the match list.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from unimatch.api.deps import get_current_user_id, get_matching_service
from unimatch.database import get_db
from unimatch.schemas.match import ActionResponse, CandidateList, LikeResponse, MatchList
from unimatch.services.matching_service import MatchingService

router = APIRouter()


@router.get("/candidates", response_model=CandidateList, summary="Get potential matches")
async def get_candidates(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matching: MatchingService = Depends(get_matching_service),
) -> CandidateList:
    candidates = await matching.get_candidates(user_id, db)
    return CandidateList(candidates=candidates)


@router.post("/like/{target_id}", response_model=LikeResponse, summary="Like a user")
async def like_user(
    target_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matching: MatchingService = Depends(get_matching_service),
) -> LikeResponse:
    result = await matching.like(user_id, target_id, db)
    return LikeResponse(
        is_match=result.is_match,
        matched_user=result.matched_user,
        message="It's a match!" if result.is_match else "User liked",
    )


@router.post("/dislike/{target_id}", response_model=ActionResponse, summary="Dislike a user")
async def dislike_user(
    target_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matching: MatchingService = Depends(get_matching_service),
) -> ActionResponse:
    await matching.dislike(user_id, target_id, db)
    return ActionResponse(message="User disliked")


@router.delete("/unmatch/{target_id}", response_model=ActionResponse, summary="Unmatch a user")
async def unmatch_user(
    target_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matching: MatchingService = Depends(get_matching_service),
) -> ActionResponse:
    removed = await matching.unmatch(user_id, target_id, db)
    return ActionResponse(message="User unmatched" if removed else "Users were not matched")


@router.get("/matches", response_model=MatchList, summary="List my matches")
async def list_matches(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matching: MatchingService = Depends(get_matching_service),
) -> MatchList:
    return MatchList(matches=await matching.list_matches(user_id, db))
