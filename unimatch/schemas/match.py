from pydantic import BaseModel
from typing import Optional

from unimatch.schemas.user import CandidateResponse, UserSummary


class CandidateList(BaseModel):
    candidates: list[CandidateResponse]


class LikeResponse(BaseModel):
    is_match: bool
    matched_user: Optional[UserSummary] = None
    message: str


class ActionResponse(BaseModel):
    message: str


class MatchList(BaseModel):
    matches: list[UserSummary]
