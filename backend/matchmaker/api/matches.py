from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from matchmaker.api.deps import get_match_repository
from matchmaker.middleware.metrics import record_feedback
from matchmaker.schemas import (
    MatchFeedbackSubmit,
    MatchListResponse,
    MatchResponse,
    MatchStatus,
    MatchStatusUpdate,
)
from matchmaker.services.repositories import MatchRepository

router = APIRouter()


@router.get("", response_model=MatchListResponse)
async def list_matches(
    user_id: str = Query(..., min_length=1),
    status: Optional[MatchStatus] = Query(None),
    matches: MatchRepository = Depends(get_match_repository),
):
    items = await matches.list_for_user(user_id, status)
    return MatchListResponse(matches=items, total=len(items))


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match(
    match_id: str,
    matches: MatchRepository = Depends(get_match_repository),
):
    match = await matches.get(match_id)

    if not match:
        raise HTTPException(status_code=404, detail="Match not found")

    return match


@router.patch("/{match_id}", response_model=MatchResponse)
async def update_match(
    match_id: str,
    update: MatchStatusUpdate,
    matches: MatchRepository = Depends(get_match_repository),
):
    if await matches.get(match_id) is None:
        raise HTTPException(status_code=404, detail="Match not found")

    # Transition rules are enforced by the repository
    return await matches.update_status(match_id, update.user_id, update.status)


@router.post("/{match_id}/feedback", response_model=MatchResponse)
async def submit_feedback(
    match_id: str,
    submission: MatchFeedbackSubmit,
    matches: MatchRepository = Depends(get_match_repository),
):
    if await matches.get(match_id) is None:
        raise HTTPException(status_code=404, detail="Match not found")

    match = await matches.submit_feedback(match_id, submission.user_id, submission.feedback)
    record_feedback(submission.feedback.helpful)
    return match
