from fastapi import APIRouter, Depends

from matchmaker.api.deps import get_pipeline
from matchmaker.schemas import RunSummary, UserRunResult
from matchmaker.services.pipeline import MatchingPipeline

router = APIRouter()


@router.post("/run-matching", response_model=RunSummary)
async def run_matching(pipeline: MatchingPipeline = Depends(get_pipeline)):
    return await pipeline.run_population()


@router.post("/run-matching/{user_id}", response_model=UserRunResult)
async def run_matching_for_user(
    user_id: str,
    pipeline: MatchingPipeline = Depends(get_pipeline),
):
    return await pipeline.run_for_user(user_id)
