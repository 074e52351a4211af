from fastapi import APIRouter, Depends, Query

from matchmaker.api.deps import get_pipeline
from matchmaker.schemas import EmbeddingRefreshResponse
from matchmaker.services.pipeline import MatchingPipeline

router = APIRouter()


@router.post("/{user_id}/embeddings", response_model=EmbeddingRefreshResponse)
async def refresh_embeddings(
    user_id: str,
    force: bool = Query(False),
    pipeline: MatchingPipeline = Depends(get_pipeline),
):
    """Regenerate stale (or, with force, all) category embeddings for a user."""
    return await pipeline.refresh_embeddings(user_id, force=force)
