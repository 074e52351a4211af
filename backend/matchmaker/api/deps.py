from functools import lru_cache

from fastapi import Depends

from matchmaker.services.pipeline import MatchingPipeline, create_pipeline
from matchmaker.services.repositories import MatchRepository


@lru_cache
def get_pipeline() -> MatchingPipeline:
    return create_pipeline()


def get_match_repository(pipeline: MatchingPipeline = Depends(get_pipeline)) -> MatchRepository:
    return pipeline.matches
