#!/usr/bin/env python3
"""
Matching Run Script

Runs the allocation pipeline once outside the API process, e.g. from cron
or while testing weights against a copy of production data.

Usage:
    # Allocate for every active, onboarded user
    python scripts/run_matching.py

    # Allocate for a single user
    python scripts/run_matching.py --user-id user-123

    # Load profiles from a JSON file first (list of profile objects)
    python scripts/run_matching.py --profiles profiles.json

    # Only expire stale matches
    python scripts/run_matching.py --expire-only

    # Offline run with token-hashing embeddings and an in-memory vector store
    python scripts/run_matching.py --provider hashing --vector-store memory
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from matchmaker.config import get_settings
from matchmaker.database import async_session, init_db
from matchmaker.errors import MatchingError
from matchmaker.models import Profile
from matchmaker.schemas import UserProfile
from matchmaker.services.pipeline import create_pipeline
from matchmaker.services.vector_db import get_vector_store

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def import_profiles(path: Path) -> int:
    """Insert or update profiles from a JSON file."""
    if not path.exists():
        logger.error(f"Profiles file not found: {path}")
        return 0

    with open(path, "r", encoding="utf-8") as f:
        records: List[dict] = json.load(f)

    count = 0
    async with async_session() as session:
        for record in records:
            profile = UserProfile.model_validate(record)
            await session.merge(Profile(**profile.model_dump()))
            count += 1
        await session.commit()

    return count


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run weekly match allocation")
    parser.add_argument("--user-id", help="Allocate for a single user")
    parser.add_argument("--profiles", type=Path, help="JSON file of profiles to load first")
    parser.add_argument("--expire-only", action="store_true", help="Only expire stale matches")
    parser.add_argument("--provider", help="Embedding provider override (huggingface, openai, hashing)")
    parser.add_argument("--vector-store", help="Vector store override (chroma, memory)")

    args = parser.parse_args()

    settings = get_settings()
    if args.provider:
        settings = settings.model_copy(update={"embedding_provider": args.provider})

    await init_db()

    if args.profiles:
        count = await import_profiles(args.profiles)
        logger.info(f"Loaded {count} profiles from {args.profiles}")

    pipeline = create_pipeline(settings, store=get_vector_store(kind=args.vector_store))

    try:
        if args.expire_only:
            expired = await pipeline.expire_stale()
            logger.info(f"Expired {expired} stale matches")

        elif args.user_id:
            result = await pipeline.run_for_user(args.user_id)
            logger.info(f"Created {result.matches_created} matches for {result.user_id}")

        else:
            summary = await pipeline.run_population()
            logger.info(
                f"Processed {summary.total_users} users: {summary.successful_users} succeeded, "
                f"{summary.failed_users} failed, {summary.total_matches_created} matches created"
            )
            for result in summary.results:
                if not result.success:
                    logger.warning(f"  {result.user_id}: {result.error_kind} - {result.error}")

    except MatchingError as e:
        logger.error(f"Run failed ({e.kind.value}): {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
