"""
Run context inference over existing memories.

Useful after importing memories or changing the embedding model: every
completed memory with an embedding gets place/people/tag suggestions from its
neighbours. Suggestions never overwrite confirmed context.

Run: python -m app.scripts.reprocess_context [--limit 5000] [--user USER_ID]
"""

import argparse
import asyncio
import logging

from app.db.database import async_session_maker
from app.services.context_inference_service import ContextInferenceService
from app.services.graph_store import GraphStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def reprocess(limit: int = 5000, user_id: str = None):
    async with async_session_maker() as db:
        memories = await GraphStore(db).list_recent_memory_ids(limit, user_id)
    logger.info(f"Running context inference for {len(memories)} memories...")

    done = 0
    errors = 0
    for memory_id, owner_id in memories:
        try:
            # Fresh session per memory so one failure does not poison the rest
            async with async_session_maker() as db:
                await ContextInferenceService(db).infer_and_store_context(memory_id, owner_id)
            done += 1
            if done % 50 == 0:
                logger.info(f"  {done}/{len(memories)}")
        except Exception as e:
            logger.warning(f"  Skip memory {memory_id}: {e}")
            errors += 1

    logger.info(f"Reprocess complete: {done} processed, {errors} errors")
    return done, errors


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Re-run context inference for stored memories")
    parser.add_argument("--limit", type=int, default=5000)
    parser.add_argument("--user", dest="user_id", default=None)
    args = parser.parse_args()
    asyncio.run(reprocess(limit=args.limit, user_id=args.user_id))
