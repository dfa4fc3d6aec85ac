"""Sweep expired compatibility cache entries and re-warm scores for recent likes.

Pairs where one user liked the other recently are the ones most likely to
be looked at again, so their stale or missing scores are recomputed ahead
of time.  Fresh entries are left alone.

Usage: python -m scripts.refresh_compatibility_cache [--days 7] [--limit 500] [--skip-sweep]
"""
import argparse
import asyncio
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

sys.path.insert(0, ".")

import structlog
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stellr.config import get_settings
from stellr.database import get_engine, get_session_factory
from stellr.errors import NotFound, TransientStoreError
from stellr.models.match import Swipe
from stellr.services.compatibility_cache import (
    CompatibilityCache,
    build_compatibility_cache,
    canonical_pair,
)
from stellr.services.compatibility_service import CompatibilityService
from stellr.services.stores import SqlProfileStore

logger = structlog.get_logger("stellr.scripts.refresh_compatibility_cache")

DEFAULT_DAYS = 7
DEFAULT_LIMIT = 500
MAX_ATTEMPTS = 5


async def with_retry(fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
    """Await ``fn(*args)``, retrying ``TransientStoreError`` with backoff."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(TransientStoreError),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    "refresh_retry",
                    operation=getattr(fn, "__name__", str(fn)),
                    attempt_number=attempt.retry_state.attempt_number,
                )
            return await fn(*args)


async def recent_like_pairs(since: datetime, limit: int) -> list[tuple[str, str]]:
    """Distinct unordered pairs with a like since ``since``, newest first."""
    stmt = (
        select(Swipe.swiper_id, Swipe.swiped_id)
        .where(Swipe.decision == "like", Swipe.created_at >= since)
        .order_by(Swipe.created_at.desc())
        .limit(limit)
    )
    try:
        async with get_session_factory()() as session:
            result = await session.execute(stmt)
            rows = result.all()
    except DBAPIError as exc:
        raise TransientStoreError("swipes", str(exc.orig)) from exc

    seen: set[tuple[str, str]] = set()
    pairs: list[tuple[str, str]] = []
    for swiper_id, swiped_id in rows:
        pair = canonical_pair(swiper_id, swiped_id)
        if pair not in seen:
            seen.add(pair)
            pairs.append(pair)
    return pairs


async def refresh_pair(cache: CompatibilityCache, user_a_id: str, user_b_id: str) -> None:
    # A fresh session per attempt; a session that saw a driver error
    # cannot be reused until it is rolled back.
    async with get_session_factory()() as session:
        service = CompatibilityService(cache=cache, profile_store=SqlProfileStore(session))
        await service.get_compatibility(user_a_id, user_b_id)


async def refresh(days: int, limit: int, skip_sweep: bool) -> dict[str, int]:
    settings = get_settings()
    cache = build_compatibility_cache(settings)
    summary = {"swept": 0, "pairs": 0, "refreshed": 0, "missing_profiles": 0}

    if not skip_sweep:
        summary["swept"] = await with_retry(cache.sweep_expired)

    since = datetime.now(timezone.utc) - timedelta(days=days)
    pairs = await with_retry(recent_like_pairs, since, limit)
    summary["pairs"] = len(pairs)

    for user_a_id, user_b_id in pairs:
        try:
            await with_retry(refresh_pair, cache, user_a_id, user_b_id)
        except NotFound:
            summary["missing_profiles"] += 1
            continue
        summary["refreshed"] += 1

    logger.info("refresh_complete", backend=cache.backend, **summary)
    return summary


async def main(args: argparse.Namespace) -> None:
    try:
        summary = await refresh(args.days, args.limit, args.skip_sweep)
    finally:
        await get_engine().dispose()

    print(f"  Swept {summary['swept']} expired entries.")
    print(
        f"  Checked {summary['pairs']} recent pairs: {summary['refreshed']} refreshed, "
        f"{summary['missing_profiles']} with a missing profile."
    )
    print("Done refreshing compatibility cache.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--days", type=int, default=DEFAULT_DAYS,
                        help="Look back this many days for likes")
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT,
                        help="Maximum number of swipes to consider")
    parser.add_argument("--skip-sweep", action="store_true",
                        help="Do not delete expired cache entries")
    asyncio.run(main(parser.parse_args()))
