import json
from collections.abc import Iterable
from datetime import date
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from courtbook.settings import REDIS_URL

_redis: Redis | None = None
AVAILABILITY_TTL = 60  # 1 minute


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _availability_key(resource_id: UUID, day: date) -> str:
    return f"availability:{resource_id}:{day.isoformat()}"


def _availability_key_pattern(resource_id: UUID | None, day: date | None) -> str:
    court = "*" if resource_id is None else str(resource_id)
    when = "*" if day is None else day.isoformat()
    return f"availability:{court}:{when}"


async def get_availability_cache(resource_id: UUID, day: date) -> dict | None:
    try:
        data = await get_redis().get(_availability_key(resource_id, day))
        return json.loads(data) if data else None
    except Exception:
        logger.warning("Redis get failed, skipping availability cache", exc_info=True)
        return None


async def set_availability_cache(resource_id: UUID, day: date, payload: dict) -> None:
    try:
        await get_redis().setex(
            _availability_key(resource_id, day), AVAILABILITY_TTL, json.dumps(payload)
        )
    except Exception:
        logger.warning("Redis set failed, skipping availability cache", exc_info=True)


async def invalidate_availability_cache(cells: Iterable[tuple[UUID, date]]) -> None:
    keys = {_availability_key(resource_id, day) for resource_id, day in cells}
    if not keys:
        return
    try:
        await get_redis().delete(*keys)
    except Exception:
        logger.warning("Redis invalidate failed for availability cache", exc_info=True)


async def invalidate_availability_matching(
    resource_id: UUID | None = None, day: date | None = None
) -> None:
    """Drop every cached day of a court, every court of a day, or both narrowed."""
    pattern = _availability_key_pattern(resource_id, day)
    try:
        redis = get_redis()
        keys = [key async for key in redis.scan_iter(match=pattern)]
        if keys:
            await redis.delete(*keys)
    except Exception:
        logger.warning("Redis invalidate failed for {}", pattern, exc_info=True)
