# ─────────────────────────────────────────────────────────────────────────────
# Debug Routes: cache diagnostics
# ─────────────────────────────────────────────────────────────────────────────
# Only mounted when settings.enable_debug_routes is True.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends

from sketchlift.cache.result_cache import ResultCache
from sketchlift.dependencies import get_result_cache
from sketchlift.schemas import CacheStatsResponse

router = APIRouter()


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(cache: ResultCache = Depends(get_result_cache)) -> CacheStatsResponse:
    """Hit/miss/write counters for this process's result cache."""
    return CacheStatsResponse(**cache.stats())
