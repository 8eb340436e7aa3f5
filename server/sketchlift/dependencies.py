# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection: FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan builds Components → app.state stores → Depends() injects.
# No global variables. Every dependency is explicit in endpoint signatures.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from sketchlift.cache.result_cache import ResultCache
from sketchlift.cache.stores import KeyValueStore
from sketchlift.config import Settings
from sketchlift.services.improvement import ImprovementService


def get_improvement_service(request: Request) -> ImprovementService:
    """Inject ImprovementService into endpoints via Depends()."""
    return request.app.state.improvement_service


def get_result_cache(request: Request) -> ResultCache:
    """Inject ResultCache into endpoints via Depends()."""
    return request.app.state.result_cache


def get_store(request: Request) -> KeyValueStore:
    """Inject the key-value store into endpoints via Depends()."""
    return request.app.state.store


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings
