from fastapi import APIRouter

from app.api.v1 import promo_codes
from app.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(promo_codes.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["health"])
def metrics() -> dict[str, int]:
    return metrics_snapshot()
