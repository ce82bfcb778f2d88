from __future__ import annotations

from fastapi import APIRouter

from kanton.config import settings


def build_system_router() -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def root() -> dict[str, str]:
        return {"service": "kanton-intake", "status": "running"}

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.app_env}

    return router
