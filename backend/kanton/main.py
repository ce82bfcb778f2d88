from contextlib import asynccontextmanager
from functools import lru_cache
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from kanton.api.routers.missing_info import build_missing_info_router
from kanton.api.routers.summons import build_summons_router
from kanton.api.routers.system import build_system_router
from kanton.api.routers.uploads import build_uploads_router
from kanton.api.services.runtime import BackendClientGetter, IntakeRuntime
from kanton.backend_client import CaseBackendClient
from kanton.config import settings
from kanton.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)

logger = logging.getLogger("kanton.api")


@lru_cache(maxsize=1)
def _cached_backend_client() -> CaseBackendClient:
    return CaseBackendClient(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info(
        "application_startup",
        extra={"event": "application_startup", "environment": settings.app_env, "backend": settings.backend_base_url},
    )
    yield
    if _cached_backend_client.cache_info().currsize:
        _cached_backend_client().close()
        _cached_backend_client.cache_clear()
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app(*, get_backend_client: BackendClientGetter | None = None) -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type", settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": sanitize_for_logging(dict(request.query_params)),
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )
            return response
        except Exception:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.exception(
                "request_failed",
                extra={
                    "event": "request_failed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": elapsed_ms,
                },
            )
            raise
        finally:
            reset_request_id(token)

    runtime = IntakeRuntime(get_backend_client=get_backend_client or _cached_backend_client)
    app.state.runtime = runtime

    app.include_router(build_system_router())
    app.include_router(build_missing_info_router(runtime=runtime))
    app.include_router(build_uploads_router(runtime=runtime))
    app.include_router(build_summons_router(runtime=runtime))
    return app


app = create_app()
