from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterator

from fastapi import HTTPException

from kanton.backend_client import BackendError, CaseBackendClient
from kanton.config import settings
from kanton.query_cache import QueryCache
from kanton.responses import LedgerStore
from kanton.uploads import UploadSession

logger = logging.getLogger("kanton.api")

BackendClientGetter = Callable[[], CaseBackendClient]


class OperationInProgressError(RuntimeError):
    """Raised when the same logical operation is already running."""


class InFlightGuard:
    """Refuses a second concurrent run of the same operation (upload, submit, generate...)."""

    def __init__(self) -> None:
        self._held: set[tuple[Hashable, ...]] = set()
        self._lock = threading.Lock()

    def is_held(self, key: tuple[Hashable, ...]) -> bool:
        with self._lock:
            return key in self._held

    @contextmanager
    def hold(self, key: tuple[Hashable, ...]) -> Iterator[None]:
        with self._lock:
            if key in self._held:
                raise OperationInProgressError(f"Operation already in progress: {'/'.join(map(str, key))}")
            self._held.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._held.discard(key)


@dataclass
class IntakeRuntime:
    get_backend_client: BackendClientGetter
    cache: QueryCache = field(default_factory=lambda: QueryCache(settings.query_cache_ttl_seconds))
    ledgers: LedgerStore = field(default_factory=LedgerStore)
    in_flight: InFlightGuard = field(default_factory=InFlightGuard)
    # Upload batches still waiting on the backend, by case id.
    uploads: dict[str, UploadSession] = field(default_factory=dict)


def case_query_key(case_id: str) -> tuple[str, ...]:
    return ("cases", case_id)


def responses_query_key(case_id: str) -> tuple[str, ...]:
    return ("cases", case_id, "missing-info", "responses")


def sections_query_key(case_id: str, summons_id: str) -> tuple[str, ...]:
    return ("cases", case_id, "summons", summons_id, "sections")


def backend_http_error(exc: BackendError, message: str) -> HTTPException:
    status_code = 404 if exc.status_code == 404 else 502
    return HTTPException(status_code=status_code, detail={"message": message, "error": exc.message})


def operation_in_progress_error(exc: OperationInProgressError) -> HTTPException:
    return HTTPException(status_code=409, detail={"message": "Deze actie wordt al uitgevoerd.", "error": str(exc)})


@contextmanager
def hold_operation(runtime: IntakeRuntime, key: tuple[Hashable, ...]) -> Iterator[None]:
    try:
        with runtime.in_flight.hold(key):
            yield
    except OperationInProgressError as exc:
        raise operation_in_progress_error(exc) from exc


def load_case(runtime: IntakeRuntime, case_id: str) -> dict[str, Any]:
    client = runtime.get_backend_client()
    try:
        return runtime.cache.fetch(case_query_key(case_id), lambda: client.get_case(case_id))
    except BackendError as exc:
        raise backend_http_error(exc, "Zaak kon niet worden geladen.") from exc


def load_saved_responses(runtime: IntakeRuntime, case_id: str) -> list[dict[str, Any]]:
    client = runtime.get_backend_client()
    try:
        return runtime.cache.fetch(responses_query_key(case_id), lambda: client.list_responses(case_id))
    except BackendError as exc:
        raise backend_http_error(exc, "Opgeslagen antwoorden konden niet worden geladen.") from exc


def load_sections(runtime: IntakeRuntime, case_id: str, summons_id: str) -> list[dict[str, Any]]:
    client = runtime.get_backend_client()
    try:
        return runtime.cache.fetch(
            sections_query_key(case_id, summons_id),
            lambda: client.list_sections(case_id, summons_id),
        )
    except BackendError as exc:
        raise backend_http_error(exc, "Secties van de dagvaarding konden niet worden geladen.") from exc


def invalidate_case(runtime: IntakeRuntime, case_id: str) -> None:
    dropped = runtime.cache.invalidate(case_query_key(case_id))
    logger.debug("case_queries_invalidated", extra={"event": "case_queries_invalidated", "entries": dropped})
