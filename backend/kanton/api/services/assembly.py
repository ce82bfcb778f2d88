from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import HTTPException

from kanton.api.contracts import GenerateSectionRequest
from kanton.api.services.runtime import (
    IntakeRuntime,
    backend_http_error,
    hold_operation,
    load_sections,
    sections_query_key,
)
from kanton.backend_client import BackendError
from kanton.config import settings
from kanton.summons import (
    SECTION_ORDER,
    SectionGateError,
    SectionTransitionError,
    SummonsAssembly,
    coerce_warnings,
    normalize_section_key,
)

logger = logging.getLogger("kanton.api")


def generation_key(case_id: str, summons_id: str, section_key: str) -> tuple[str, ...]:
    return ("generate-section", case_id, summons_id, section_key)


def resolve_section_key(section_key: str) -> str:
    try:
        return normalize_section_key(section_key)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown summons section '{section_key}'") from exc


def load_assembly(runtime: IntakeRuntime, case_id: str, summons_id: str) -> SummonsAssembly:
    assembly = SummonsAssembly.from_payload(load_sections(runtime, case_id, summons_id))
    for key in SECTION_ORDER:
        if runtime.in_flight.is_held(generation_key(case_id, summons_id, key)):
            assembly.mark_generating(key)
    return assembly


def sections_view(runtime: IntakeRuntime, case_id: str, summons_id: str) -> dict[str, object]:
    assembly = load_assembly(runtime, case_id, summons_id)
    generating = assembly.is_generating()
    return {
        "case_id": case_id,
        "summons_id": summons_id,
        "sections": assembly.describe(),
        "all_approved": assembly.is_fully_approved(),
        "refetch_after_seconds": settings.sections_poll_interval_seconds if generating else None,
    }


def _transition_error(exc: SectionTransitionError) -> HTTPException:
    detail: dict[str, object] = {"message": str(exc)}
    if isinstance(exc, SectionGateError):
        detail["blocked_by"] = exc.blocked_by
    return HTTPException(status_code=409, detail=detail)


def _generated_text(result: Mapping[str, Any]) -> str | None:
    section = result.get("section")
    candidates = [result.get("generatedText"), result.get("generated_text")]
    if isinstance(section, Mapping):
        candidates.extend([section.get("generatedText"), section.get("generated_text")])
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return None


def _invalidate_sections(runtime: IntakeRuntime, case_id: str, summons_id: str) -> None:
    runtime.cache.invalidate(sections_query_key(case_id, summons_id))


def generate_section(
    runtime: IntakeRuntime,
    case_id: str,
    summons_id: str,
    section_key: str,
    payload: GenerateSectionRequest,
) -> dict[str, object]:
    key = resolve_section_key(section_key)
    assembly = load_assembly(runtime, case_id, summons_id)
    try:
        request = assembly.begin_generation(key, user_fields=payload.user_fields, user_feedback=payload.user_feedback)
    except SectionTransitionError as exc:
        raise _transition_error(exc) from exc

    client = runtime.get_backend_client()
    with hold_operation(runtime, generation_key(case_id, summons_id, key)):
        logger.info(
            "section_generation_started",
            extra={"event": "section_generation_started", "case_id": case_id, "summons_id": summons_id, "section": key},
        )
        try:
            result = client.generate_section(case_id, summons_id, key, request)
        except BackendError as exc:
            assembly.fail_generation(key)
            _invalidate_sections(runtime, case_id, summons_id)
            logger.warning(
                "section_generation_failed",
                extra={
                    "event": "section_generation_failed",
                    "case_id": case_id,
                    "summons_id": summons_id,
                    "section": key,
                    "error": exc.message,
                },
            )
            raise backend_http_error(exc, "Genereren van de sectie is mislukt.") from exc

    text = _generated_text(result)
    _invalidate_sections(runtime, case_id, summons_id)
    if text is None:
        assembly.fail_generation(key)
        raise HTTPException(
            status_code=502,
            detail={"message": "Genereren van de sectie is mislukt.", "error": "Backend returned no generated text."},
        )

    raw_section = result.get("section")
    raw_warnings = result.get("warnings")
    if raw_warnings is None and isinstance(raw_section, Mapping):
        raw_warnings = raw_section.get("warnings")
    section = assembly.complete_generation(key, text, warnings=coerce_warnings(raw_warnings))
    logger.info(
        "section_generated",
        extra={
            "event": "section_generated",
            "case_id": case_id,
            "summons_id": summons_id,
            "section": key,
            "generation_count": section.generation_count,
        },
    )
    return {"section": section.model_dump(), **sections_view(runtime, case_id, summons_id)}


def approve_section(runtime: IntakeRuntime, case_id: str, summons_id: str, section_key: str) -> dict[str, object]:
    key = resolve_section_key(section_key)
    assembly = load_assembly(runtime, case_id, summons_id)
    try:
        section = assembly.approve(key)
    except SectionTransitionError as exc:
        raise _transition_error(exc) from exc

    client = runtime.get_backend_client()
    with hold_operation(runtime, ("approve-section", case_id, summons_id, key)):
        try:
            client.approve_section(case_id, summons_id, key)
        except BackendError as exc:
            raise backend_http_error(exc, "Goedkeuren van de sectie is mislukt.") from exc
    _invalidate_sections(runtime, case_id, summons_id)
    logger.info(
        "section_approved",
        extra={"event": "section_approved", "case_id": case_id, "summons_id": summons_id, "section": key},
    )
    return {"section": section.model_dump(), **sections_view(runtime, case_id, summons_id)}


def reject_section(
    runtime: IntakeRuntime,
    case_id: str,
    summons_id: str,
    section_key: str,
    feedback: str,
) -> dict[str, object]:
    key = resolve_section_key(section_key)
    assembly = load_assembly(runtime, case_id, summons_id)
    try:
        section = assembly.reject(key, feedback)
    except SectionTransitionError as exc:
        if not feedback.strip():
            raise HTTPException(status_code=422, detail={"message": str(exc)}) from exc
        raise _transition_error(exc) from exc

    client = runtime.get_backend_client()
    with hold_operation(runtime, ("reject-section", case_id, summons_id, key)):
        try:
            client.reject_section(case_id, summons_id, key, section.user_feedback or "")
        except BackendError as exc:
            raise backend_http_error(exc, "Afwijzen van de sectie is mislukt.") from exc
    _invalidate_sections(runtime, case_id, summons_id)
    logger.info(
        "section_rejected",
        extra={"event": "section_rejected", "case_id": case_id, "summons_id": summons_id, "section": key},
    )
    return {"section": section.model_dump(), **sections_view(runtime, case_id, summons_id)}


def assemble_summons(runtime: IntakeRuntime, case_id: str, summons_id: str) -> dict[str, object]:
    assembly = load_assembly(runtime, case_id, summons_id)
    try:
        text = assembly.assembled_text()
    except SectionTransitionError as exc:
        pending = [section.section_key for section in assembly.sections() if section.status != "approved"]
        raise HTTPException(status_code=409, detail={"message": str(exc), "pending": pending}) from exc

    client = runtime.get_backend_client()
    with hold_operation(runtime, ("assemble-summons", case_id, summons_id)):
        try:
            result = client.assemble_summons(case_id, summons_id)
        except BackendError as exc:
            raise backend_http_error(exc, "Samenstellen van de dagvaarding is mislukt.") from exc
    _invalidate_sections(runtime, case_id, summons_id)
    logger.info("summons_assembled", extra={"event": "summons_assembled", "case_id": case_id, "summons_id": summons_id})
    return {"case_id": case_id, "summons_id": summons_id, "text": text, "backend": result}
