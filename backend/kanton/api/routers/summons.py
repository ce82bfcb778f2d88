from __future__ import annotations

from fastapi import APIRouter

from kanton.api.contracts import GenerateSectionRequest, RejectSectionRequest
from kanton.api.services import assembly
from kanton.api.services.runtime import IntakeRuntime


def build_summons_router(*, runtime: IntakeRuntime) -> APIRouter:
    router = APIRouter(prefix="/cases/{case_id}/summons/{summons_id}")

    @router.get("/sections")
    def list_sections(case_id: str, summons_id: str) -> dict[str, object]:
        return assembly.sections_view(runtime, case_id, summons_id)

    @router.post("/sections/{section_key}/generate")
    def generate_section(
        case_id: str,
        summons_id: str,
        section_key: str,
        payload: GenerateSectionRequest | None = None,
    ) -> dict[str, object]:
        return assembly.generate_section(
            runtime, case_id, summons_id, section_key, payload or GenerateSectionRequest()
        )

    @router.post("/sections/{section_key}/approve")
    def approve_section(case_id: str, summons_id: str, section_key: str) -> dict[str, object]:
        return assembly.approve_section(runtime, case_id, summons_id, section_key)

    @router.post("/sections/{section_key}/reject")
    def reject_section(
        case_id: str,
        summons_id: str,
        section_key: str,
        payload: RejectSectionRequest,
    ) -> dict[str, object]:
        return assembly.reject_section(runtime, case_id, summons_id, section_key, payload.feedback)

    @router.post("/assemble")
    def assemble(case_id: str, summons_id: str) -> dict[str, object]:
        return assembly.assemble_summons(runtime, case_id, summons_id)

    return router
