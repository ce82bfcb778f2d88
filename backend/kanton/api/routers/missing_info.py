from __future__ import annotations

from fastapi import APIRouter

from kanton.api.contracts import DraftAnswerRequest
from kanton.api.services import missing_info
from kanton.api.services.runtime import IntakeRuntime


def build_missing_info_router(*, runtime: IntakeRuntime) -> APIRouter:
    router = APIRouter(prefix="/cases/{case_id}/missing-info")

    @router.get("")
    def get_missing_info(case_id: str) -> dict[str, object]:
        return missing_info.build_missing_info_view(runtime, case_id)

    @router.put("/drafts/{requirement_id}")
    def put_draft(case_id: str, requirement_id: str, payload: DraftAnswerRequest) -> dict[str, object]:
        return missing_info.write_draft(runtime, case_id, requirement_id, payload)

    @router.delete("/drafts/{requirement_id}")
    def delete_draft(case_id: str, requirement_id: str) -> dict[str, object]:
        return missing_info.remove_draft(runtime, case_id, requirement_id)

    @router.post("/drafts/{requirement_id}/edit")
    def edit_submitted_answer(case_id: str, requirement_id: str) -> dict[str, object]:
        return missing_info.begin_edit(runtime, case_id, requirement_id)

    @router.delete("/drafts/{requirement_id}/edit")
    def cancel_edit(case_id: str, requirement_id: str) -> dict[str, object]:
        return missing_info.cancel_edit(runtime, case_id, requirement_id)

    @router.post("/submit")
    def submit(case_id: str) -> dict[str, object]:
        return missing_info.submit_drafts(runtime, case_id)

    return router
