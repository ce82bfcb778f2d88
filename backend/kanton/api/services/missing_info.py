from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import HTTPException

from kanton.api.contracts import DraftAnswerRequest
from kanton.api.services.runtime import (
    IntakeRuntime,
    backend_http_error,
    hold_operation,
    invalidate_case,
    load_case,
    load_saved_responses,
)
from kanton.backend_client import BackendError
from kanton.completion import compute_completion
from kanton.requirements import Requirement, extract_requirements_with_source, select_analysis_source
from kanton.responses import Answer, LedgerError, ResponseLedger

logger = logging.getLogger("kanton.api")


def case_document_ids(case: dict[str, Any]) -> set[str] | None:
    documents = case.get("documents")
    if not isinstance(documents, list):
        return None
    return {str(document["id"]) for document in documents if isinstance(document, dict) and document.get("id")}


@contextmanager
def case_ledger(runtime: IntakeRuntime, case_id: str) -> Iterator[tuple[ResponseLedger, dict[str, Any]]]:
    """Yield the case's ledger with fresh saved responses, locked against pruning.

    Backend reads happen before the lock is taken.
    """
    case = load_case(runtime, case_id)
    saved = load_saved_responses(runtime, case_id)
    with runtime.ledgers.edit(case_id) as ledger:
        ledger.load_saved(saved, valid_document_ids=case_document_ids(case))
        yield ledger, case


def case_requirements(case: dict[str, Any]) -> tuple[str | None, list[Requirement]]:
    return extract_requirements_with_source(select_analysis_source(case))


def _serialize_answer(answer: Answer | None) -> dict[str, object] | None:
    return answer.to_wire() if answer is not None else None


def build_missing_info_view(runtime: IntakeRuntime, case_id: str) -> dict[str, object]:
    with case_ledger(runtime, case_id) as (ledger, case):
        source, requirements = case_requirements(case)
        summary = compute_completion(requirements, ledger.saved_responses, ledger.draft_answers)

        items: list[dict[str, object]] = []
        for requirement in requirements:
            items.append(
                {
                    "requirement": requirement.model_dump(),
                    "saved": _serialize_answer(ledger.saved_responses.get(requirement.id)),
                    "draft": _serialize_answer(ledger.draft_answers.get(requirement.id)),
                    "display": _serialize_answer(ledger.display_answer(requirement.id)),
                    "editing": ledger.is_editing(requirement.id),
                    "editable": ledger.is_editable(requirement.id),
                }
            )
        runtime.ledgers.prune(case_id)

    return {
        "case_id": case_id,
        "source": source,
        "requirements": items,
        "completion": summary.model_dump(),
    }


def find_requirement(case: dict[str, Any], requirement_id: str) -> Requirement:
    _, requirements = case_requirements(case)
    for requirement in requirements:
        if requirement.id == requirement_id:
            return requirement
    raise HTTPException(status_code=404, detail="Requirement not found for case")


def require_known_requirement(runtime: IntakeRuntime, case_id: str, requirement_id: str) -> Requirement:
    return find_requirement(load_case(runtime, case_id), requirement_id)


def _write_answer(ledger: ResponseLedger, requirement: Requirement, payload: DraftAnswerRequest) -> None:
    if payload.kind == "text":
        value = payload.value or ""
        if not requirement.options:
            ledger.set_text(requirement.id, value)
            return
        allowed = {option.value for option in requirement.options}
        if value.strip() and value.strip() not in allowed:
            raise HTTPException(
                status_code=422,
                detail={"message": "Kies een optie uit de lijst.", "allowed": sorted(allowed)},
            )
        ledger.set_choice(requirement.id, value)
    elif payload.kind == "document":
        if not payload.document_id:
            raise HTTPException(status_code=422, detail={"message": "Een document-antwoord vereist een documentId."})
        ledger.set_document(requirement.id, payload.document_id, payload.document_name)
    else:
        ledger.set_not_available(requirement.id)


def write_draft(
    runtime: IntakeRuntime,
    case_id: str,
    requirement_id: str,
    payload: DraftAnswerRequest,
) -> dict[str, object]:
    with case_ledger(runtime, case_id) as (ledger, case):
        requirement = find_requirement(case, requirement_id)
        try:
            _write_answer(ledger, requirement, payload)
        except LedgerError as exc:
            raise HTTPException(status_code=409, detail={"message": str(exc)}) from exc

    return build_missing_info_view(runtime, case_id)


def bind_uploaded_document(
    runtime: IntakeRuntime,
    case_id: str,
    requirement_id: str,
    document_id: str,
    document_name: str | None,
) -> dict[str, object]:
    """Answer a document requirement with a freshly uploaded document.

    The upload already happened, so a conflict with a submitted answer is
    reported in the result instead of raised.
    """
    with case_ledger(runtime, case_id) as (ledger, _):
        try:
            ledger.set_document(requirement_id, document_id, document_name)
        except LedgerError as exc:
            return {"requirement_id": requirement_id, "error": str(exc)}
    return {"requirement_id": requirement_id, "document_id": document_id}


def remove_draft(runtime: IntakeRuntime, case_id: str, requirement_id: str) -> dict[str, object]:
    with runtime.ledgers.edit(case_id) as ledger:
        ledger.remove(requirement_id)
    return build_missing_info_view(runtime, case_id)


def begin_edit(runtime: IntakeRuntime, case_id: str, requirement_id: str) -> dict[str, object]:
    with case_ledger(runtime, case_id) as (ledger, case):
        find_requirement(case, requirement_id)
        ledger.begin_edit(requirement_id)
    return build_missing_info_view(runtime, case_id)


def cancel_edit(runtime: IntakeRuntime, case_id: str, requirement_id: str) -> dict[str, object]:
    with runtime.ledgers.edit(case_id) as ledger:
        ledger.cancel_edit(requirement_id)
    return build_missing_info_view(runtime, case_id)


def submit_drafts(runtime: IntakeRuntime, case_id: str) -> dict[str, object]:
    with case_ledger(runtime, case_id) as (ledger, case):
        _, requirements = case_requirements(case)
        summary = compute_completion(requirements, ledger.saved_responses, ledger.draft_answers)
        answers = ledger.pending_submission()

    if summary.outstanding_required_ids:
        count = len(summary.outstanding_required_ids)
        noun = "vraag" if count == 1 else "vragen"
        raise HTTPException(
            status_code=422,
            detail={
                "message": f"Beantwoord eerst alle {count} verplichte {noun}.",
                "code": "required_unanswered",
                "outstanding": summary.outstanding_required_ids,
            },
        )
    if not answers:
        raise HTTPException(
            status_code=422,
            detail={"message": "Vul minimaal één antwoord in voordat u verstuurt.", "code": "empty_submission"},
        )

    client = runtime.get_backend_client()
    with hold_operation(runtime, ("submit-answers", case_id)):
        try:
            client.submit_responses(case_id, [answer.to_wire() for answer in answers])
        except BackendError as exc:
            logger.warning(
                "missing_info_submit_failed",
                extra={"event": "missing_info_submit_failed", "case_id": case_id, "error": exc.message},
            )
            raise backend_http_error(exc, "Er is een fout opgetreden bij het versturen.") from exc

    # Drafts written while the request was out were not sent and stay pending.
    with runtime.ledgers.edit(case_id) as ledger:
        ledger.mark_submitted(answers)
    invalidate_case(runtime, case_id)
    logger.info(
        "missing_info_submitted",
        extra={"event": "missing_info_submitted", "case_id": case_id, "answers": len(answers)},
    )
    return build_missing_info_view(runtime, case_id)
