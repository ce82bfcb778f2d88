from __future__ import annotations

from typing import Mapping, Sequence

from pydantic import BaseModel, Field

from kanton.requirements import Requirement
from kanton.responses import Answer


class CompletionSummary(BaseModel):
    required_count: int = Field(..., ge=0)
    answered_required_count: int = Field(..., ge=0)
    covered_required_count: int = Field(..., ge=0)
    answered_total: int = Field(..., ge=0)
    draft_count: int = Field(..., ge=0)
    outstanding_required_ids: list[str] = Field(default_factory=list)
    is_complete: bool
    can_submit: bool


def compute_completion(
    requirements: Sequence[Requirement],
    saved_responses: Mapping[str, Answer],
    draft_answers: Mapping[str, Answer] | None = None,
) -> CompletionSummary:
    # A "not_available" answer is a terminal answer and satisfies a required requirement.
    drafts = draft_answers or {}
    required_ids = [requirement.id for requirement in requirements if requirement.required]
    known_ids = {requirement.id for requirement in requirements}

    answered_required = [req_id for req_id in required_ids if req_id in saved_responses]
    covered_required = [req_id for req_id in required_ids if req_id in saved_responses or req_id in drafts]
    outstanding = [req_id for req_id in required_ids if req_id not in saved_responses and req_id not in drafts]
    answered_total = len(known_ids & (set(saved_responses) | set(drafts)))

    return CompletionSummary(
        required_count=len(required_ids),
        answered_required_count=len(answered_required),
        covered_required_count=len(covered_required),
        answered_total=answered_total,
        draft_count=len(drafts),
        outstanding_required_ids=outstanding,
        is_complete=len(answered_required) == len(required_ids),
        can_submit=bool(drafts) and not outstanding,
    )
