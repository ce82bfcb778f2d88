from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger("kanton.responses")

AnswerKind = Literal["text", "document", "not_available"]


class LedgerError(ValueError):
    """Raised when a draft would overwrite a submitted answer outside edit mode."""


class Answer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requirement_id: str = Field(..., min_length=1, alias="requirementId")
    kind: AnswerKind
    value: str | None = None
    document_id: str | None = Field(default=None, alias="documentId")
    document_name: str | None = Field(default=None, alias="documentName")
    not_available: bool | None = Field(default=None, alias="notAvailable")

    @model_validator(mode="after")
    def validate_payload(self) -> "Answer":
        if self.value is not None:
            self.value = self.value.strip() or None
        if self.kind == "not_available":
            self.not_available = True
            return self
        has_value = bool(self.value)
        has_document = bool(self.document_id)
        if has_value == has_document:
            raise ValueError("Either 'value' or 'documentId' must be provided (unless kind is 'not_available').")
        if self.kind == "text" and not has_value:
            raise ValueError("A text answer requires a non-empty 'value'.")
        if self.kind == "document" and not has_document:
            raise ValueError("A document answer requires a 'documentId'.")
        return self

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ResponseLedger:
    """Draft and submitted answers for one case.

    ``draft_answers`` only lives in this process and is what the user is still
    editing. ``saved_responses`` mirrors what the backend returned and is never
    changed locally; it is replaced wholesale by :meth:`load_saved`.
    A submitted answer wins for display unless the user explicitly entered edit
    mode for that requirement.
    """

    def __init__(self) -> None:
        self.draft_answers: dict[str, Answer] = {}
        self.saved_responses: dict[str, Answer] = {}
        self._editing: set[str] = set()

    def load_saved(
        self,
        responses: Iterable[Answer | dict[str, object]],
        *,
        valid_document_ids: set[str] | None = None,
    ) -> None:
        saved: dict[str, Answer] = {}
        for response in responses:
            if isinstance(response, Answer):
                answer = response
            else:
                try:
                    answer = Answer.model_validate(response)
                except ValidationError as err:
                    logger.warning(
                        "saved_response_skipped",
                        extra={
                            "event": "saved_response_skipped",
                            "errors": [issue["msg"] for issue in err.errors()],
                        },
                    )
                    continue
            if (
                answer.kind == "document"
                and valid_document_ids is not None
                and answer.document_id not in valid_document_ids
            ):
                continue
            saved[answer.requirement_id] = answer
        self.saved_responses = saved

    def is_editing(self, requirement_id: str) -> bool:
        return requirement_id in self._editing

    def is_editable(self, requirement_id: str) -> bool:
        return requirement_id not in self.saved_responses or requirement_id in self._editing

    def begin_edit(self, requirement_id: str) -> None:
        self._editing.add(requirement_id)

    def cancel_edit(self, requirement_id: str) -> None:
        self._editing.discard(requirement_id)
        self.draft_answers.pop(requirement_id, None)

    def _store(self, answer: Answer) -> Answer:
        if not self.is_editable(answer.requirement_id):
            raise LedgerError(
                f"Requirement '{answer.requirement_id}' already has a submitted answer; enter edit mode first."
            )
        self.draft_answers[answer.requirement_id] = answer
        return answer

    def set_text(self, requirement_id: str, value: str) -> Answer | None:
        trimmed = (value or "").strip()
        if not trimmed:
            self.remove(requirement_id)
            return None
        return self._store(Answer(requirement_id=requirement_id, kind="text", value=trimmed))

    def set_choice(self, requirement_id: str, value: str) -> Answer | None:
        return self.set_text(requirement_id, value)

    def set_document(self, requirement_id: str, document_id: str, document_name: str | None = None) -> Answer:
        return self._store(
            Answer(
                requirement_id=requirement_id,
                kind="document",
                document_id=document_id,
                document_name=document_name,
            )
        )

    def set_not_available(self, requirement_id: str) -> Answer:
        return self._store(Answer(requirement_id=requirement_id, kind="not_available", not_available=True))

    def remove(self, requirement_id: str) -> None:
        self.draft_answers.pop(requirement_id, None)

    def display_answer(self, requirement_id: str) -> Answer | None:
        if requirement_id in self._editing:
            return self.draft_answers.get(requirement_id)
        saved = self.saved_responses.get(requirement_id)
        if saved is not None:
            return saved
        return self.draft_answers.get(requirement_id)

    def pending_submission(self) -> list[Answer]:
        return list(self.draft_answers.values())

    def mark_submitted(self, sent: Iterable[Answer]) -> None:
        """Drop the drafts that went out; a draft replaced meanwhile stays pending."""
        for answer in sent:
            if self.draft_answers.get(answer.requirement_id) is answer:
                del self.draft_answers[answer.requirement_id]
        self._editing &= set(self.draft_answers)

    @property
    def idle(self) -> bool:
        return not self.draft_answers and not self._editing


class LedgerStore:
    """Per-case ledgers held in process memory; lost on restart like a browser tab.

    Only ledgers with drafts or open edit modes are kept. Saved responses are
    reloaded from the backend on every read, so an idle ledger is dropped by
    :meth:`prune`. Mutations go through :meth:`edit`, which holds the store lock
    so a prune can never orphan a ledger that is being written to.
    """

    def __init__(self) -> None:
        self._ledgers: dict[str, ResponseLedger] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ledgers)

    def get(self, case_id: str) -> ResponseLedger:
        with self._lock:
            ledger = self._ledgers.get(case_id)
            if ledger is None:
                ledger = ResponseLedger()
                self._ledgers[case_id] = ledger
            return ledger

    @contextmanager
    def edit(self, case_id: str) -> Iterator[ResponseLedger]:
        with self._lock:
            yield self.get(case_id)

    def prune(self, case_id: str) -> bool:
        with self._lock:
            ledger = self._ledgers.get(case_id)
            if ledger is None or not ledger.idle:
                return False
            del self._ledgers[case_id]
            return True

    def discard(self, case_id: str) -> None:
        with self._lock:
            self._ledgers.pop(case_id, None)
