"""Section-by-section assembly of a summons ("dagvaarding").

A summons has eight fixed sections. Each section moves through
``pending -> generating -> draft -> (needs_changes -> generating ->) approved``
and may only be generated once its prerequisites are approved. The
prerequisites are declared in ``SECTION_GATES``; they are not a plain
"previous step" rule because the claims have to be settled before the legal
grounds can be argued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field

logger = logging.getLogger("kanton.summons")

SectionStatus = Literal["pending", "generating", "draft", "needs_changes", "approved"]

SECTION_ORDER: tuple[str, ...] = (
    "AANZEGGING",
    "JURISDICTION",
    "FACTS",
    "LEGAL_GROUNDS",
    "DEFENSES",
    "EVIDENCE",
    "CLAIMS",
    "EXHIBITS",
)

SECTION_LABELS: dict[str, str] = {
    "AANZEGGING": "Oproep en aanzegging",
    "JURISDICTION": "Bevoegdheid",
    "FACTS": "Feiten",
    "LEGAL_GROUNDS": "Rechtsgronden",
    "DEFENSES": "Verweer van gedaagde",
    "EVIDENCE": "Bewijsaanbod",
    "CLAIMS": "Vorderingen",
    "EXHIBITS": "Producties",
}

FIXED_SECTION_KEY = "AANZEGGING"
FIXED_SECTION_TEXT = (
    "Gedaagde wordt opgeroepen om op de in deze dagvaarding vermelde datum en tijd, "
    "in persoon of vertegenwoordigd door een gemachtigde, te verschijnen ter terechtzitting "
    "van de kantonrechter. Verschijnt gedaagde niet en is aan de voorgeschreven termijnen "
    "en formaliteiten voldaan, dan verleent de kantonrechter verstek tegen gedaagde en wijst "
    "hij de vordering toe, tenzij deze hem onrechtmatig of ongegrond voorkomt. Bij verschijning "
    "is gedaagde een griffierecht verschuldigd, dat binnen vier weken na verschijning moet zijn betaald."
)

STATUS_ALIASES: dict[str, SectionStatus] = {
    "pending": "pending",
    "generating": "generating",
    "draft": "draft",
    "ready_for_review": "draft",
    "needs_changes": "needs_changes",
    "rejected": "needs_changes",
    "approved": "approved",
}

GENERATABLE_STATUSES: frozenset[str] = frozenset({"pending", "needs_changes"})


class SectionTransitionError(ValueError):
    """Raised when a section action is not allowed from its current status."""


class SectionGateError(SectionTransitionError):
    """Raised when a section is generated before its prerequisites are approved."""

    def __init__(self, section_key: str, blocked_by: list[str]) -> None:
        self.section_key = section_key
        self.blocked_by = blocked_by
        joined = ", ".join(blocked_by) or "fixed section"
        super().__init__(f"Section '{section_key}' cannot be generated yet (waiting for: {joined}).")


class SummonsSection(BaseModel):
    section_key: str = Field(..., min_length=1)
    section_name: str = Field(..., min_length=1)
    step_order: int = Field(..., ge=1, le=len(SECTION_ORDER))
    status: SectionStatus = "pending"
    generated_text: str | None = None
    user_feedback: str | None = None
    generation_count: int = Field(default=0, ge=0)
    warnings: list[str] = Field(default_factory=list)
    id: str | None = None


@dataclass(frozen=True)
class SectionGate:
    requires: tuple[str, ...]
    generatable: bool = True

    def blocked_by(self, statuses: Mapping[str, str]) -> list[str]:
        return [key for key in self.requires if statuses.get(key) != "approved"]

    def __call__(self, statuses: Mapping[str, str]) -> bool:
        return self.generatable and not self.blocked_by(statuses)


SECTION_GATES: dict[str, SectionGate] = {
    "AANZEGGING": SectionGate(requires=(), generatable=False),
    "JURISDICTION": SectionGate(requires=("AANZEGGING",)),
    "FACTS": SectionGate(requires=("JURISDICTION",)),
    "LEGAL_GROUNDS": SectionGate(requires=("FACTS", "CLAIMS")),
    "DEFENSES": SectionGate(requires=("LEGAL_GROUNDS",)),
    "EVIDENCE": SectionGate(requires=("DEFENSES",)),
    "CLAIMS": SectionGate(requires=("FACTS",)),
    "EXHIBITS": SectionGate(requires=("CLAIMS",)),
}


def normalize_section_key(value: str) -> str:
    normalized = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
    if normalized not in SECTION_GATES:
        raise KeyError(value)
    return normalized


def normalize_status(value: object) -> SectionStatus:
    return STATUS_ALIASES.get(str(value or "").strip().lower(), "pending")


def default_section(section_key: str) -> SummonsSection:
    if section_key == FIXED_SECTION_KEY:
        return SummonsSection(
            section_key=section_key,
            section_name=SECTION_LABELS[section_key],
            step_order=1,
            status="approved",
            generated_text=FIXED_SECTION_TEXT,
        )
    return SummonsSection(
        section_key=section_key,
        section_name=SECTION_LABELS[section_key],
        step_order=SECTION_ORDER.index(section_key) + 1,
    )


def coerce_warnings(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    warnings: list[str] = []
    for item in value:
        if isinstance(item, Mapping):
            text = str(item.get("message") or item.get("text") or "").strip()
        else:
            text = str(item or "").strip()
        if text:
            warnings.append(text)
    return warnings


def _coerce_count(value: object) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, parsed)


def section_from_payload(payload: Mapping[str, Any]) -> SummonsSection | None:
    raw_key = payload.get("sectionKey") or payload.get("section_key")
    try:
        section_key = normalize_section_key(str(raw_key or ""))
    except KeyError:
        logger.warning("unknown_summons_section", extra={"event": "unknown_summons_section", "section_key": raw_key})
        return None

    if section_key == FIXED_SECTION_KEY:
        return default_section(section_key)

    generated_text = payload.get("generatedText", payload.get("generated_text"))
    user_feedback = payload.get("userFeedback", payload.get("user_feedback"))
    return SummonsSection(
        id=str(payload["id"]) if payload.get("id") is not None else None,
        section_key=section_key,
        section_name=SECTION_LABELS[section_key],
        step_order=SECTION_ORDER.index(section_key) + 1,
        status=normalize_status(payload.get("status")),
        generated_text=str(generated_text) if generated_text is not None else None,
        user_feedback=str(user_feedback) if user_feedback is not None else None,
        generation_count=_coerce_count(payload.get("generationCount", payload.get("generation_count"))),
        warnings=coerce_warnings(payload.get("warnings", payload.get("warningsJson"))),
    )


class SummonsAssembly:
    """State machine over the eight sections of one summons."""

    def __init__(self, sections: list[SummonsSection] | None = None) -> None:
        by_key = {section.section_key: section for section in sections or []}
        self._sections: dict[str, SummonsSection] = {
            key: by_key.get(key) or default_section(key) for key in SECTION_ORDER
        }
        self._before_generation: dict[str, SummonsSection] = {}

    @classmethod
    def from_payload(cls, payload: object) -> "SummonsAssembly":
        items = payload if isinstance(payload, list) else []
        sections = [
            section
            for section in (section_from_payload(item) for item in items if isinstance(item, Mapping))
            if section is not None
        ]
        return cls(sections)

    def sections(self) -> list[SummonsSection]:
        return [self._sections[key] for key in SECTION_ORDER]

    def section(self, section_key: str) -> SummonsSection:
        return self._sections[normalize_section_key(section_key)]

    def statuses(self) -> dict[str, SectionStatus]:
        return {key: section.status for key, section in self._sections.items()}

    def blocked_by(self, section_key: str) -> list[str]:
        return SECTION_GATES[normalize_section_key(section_key)].blocked_by(self.statuses())

    def prerequisites_met(self, section_key: str) -> bool:
        return SECTION_GATES[normalize_section_key(section_key)](self.statuses())

    def can_generate(self, section_key: str) -> bool:
        key = normalize_section_key(section_key)
        return self._sections[key].status in GENERATABLE_STATUSES and self.prerequisites_met(key)

    def previous_sections(self) -> dict[str, str]:
        return {
            key: section.generated_text or ""
            for key, section in self._sections.items()
            if section.status == "approved"
        }

    def is_generating(self) -> bool:
        return any(section.status == "generating" for section in self._sections.values())

    def is_fully_approved(self) -> bool:
        return all(section.status == "approved" for section in self._sections.values())

    def _replace(self, section: SummonsSection, **changes: object) -> SummonsSection:
        updated = section.model_copy(update=changes)
        self._sections[section.section_key] = updated
        return updated

    def begin_generation(
        self,
        section_key: str,
        *,
        user_fields: Mapping[str, object] | None = None,
        user_feedback: str | None = None,
    ) -> dict[str, object]:
        key = normalize_section_key(section_key)
        section = self._sections[key]
        gate = SECTION_GATES[key]
        if not gate.generatable:
            raise SectionGateError(key, [])
        if section.status not in GENERATABLE_STATUSES:
            raise SectionTransitionError(f"Section '{key}' cannot be generated while '{section.status}'.")
        blocked = gate.blocked_by(self.statuses())
        if blocked:
            raise SectionGateError(key, blocked)

        feedback = (user_feedback or "").strip() or None
        if section.status == "needs_changes" and feedback is None:
            feedback = section.user_feedback

        request: dict[str, object] = {
            "userFields": dict(user_fields or {}),
            "previousSections": self.previous_sections(),
        }
        if feedback:
            request["userFeedback"] = feedback

        self._before_generation[key] = section
        self._replace(section, status="generating", user_feedback=feedback)
        return request

    def mark_generating(self, section_key: str) -> SummonsSection:
        """Reflect a generation that is running elsewhere (another request, the backend)."""
        key = normalize_section_key(section_key)
        section = self._sections[key]
        if section.status == "generating":
            return section
        return self._replace(section, status="generating")

    def complete_generation(
        self,
        section_key: str,
        generated_text: str,
        *,
        warnings: list[str] | None = None,
    ) -> SummonsSection:
        key = normalize_section_key(section_key)
        section = self._sections[key]
        if section.status != "generating":
            raise SectionTransitionError(f"Section '{key}' is not being generated.")
        self._before_generation.pop(key, None)
        return self._replace(
            section,
            status="draft",
            generated_text=generated_text,
            generation_count=section.generation_count + 1,
            warnings=list(warnings or []),
        )

    def fail_generation(self, section_key: str) -> SummonsSection:
        key = normalize_section_key(section_key)
        previous = self._before_generation.pop(key, None)
        if previous is None:
            return self._sections[key]
        self._sections[key] = previous
        return previous

    def approve(self, section_key: str) -> SummonsSection:
        key = normalize_section_key(section_key)
        section = self._sections[key]
        if section.status != "draft":
            raise SectionTransitionError(f"Section '{key}' can only be approved from 'draft', not '{section.status}'.")
        return self._replace(section, status="approved")

    def reject(self, section_key: str, feedback: str) -> SummonsSection:
        key = normalize_section_key(section_key)
        section = self._sections[key]
        if section.status != "draft":
            raise SectionTransitionError(f"Section '{key}' can only be rejected from 'draft', not '{section.status}'.")
        cleaned = (feedback or "").strip()
        if not cleaned:
            raise SectionTransitionError("Feedback is required to request changes.")
        return self._replace(section, status="needs_changes", user_feedback=cleaned)

    def describe(self) -> list[dict[str, object]]:
        statuses = self.statuses()
        described: list[dict[str, object]] = []
        for section in self.sections():
            gate = SECTION_GATES[section.section_key]
            described.append(
                {
                    **section.model_dump(),
                    "can_generate": section.status in GENERATABLE_STATUSES and gate(statuses),
                    "blocked_by": gate.blocked_by(statuses),
                }
            )
        return described

    def assembled_text(self) -> str:
        if not self.is_fully_approved():
            pending = [key for key, section in self._sections.items() if section.status != "approved"]
            raise SectionTransitionError(f"Summons cannot be assembled; sections not approved: {', '.join(pending)}.")
        blocks = [
            f"{section.step_order}. {section.section_name.upper()}\n\n{(section.generated_text or '').strip()}"
            for section in self.sections()
        ]
        return "\n\n".join(blocks)
