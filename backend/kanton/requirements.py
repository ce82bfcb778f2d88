"""Missing-information requirements derived from AI-analysis payloads.

The analysis backend has produced several payload shapes over time. Each shape
is handled by one extraction strategy; strategies are tried in priority order
and the first one that yields requirements wins. Results are never merged.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Literal, Mapping

from pydantic import BaseModel, Field

logger = logging.getLogger("kanton.requirements")

InputKind = Literal["text", "document"]

UNLABELED_QUESTION = "Vraag zonder label"
CHOOSE_OPTION_HINT = "Kies een optie uit de lijst"
EVIDENCE_UPLOAD_HINT = "Upload het gevraagde document om uw zaak te versterken"
MISSING_EVIDENCE_LABEL = "Ontbrekend bewijs"
TRIAGE_QUESTION_KEYS = ("needed_questions", "default_questions")
CLAIM_SUBFIELDS = ("value", "amount", "basis", "evidence")


class RequirementOption(BaseModel):
    value: str
    label: str


class Requirement(BaseModel):
    id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    description: str | None = None
    required: bool = True
    input_kind: InputKind | None = "text"
    options: list[RequirementOption] | None = None
    examples: list[str] | None = None
    accept_mimes: list[str] | None = None
    max_length: int | None = Field(default=None, ge=1)


RequirementSource = Callable[[Mapping[str, Any]], list[Requirement]]


def _text(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _first_text(item: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = _text(item.get(key))
        if value is not None:
            return value
    return None


def _string_list(value: object) -> list[str] | None:
    if not isinstance(value, list):
        return None
    items = [text for text in (_text(entry) for entry in value) if text is not None]
    return items or None


def _coerce_max_length(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
    return parsed if parsed >= 1 else None


def _coerce_options(value: object) -> list[RequirementOption] | None:
    if not isinstance(value, list):
        return None
    options: list[RequirementOption] = []
    for entry in value:
        if isinstance(entry, Mapping):
            option_value = _first_text(entry, "value", "label")
            if option_value is None:
                continue
            options.append(RequirementOption(value=option_value, label=_first_text(entry, "label") or option_value))
            continue
        option_text = _text(entry)
        if option_text is not None:
            options.append(RequirementOption(value=option_text, label=option_text))
    return options or None


def _coerce_input_kind(value: object, default: InputKind | None) -> InputKind | None:
    normalized = str(value or "").strip().lower()
    if normalized in {"document", "file", "file_upload", "upload"}:
        return "document"
    if normalized in {"text", "choice", "multiple_choice", "date", "number"}:
        return "text"
    if normalized in {"both", "any", "either"}:
        return None
    return default


def _question_requirement(item: Mapping[str, Any], index: int) -> Requirement:
    input_kind: InputKind = "document" if item.get("answer_type") == "file_upload" else "text"

    expected = item.get("expected")
    description: str | None = None
    options: list[RequirementOption] | None = None
    examples: list[str] | None = None
    if isinstance(expected, str) and expected.strip():
        description = expected.strip()
        examples = [expected.strip()]
    elif isinstance(expected, list):
        options = _coerce_options(expected)
        if options:
            description = CHOOSE_OPTION_HINT

    identifier = _text(item.get("id")) or f"req-{index}"
    return Requirement(
        id=identifier,
        key=_text(item.get("key")) or _text(item.get("id")) or f"requirement-{index}",
        label=_first_text(item, "question", "label") or UNLABELED_QUESTION,
        description=description or _text(item.get("description")),
        required=item.get("required") is not False,
        input_kind=input_kind,
        options=options or _coerce_options(item.get("options")),
        examples=examples or _string_list(item.get("examples")),
        accept_mimes=_string_list(item.get("accept_mimes") or item.get("acceptMimes")),
        max_length=_coerce_max_length(item.get("max_length") or item.get("maxLength")),
    )


def _question_requirements(items: list[object]) -> list[Requirement]:
    return [
        _question_requirement(item, index)
        for index, item in enumerate(items)
        if isinstance(item, Mapping)
    ]


def _from_missing_info_struct(analysis: Mapping[str, Any]) -> list[Requirement]:
    struct = analysis.get("missing_info_struct")
    if isinstance(struct, Mapping):
        structs: list[object] = [struct]
    elif isinstance(struct, list):
        structs = struct
    else:
        return []

    items: list[object] = []
    for entry in structs:
        if not isinstance(entry, Mapping):
            continue
        sections = entry.get("sections")
        if not isinstance(sections, list):
            continue
        for section in sections:
            if isinstance(section, Mapping) and isinstance(section.get("items"), list):
                items.extend(section["items"])
    return _question_requirements(items)


def _from_essentials_and_clarifying(analysis: Mapping[str, Any]) -> list[Requirement]:
    items: list[object] = []
    for key in ("missing_essentials", "clarifying_questions"):
        value = analysis.get(key)
        if isinstance(value, list):
            items.extend(value)
    return _question_requirements(items)


def _from_missing_info_for_assessment(analysis: Mapping[str, Any]) -> list[Requirement]:
    items = analysis.get("missing_info_for_assessment")
    if not isinstance(items, list):
        return []
    return _question_requirements(items)


def _from_evidence_missing(analysis: Mapping[str, Any]) -> list[Requirement]:
    evidence = analysis.get("evidence")
    if not isinstance(evidence, Mapping) or not isinstance(evidence.get("missing"), list):
        return []

    requirements: list[Requirement] = []
    for index, item in enumerate(evidence["missing"]):
        label = _text(item)
        if label is not None:
            requirements.append(
                Requirement(
                    id=f"evidence-{index}",
                    key=f"evidence-requirement-{index}",
                    label=label,
                    description=EVIDENCE_UPLOAD_HINT,
                    required=False,
                    input_kind="document",
                )
            )
            continue
        if not isinstance(item, Mapping):
            continue
        identifier = _text(item.get("id")) or f"evidence-{index}"
        requirements.append(
            Requirement(
                id=identifier,
                key=_text(item.get("key")) or _text(item.get("id")) or f"evidence-requirement-{index}",
                label=_first_text(item, "label", "name", "description") or MISSING_EVIDENCE_LABEL,
                description=_first_text(item, "description", "reason") or "Upload het gevraagde document",
                required=item.get("required") is not False,
                input_kind=_coerce_input_kind(item.get("input_kind") or item.get("inputKind"), "document"),
                options=_coerce_options(item.get("options")),
                examples=_string_list(item.get("examples")),
                accept_mimes=_string_list(item.get("accept_mimes") or item.get("acceptMimes")),
                max_length=_coerce_max_length(item.get("max_length") or item.get("maxLength")),
            )
        )
    return requirements


def _from_legacy_missing_docs(analysis: Mapping[str, Any]) -> list[Requirement]:
    labels = analysis.get("missingDocsJson")
    if not isinstance(labels, list):
        return []

    requirements: list[Requirement] = []
    for index, entry in enumerate(labels):
        label = _text(entry)
        if label is None:
            continue
        requirements.append(
            Requirement(
                id=f"legacy-{index}",
                key=f"legacy-requirement-{index}",
                label=label,
                required=True,
                input_kind="document",
            )
        )
    return requirements


def _is_needed(item: object) -> bool:
    return isinstance(item, Mapping) and item.get("needed") is True


def _claim_is_needed(claim: Mapping[str, Any]) -> bool:
    if _is_needed(claim):
        return True
    return any(_is_needed(claim.get(field)) for field in CLAIM_SUBFIELDS)


def _claim_label(claim: Mapping[str, Any]) -> str:
    label = _first_text(claim, "label", "question")
    if label is not None:
        return label
    for field in CLAIM_SUBFIELDS:
        sub = claim.get(field)
        if isinstance(sub, Mapping):
            label = _first_text(sub, "label", "question", "what_to_perform")
            if label is not None:
                return label
    claim_type = _text(claim.get("type"))
    if claim_type is not None:
        return f"Vordering ({claim_type})"
    return "Vordering"


def _triage_requirement(identifier: str, item: Mapping[str, Any], label: str) -> Requirement:
    # Triage items rarely say how they should be answered; None lets the user pick text or upload.
    return Requirement(
        id=identifier,
        key=identifier,
        label=label,
        description=_first_text(item, "why_needed", "reason", "hint"),
        required=item.get("required") is not False,
        input_kind=_coerce_input_kind(item.get("answer_type") or item.get("input_kind"), None),
        options=_coerce_options(item.get("options") or item.get("expected")),
    )


def _from_triage_needed(analysis: Mapping[str, Any]) -> list[Requirement]:
    requirements: list[Requirement] = []
    for key, value in analysis.items():
        key_text = str(key).strip()
        if not key_text:
            continue
        if key_text == "claims" and isinstance(value, list):
            for index, claim in enumerate(value):
                if isinstance(claim, Mapping) and _claim_is_needed(claim):
                    requirements.append(_triage_requirement(f"claim-{index}", claim, _claim_label(claim)))
            continue
        if key_text in TRIAGE_QUESTION_KEYS and isinstance(value, list):
            for index, question in enumerate(value):
                if not _is_needed(question):
                    continue
                identifier = _text(question.get("id")) or f"question-{index}"
                label = _first_text(question, "label", "question") or UNLABELED_QUESTION
                requirements.append(_triage_requirement(identifier, question, label))
            continue
        if _is_needed(value):
            label = _first_text(value, "label", "question") or key_text.replace("_", " ").capitalize()
            requirements.append(_triage_requirement(key_text, value, label))
    return requirements


REQUIREMENT_SOURCES: tuple[tuple[str, RequirementSource], ...] = (
    ("missing_info_struct", _from_missing_info_struct),
    ("missing_essentials", _from_essentials_and_clarifying),
    ("missing_info_for_assessment", _from_missing_info_for_assessment),
    ("evidence_missing", _from_evidence_missing),
    ("missing_docs_legacy", _from_legacy_missing_docs),
    ("triage_needed", _from_triage_needed),
)


def parse_analysis(analysis: object) -> Mapping[str, Any] | None:
    if analysis is None:
        return None
    if isinstance(analysis, (str, bytes)):
        try:
            analysis = json.loads(analysis)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
    if isinstance(analysis, Mapping):
        return analysis
    return None


def select_analysis_source(case: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    """Pick the analysis payload the requirements should be derived from.

    The parsed full analysis takes precedence over the quick analysis. The full
    analysis may arrive as an object or as the raw JSON string stored by the
    analysis flow.
    """
    if not isinstance(case, Mapping):
        return None

    full_analysis = parse_analysis(case.get("fullAnalysis"))
    if full_analysis is not None:
        parsed = parse_analysis(full_analysis.get("parsedAnalysis"))
        if parsed is not None:
            return parsed

    raw_result = parse_analysis(case.get("fullAnalysisResult"))
    if raw_result is not None:
        parsed = parse_analysis(raw_result.get("parsedAnalysis"))
        if parsed is not None:
            return parsed

    return parse_analysis(case.get("analysis"))


def extract_requirements_with_source(analysis: object) -> tuple[str | None, list[Requirement]]:
    payload = parse_analysis(analysis)
    if payload is None:
        if analysis is not None:
            logger.warning(
                "analysis_unparseable",
                extra={"event": "analysis_unparseable", "analysis_type": type(analysis).__name__},
            )
        return None, []

    for source_name, source in REQUIREMENT_SOURCES:
        requirements = source(payload)
        if requirements:
            return source_name, requirements
    return None, []


def extract_requirements(analysis: object) -> list[Requirement]:
    _, requirements = extract_requirements_with_source(analysis)
    return requirements
