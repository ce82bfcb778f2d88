from __future__ import annotations

import logging

from kanton.api.services.assembly import generation_key
from kanton.summons import FIXED_SECTION_TEXT, SECTION_ORDER

CASE_ID = "case-1"
SUMMONS_ID = "summons-1"
BASE = f"/cases/{CASE_ID}/summons/{SUMMONS_ID}"


def _by_key(body: dict) -> dict[str, dict]:
    return {section["section_key"]: section for section in body["sections"]}


def test_sections_view_fills_in_all_eight_sections(api_client) -> None:
    response = api_client.get(f"{BASE}/sections")

    assert response.status_code == 200
    body = response.json()
    assert [section["section_key"] for section in body["sections"]] == list(SECTION_ORDER)
    sections = _by_key(body)
    assert sections["AANZEGGING"]["status"] == "approved"
    assert sections["AANZEGGING"]["can_generate"] is False
    assert sections["JURISDICTION"]["can_generate"] is True
    assert sections["FACTS"]["blocked_by"] == ["JURISDICTION"]
    assert body["refetch_after_seconds"] is None
    assert body["all_approved"] is False


def test_generate_sends_approved_context_and_returns_draft(api_client, fake_backend) -> None:
    response = api_client.post(
        f"{BASE}/sections/JURISDICTION/generate",
        json={"userFields": {"court": "Rechtbank Amsterdam"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["section"]["status"] == "draft"
    assert body["section"]["generated_text"] == "Tekst voor JURISDICTION"
    assert fake_backend.generate_requests == [
        {
            "userFields": {"court": "Rechtbank Amsterdam"},
            "previousSections": {"AANZEGGING": FIXED_SECTION_TEXT},
        }
    ]
    assert _by_key(body)["JURISDICTION"]["status"] == "draft"


def test_claims_generation_is_allowed_right_after_facts(api_client, fake_backend) -> None:
    fake_backend.set_statuses(SUMMONS_ID, {"JURISDICTION": "approved", "FACTS": "approved"})

    response = api_client.post(f"{BASE}/sections/claims/generate", json={})

    assert response.status_code == 200
    assert response.json()["section"]["section_key"] == "CLAIMS"


def test_legal_grounds_blocked_while_claims_is_draft(api_client, fake_backend) -> None:
    fake_backend.set_statuses(SUMMONS_ID, {"JURISDICTION": "approved", "FACTS": "approved", "CLAIMS": "draft"})

    response = api_client.post(f"{BASE}/sections/LEGAL_GROUNDS/generate", json={})

    assert response.status_code == 409
    assert response.json()["detail"]["blocked_by"] == ["CLAIMS"]
    assert fake_backend.generate_requests == []


def test_failed_generation_keeps_section_state(api_client, fake_backend, caplog) -> None:
    fake_backend.set_statuses(SUMMONS_ID, {"JURISDICTION": "approved", "FACTS": "needs_changes"})
    fake_backend.timeout_paths.add(f"/api/cases/{CASE_ID}/summons/{SUMMONS_ID}/sections/FACTS/generate")

    with caplog.at_level(logging.WARNING, logger="kanton.api"):
        response = api_client.post(f"{BASE}/sections/FACTS/generate", json={"userFeedback": "Meer details"})

    assert response.status_code == 502
    assert any(getattr(record, "event", None) == "section_generation_failed" for record in caplog.records)
    sections = _by_key(api_client.get(f"{BASE}/sections").json())
    assert sections["FACTS"]["status"] == "needs_changes"
    assert sections["FACTS"]["can_generate"] is True


def test_generation_in_progress_is_reported_and_refused(api_client, fake_backend) -> None:
    runtime = api_client.app.state.runtime

    with runtime.in_flight.hold(generation_key(CASE_ID, SUMMONS_ID, "JURISDICTION")):
        view = api_client.get(f"{BASE}/sections").json()
        duplicate = api_client.post(f"{BASE}/sections/JURISDICTION/generate", json={})

    assert _by_key(view)["JURISDICTION"]["status"] == "generating"
    assert view["refetch_after_seconds"] is not None
    assert duplicate.status_code == 409
    assert fake_backend.generate_requests == []


def test_approve_and_reject_follow_the_state_machine(api_client, fake_backend) -> None:
    fake_backend.set_statuses(SUMMONS_ID, {"JURISDICTION": "draft", "FACTS": "pending"})

    not_draft = api_client.post(f"{BASE}/sections/FACTS/approve")
    assert not_draft.status_code == 409

    rejected = api_client.post(f"{BASE}/sections/JURISDICTION/reject", json={"feedback": "Noem de rechtbank"})
    assert rejected.status_code == 200
    assert rejected.json()["section"]["status"] == "needs_changes"
    assert _by_key(rejected.json())["JURISDICTION"]["user_feedback"] == "Noem de rechtbank"

    regenerated = api_client.post(f"{BASE}/sections/JURISDICTION/generate", json={})
    assert regenerated.status_code == 200
    assert fake_backend.generate_requests[-1]["userFeedback"] == "Noem de rechtbank"

    approved = api_client.post(f"{BASE}/sections/JURISDICTION/approve")
    assert approved.status_code == 200
    assert _by_key(approved.json())["FACTS"]["can_generate"] is True


def test_reject_requires_feedback(api_client, fake_backend) -> None:
    fake_backend.set_statuses(SUMMONS_ID, {"JURISDICTION": "draft"})

    assert api_client.post(f"{BASE}/sections/JURISDICTION/reject", json={"feedback": ""}).status_code == 422
    assert api_client.post(f"{BASE}/sections/JURISDICTION/reject", json={"feedback": "   "}).status_code == 422


def test_unknown_section_returns_404(api_client) -> None:
    assert api_client.post(f"{BASE}/sections/PREAMBLE/generate", json={}).status_code == 404


def test_assemble_requires_every_section_approved(api_client, fake_backend) -> None:
    blocked = api_client.post(f"{BASE}/assemble")
    assert blocked.status_code == 409
    assert "JURISDICTION" in blocked.json()["detail"]["pending"]

    fake_backend.set_statuses(SUMMONS_ID, {key: "approved" for key in SECTION_ORDER})
    api_client.app.state.runtime.cache.clear()

    response = api_client.post(f"{BASE}/assemble")

    assert response.status_code == 200
    assert response.json()["text"].startswith("1. OPROEP EN AANZEGGING")
    assert response.json()["backend"]["documentId"] == "doc-summons"
