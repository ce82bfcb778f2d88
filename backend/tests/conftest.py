from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from kanton.backend_client import CaseBackendClient
from kanton.config import settings
from kanton.main import create_app

CASE_ID = "case-1"
SUMMONS_ID = "summons-1"


def sample_analysis() -> dict[str, Any]:
    return {
        "missing_info_struct": {
            "sections": [
                {
                    "title": "Overeenkomst",
                    "items": [
                        {
                            "id": "q-contract",
                            "question": "Heeft u een schriftelijk contract?",
                            "answer_type": "file_upload",
                            "required": True,
                        },
                        {
                            "id": "q-amount",
                            "question": "Wat is het openstaande bedrag?",
                            "expected": "Bedrag in euro's",
                            "required": True,
                        },
                        {
                            "id": "q-notes",
                            "question": "Overige opmerkingen",
                            "required": False,
                        },
                    ],
                }
            ]
        }
    }


@dataclass
class FakeCaseBackend:
    """In-memory stand-in for the case REST backend, served through httpx.MockTransport."""

    cases: dict[str, dict[str, Any]] = field(default_factory=dict)
    responses: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    sections: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    submitted: list[list[dict[str, Any]]] = field(default_factory=list)
    generate_requests: list[dict[str, Any]] = field(default_factory=list)
    upload_bodies: list[bytes] = field(default_factory=list)
    fail_paths: dict[str, int] = field(default_factory=dict)
    timeout_paths: set[str] = field(default_factory=set)
    # Called while a submit or upload request is being handled, before it is stored.
    on_submit: Callable[[], None] | None = None
    on_upload: Callable[[], None] | None = None
    upload_name_prefix: str = ""
    next_document: int = 1

    def calls_to(self, method: str, suffix: str) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] == method and call[1].endswith(suffix)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if path in self.timeout_paths:
            raise httpx.ReadTimeout("timed out", request=request)
        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], json={"message": "backend exploded"})

        match = re.fullmatch(r"/api/cases/([^/]+)", path)
        if match and request.method == "GET":
            case = self.cases.get(match.group(1))
            if case is None:
                return httpx.Response(404, json={"message": "Case not found"})
            return httpx.Response(200, json=case)

        match = re.fullmatch(r"/api/cases/([^/]+)/missing-info/responses", path)
        if match:
            case_id = match.group(1)
            if request.method == "GET":
                return httpx.Response(200, json={"responses": self.responses.get(case_id, [])})
            if self.on_submit is not None:
                self.on_submit()
            body = json.loads(request.content)
            self.submitted.append(body["responses"])
            stored = {item["requirementId"]: item for item in self.responses.get(case_id, [])}
            stored.update({item["requirementId"]: item for item in body["responses"]})
            self.responses[case_id] = list(stored.values())
            return httpx.Response(200, json={"saved": len(body["responses"])})

        match = re.fullmatch(r"/api/cases/([^/]+)/uploads", path)
        if match and request.method == "POST":
            body = request.read()
            self.upload_bodies.append(body)
            if self.on_upload is not None:
                self.on_upload()
            names = re.findall(rb'filename="([^"]+)"', body)
            documents = []
            for name in names:
                document = {"id": f"doc-{self.next_document}", "filename": self.upload_name_prefix + name.decode()}
                self.next_document += 1
                documents.append(document)
                self.cases.setdefault(match.group(1), {}).setdefault("documents", []).append(document)
            return httpx.Response(201, json={"documents": documents})

        match = re.fullmatch(r"/api/cases/([^/]+)/summons/([^/]+)/sections", path)
        if match and request.method == "GET":
            return httpx.Response(200, json={"sections": self.sections.get(match.group(2), [])})

        match = re.fullmatch(r"/api/cases/([^/]+)/summons/([^/]+)/sections/([A-Z_]+)/(generate|approve|reject)", path)
        if match and request.method == "POST":
            summons_id, key, action = match.group(2), match.group(3), match.group(4)
            body = json.loads(request.content or b"{}")
            section = self._section(summons_id, key)
            if action == "generate":
                self.generate_requests.append(body)
                section["status"] = "draft"
                section["generatedText"] = f"Tekst voor {key}"
                section["generationCount"] = int(section.get("generationCount") or 0) + 1
                return httpx.Response(200, json={"generatedText": f"Tekst voor {key}", "warnings": []})
            if action == "approve":
                section["status"] = "approved"
                return httpx.Response(200, json={"section": section})
            section["status"] = "needs_changes"
            section["userFeedback"] = body.get("feedback")
            return httpx.Response(200, json={"section": section})

        match = re.fullmatch(r"/api/cases/([^/]+)/summons/([^/]+)/assemble", path)
        if match and request.method == "POST":
            return httpx.Response(200, json={"documentId": "doc-summons", "status": "assembled"})

        return httpx.Response(404, json={"message": f"No route for {request.method} {path}"})

    def _section(self, summons_id: str, key: str) -> dict[str, Any]:
        sections = self.sections.setdefault(summons_id, [])
        for section in sections:
            if section["sectionKey"] == key:
                return section
        section = {"sectionKey": key, "status": "pending"}
        sections.append(section)
        return section

    def set_statuses(self, summons_id: str, statuses: dict[str, str]) -> None:
        for key, status in statuses.items():
            section = self._section(summons_id, key)
            section["status"] = status
            if status in {"draft", "approved"}:
                section.setdefault("generatedText", f"Tekst voor {key}")


@pytest.fixture
def fake_backend() -> FakeCaseBackend:
    backend = FakeCaseBackend()
    backend.cases[CASE_ID] = {
        "id": CASE_ID,
        "analysis": sample_analysis(),
        "documents": [{"id": "doc-existing", "filename": "contract.pdf"}],
    }
    return backend


@pytest.fixture
def backend_client(fake_backend: FakeCaseBackend) -> CaseBackendClient:
    transport = httpx.MockTransport(fake_backend.handle)
    return CaseBackendClient(settings, client=httpx.Client(transport=transport, base_url="http://backend.test"))


@pytest.fixture
def api_client(backend_client: CaseBackendClient):
    app = create_app(get_backend_client=lambda: backend_client)
    with TestClient(app) as client:
        yield client
