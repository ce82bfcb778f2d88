from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import httpx

from kanton.config import Settings
from kanton.uploads import PendingUpload

logger = logging.getLogger("kanton.backend")


class BackendError(RuntimeError):
    """Raised when the case backend fails, times out or returns an error status."""

    def __init__(self, message: str, *, status_code: int | None = None, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.path = path


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, Mapping):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = response.text.strip()
    return text[:240] if text else f"Backend responded with HTTP {response.status_code}."


class CaseBackendClient:
    """Thin client over the case REST backend.

    The backend owns cases, documents, missing-info responses and summons
    sections; nothing returned here is cached by the client itself.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.Client(
            base_url=settings.backend_base_url.rstrip("/"),
            timeout=settings.backend_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._settings.backend_api_token.strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: object | None = None,
        files: list[tuple[str, tuple[str, bytes, str]]] | None = None,
        timeout: float | None = None,
    ) -> Any:
        try:
            response = self._client.request(
                method,
                path,
                json=json,
                files=files,
                headers=self._headers(),
                timeout=timeout if timeout is not None else self._settings.backend_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            logger.warning("backend_timeout", extra={"event": "backend_timeout", "method": method, "path": path})
            raise BackendError("The case backend did not respond in time.", path=path) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "backend_unreachable",
                extra={"event": "backend_unreachable", "method": method, "path": path, "error": str(exc)},
            )
            raise BackendError(f"The case backend could not be reached: {exc}", path=path) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "backend_error_response",
                extra={
                    "event": "backend_error_response",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "error": message,
                },
            )
            raise BackendError(message, status_code=response.status_code, path=path)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError("The case backend returned invalid JSON.", status_code=response.status_code, path=path) from exc

    def get_case(self, case_id: str) -> dict[str, Any]:
        payload = self._request("GET", f"/api/cases/{case_id}")
        if not isinstance(payload, dict):
            raise BackendError("Unexpected case payload.", path=f"/api/cases/{case_id}")
        return payload

    def list_responses(self, case_id: str) -> list[dict[str, Any]]:
        payload = self._request("GET", f"/api/cases/{case_id}/missing-info/responses")
        responses = payload.get("responses") if isinstance(payload, dict) else None
        return [item for item in responses or [] if isinstance(item, dict)]

    def submit_responses(self, case_id: str, responses: Sequence[Mapping[str, object]]) -> Any:
        return self._request(
            "POST",
            f"/api/cases/{case_id}/missing-info/responses",
            json={"responses": [dict(item) for item in responses]},
        )

    def upload_documents(self, case_id: str, uploads: Sequence[PendingUpload]) -> list[dict[str, Any]]:
        # The single-file endpoint variant expects "file"; batches use "files".
        field_name = "file" if len(uploads) == 1 else "files"
        files = [
            (field_name, (upload.filename, upload.content, upload.content_type or "application/octet-stream"))
            for upload in uploads
        ]
        payload = self._request("POST", f"/api/cases/{case_id}/uploads", files=files)
        if isinstance(payload, dict):
            payload = payload.get("documents", [payload])
        if not isinstance(payload, list):
            raise BackendError("Unexpected upload payload.", path=f"/api/cases/{case_id}/uploads")
        return [item for item in payload if isinstance(item, dict)]

    def _sections_path(self, case_id: str, summons_id: str) -> str:
        return f"/api/cases/{case_id}/summons/{summons_id}/sections"

    def list_sections(self, case_id: str, summons_id: str) -> list[dict[str, Any]]:
        payload = self._request("GET", self._sections_path(case_id, summons_id))
        if isinstance(payload, dict):
            payload = payload.get("sections", [])
        return [item for item in payload or [] if isinstance(item, dict)]

    def generate_section(
        self,
        case_id: str,
        summons_id: str,
        section_key: str,
        request: Mapping[str, object],
    ) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"{self._sections_path(case_id, summons_id)}/{section_key}/generate",
            json=dict(request),
            timeout=self._settings.generation_timeout_seconds,
        )
        return payload if isinstance(payload, dict) else {}

    def approve_section(self, case_id: str, summons_id: str, section_key: str) -> dict[str, Any]:
        payload = self._request("POST", f"{self._sections_path(case_id, summons_id)}/{section_key}/approve", json={})
        return payload if isinstance(payload, dict) else {}

    def reject_section(self, case_id: str, summons_id: str, section_key: str, feedback: str) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"{self._sections_path(case_id, summons_id)}/{section_key}/reject",
            json={"feedback": feedback},
        )
        return payload if isinstance(payload, dict) else {}

    def assemble_summons(self, case_id: str, summons_id: str) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"/api/cases/{case_id}/summons/{summons_id}/assemble",
            json={},
            timeout=self._settings.generation_timeout_seconds,
        )
        return payload if isinstance(payload, dict) else {}

    def close(self) -> None:
        self._client.close()
