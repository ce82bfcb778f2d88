from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool

from kanton.api.services.missing_info import bind_uploaded_document, require_known_requirement
from kanton.api.services.runtime import IntakeRuntime, backend_http_error, hold_operation, invalidate_case
from kanton.backend_client import BackendError
from kanton.config import settings
from kanton.uploads import PendingUpload, UploadSession


async def _advance_progress(session: UploadSession, interval: float) -> None:
    while session.pending:
        session.tick()
        await asyncio.sleep(interval)


def _document_name(document: dict[str, object], fallback: str) -> str:
    return str(document.get("filename") or document.get("fileName") or document.get("file_name") or fallback)


def build_uploads_router(*, runtime: IntakeRuntime) -> APIRouter:
    router = APIRouter()

    @router.post("/cases/{case_id}/uploads")
    async def upload_case_documents(
        case_id: str,
        files: list[UploadFile] = File(...),
        requirement_id: str | None = Query(default=None, min_length=1),
    ) -> dict[str, object]:
        if len(files) > settings.max_upload_files:
            raise HTTPException(
                status_code=413,
                detail=f"Too many files in one upload batch (max {settings.max_upload_files}).",
            )
        if requirement_id:
            await run_in_threadpool(require_known_requirement, runtime, case_id, requirement_id)

        buffered: list[PendingUpload] = []
        for upload in files:
            safe_name = Path(upload.filename or "upload.bin").name or "upload.bin"
            # One byte past the limit is enough to reject without buffering the rest.
            content = await upload.read(settings.max_upload_file_bytes + 1)
            buffered.append(
                PendingUpload(
                    filename=safe_name,
                    content_type=upload.content_type or "application/octet-stream",
                    content=content,
                )
            )

        session = UploadSession.start(buffered, max_bytes=settings.max_upload_file_bytes)
        rejected = [rejection.as_dict() for rejection in session.rejected]
        if not session.accepted:
            raise HTTPException(
                status_code=422,
                detail={"message": "Geen van de bestanden kon worden geüpload.", "rejected": rejected},
            )

        client = runtime.get_backend_client()
        with hold_operation(runtime, ("upload-documents", case_id)):
            runtime.uploads[case_id] = session
            ticker = asyncio.create_task(_advance_progress(session, settings.upload_progress_interval_seconds))
            try:
                documents = await run_in_threadpool(client.upload_documents, case_id, session.accepted)
            except BackendError as exc:
                session.fail(exc.message)
                raise backend_http_error(exc, "Uploaden is mislukt.") from exc
            else:
                session.complete(documents)
            finally:
                ticker.cancel()
                runtime.uploads.pop(case_id, None)
        invalidate_case(runtime, case_id)

        binding: dict[str, object] | None = None
        if requirement_id and documents:
            document = documents[0]
            document_id = str(document.get("id") or "")
            if document_id:
                binding = await run_in_threadpool(
                    bind_uploaded_document,
                    runtime,
                    case_id,
                    requirement_id,
                    document_id,
                    _document_name(document, session.accepted[0].filename),
                )

        return {
            "case_id": case_id,
            "succeeded": session.succeeded,
            "documents": session.documents,
            "progress": session.progress_snapshot(),
            "rejected": rejected,
            "draft": binding,
        }

    @router.get("/cases/{case_id}/uploads/progress")
    def upload_progress(case_id: str) -> dict[str, object]:
        session = runtime.uploads.get(case_id)
        return {
            "case_id": case_id,
            "active": session is not None,
            "files": session.progress_snapshot() if session is not None else [],
        }

    return router
