from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

logger = logging.getLogger("kanton.uploads")

MAX_UPLOAD_FILE_BYTES = 100 * 1024 * 1024

ALLOWED_UPLOAD_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "text/plain",
        "text/csv",
        "message/rfc822",
    }
)
ALWAYS_ALLOWED_EXTENSIONS = (".eml",)


@dataclass(frozen=True)
class PendingUpload:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class UploadRejection:
    filename: str
    code: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"filename": self.filename, "code": self.code, "message": self.message}


def _normalize_content_type(content_type: str | None) -> str:
    return str(content_type or "").split(";", 1)[0].strip().lower()


def validate_upload(
    filename: str,
    content_type: str | None,
    size: int,
    *,
    max_bytes: int = MAX_UPLOAD_FILE_BYTES,
) -> UploadRejection | None:
    safe_name = Path(filename or "").name or "upload.bin"
    mime = _normalize_content_type(content_type)
    if mime not in ALLOWED_UPLOAD_MIME_TYPES and not safe_name.lower().endswith(ALWAYS_ALLOWED_EXTENSIONS):
        return UploadRejection(
            filename=safe_name,
            code="unsupported_type",
            message=f"{safe_name} heeft een niet-ondersteund bestandstype",
        )
    if size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        return UploadRejection(
            filename=safe_name,
            code="too_large",
            message=f"{safe_name} is groter dan {limit_mb}MB",
        )
    return None


def partition_uploads(
    files: Sequence[PendingUpload],
    *,
    max_bytes: int = MAX_UPLOAD_FILE_BYTES,
) -> tuple[list[PendingUpload], list[UploadRejection]]:
    accepted: list[PendingUpload] = []
    rejected: list[UploadRejection] = []
    for upload in files:
        rejection = validate_upload(upload.filename, upload.content_type, upload.size, max_bytes=max_bytes)
        if rejection is None:
            accepted.append(upload)
            continue
        logger.info(
            "upload_rejected",
            extra={"event": "upload_rejected", "file_name": rejection.filename, "code": rejection.code},
        )
        rejected.append(rejection)
    return accepted, rejected


class SimulatedProgress:
    """Cosmetic progress for one file.

    It advances by random increments and says nothing about whether the upload
    actually reached the backend.
    """

    def __init__(self, *, rng: random.Random | None = None, max_step: float = 20.0) -> None:
        self._rng = rng or random.Random()
        self._max_step = max_step
        self.value = 0.0

    @property
    def finished(self) -> bool:
        return self.value >= 100.0

    def advance(self) -> float:
        if not self.finished:
            self.value = min(100.0, self.value + self._rng.random() * self._max_step)
        return self.value


@dataclass
class FileProgress:
    filename: str
    bar: SimulatedProgress

    def as_dict(self) -> dict[str, object]:
        return {"filename": self.filename, "progress": round(self.bar.value, 1)}


@dataclass
class UploadSession:
    """Tracks one upload batch with two separate signals.

    ``progress`` holds one simulated bar per accepted file, in upload order, so
    two files with the same name each get their own. ``succeeded`` and
    ``documents`` only change when the backend answers.
    """

    accepted: list[PendingUpload]
    rejected: list[UploadRejection] = field(default_factory=list)
    progress: list[FileProgress] = field(default_factory=list)
    succeeded: bool | None = None
    documents: list[dict[str, object]] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def start(
        cls,
        files: Sequence[PendingUpload],
        *,
        max_bytes: int = MAX_UPLOAD_FILE_BYTES,
        rng: random.Random | None = None,
    ) -> "UploadSession":
        accepted, rejected = partition_uploads(files, max_bytes=max_bytes)
        progress = [FileProgress(upload.filename, SimulatedProgress(rng=rng)) for upload in accepted]
        return cls(accepted=accepted, rejected=rejected, progress=progress)

    @property
    def pending(self) -> bool:
        return self.succeeded is None

    def tick(self) -> list[float]:
        return [item.bar.advance() for item in self.progress]

    def progress_snapshot(self) -> list[dict[str, object]]:
        return [item.as_dict() for item in self.progress]

    def complete(self, documents: list[dict[str, object]]) -> None:
        self.succeeded = True
        self.documents = documents
        self.error = None

    def fail(self, error: str) -> None:
        self.succeeded = False
        self.documents = []
        self.error = error
