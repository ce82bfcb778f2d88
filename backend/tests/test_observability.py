import json
import logging
from uuid import UUID

from fastapi.testclient import TestClient

from kanton.main import app
from kanton.observability import JsonFormatter, reset_request_id, sanitize_for_logging, set_request_id


def test_request_id_header_is_generated_when_missing() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    request_id = response.headers.get("X-Request-ID")
    assert request_id is not None
    UUID(request_id)


def test_request_id_header_is_preserved_when_provided() -> None:
    with TestClient(app) as client:
        response = client.get("/health", headers={"X-Request-ID": "zaak-request-123"})
    assert response.status_code == 200
    assert response.headers.get("X-Request-ID") == "zaak-request-123"


def test_invalid_request_id_is_replaced() -> None:
    with TestClient(app) as client:
        response = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    UUID(response.headers["X-Request-ID"])


def test_request_started_log_redacts_sensitive_query_values(caplog) -> None:
    with TestClient(app) as client:
        with caplog.at_level(logging.INFO, logger="kanton.api"):
            response = client.get("/health?token=supersecret&iban=NL91ABNA0417164300&q=huur")
    assert response.status_code == 200

    request_started_logs = [
        record for record in caplog.records if getattr(record, "event", None) == "request_started"
    ]
    assert request_started_logs
    query = request_started_logs[-1].query
    assert query["token"] == "[REDACTED]"
    assert query["iban"] == "[REDACTED]"
    assert query["q"] == "huur"


def test_sanitize_for_logging_redacts_dutch_personal_data() -> None:
    payload = {
        "notes": (
            "Mail jan@example.nl of bel 06-12345678, "
            "betaal op NL91 ABNA 0417 1643 00, token Bearer abc123."
        ),
        "bsn": "123456782",
        "fileName": "huurcontract.pdf",
        "content": b"%PDF-1.7",
    }

    sanitized = sanitize_for_logging(payload, max_string_length=2000)
    notes = sanitized["notes"]
    assert "jan@example.nl" not in notes
    assert "12345678" not in notes
    assert "ABNA" not in notes
    assert "[REDACTED_EMAIL]" in notes
    assert "[REDACTED_PHONE]" in notes
    assert "[REDACTED_IBAN]" in notes
    assert "Bearer [REDACTED]" in notes
    assert sanitized["bsn"] == "[REDACTED]"
    assert sanitized["fileName"] == "huurcontract.pdf"
    assert sanitized["content"] == "[8 bytes]"


def test_inline_bsn_and_dutch_key_names_are_redacted() -> None:
    sanitized = sanitize_for_logging(
        {
            "opmerking": "Eiser (BSN: 123456782) woont in Utrecht",
            "telefoonnummer": "030-1234567",
            "geboortedatum": "1980-01-01",
        }
    )

    assert sanitized["opmerking"] == "Eiser ([REDACTED_BSN]) woont in Utrecht"
    assert sanitized["telefoonnummer"] == "[REDACTED]"
    assert sanitized["geboortedatum"] == "[REDACTED]"


def test_long_strings_are_truncated() -> None:
    sanitized = sanitize_for_logging("x" * 300)
    assert sanitized.endswith("...[truncated]")
    assert len(sanitized) == 240 + len("...[truncated]")


def test_json_formatter_includes_request_id_and_extra_fields() -> None:
    record = logging.LogRecord("kanton.api", logging.INFO, __file__, 1, "section_generated", None, None)
    record.event = "section_generated"
    record.email = "jan@example.nl"

    token = set_request_id("req-42")
    try:
        payload = json.loads(JsonFormatter().format(record))
    finally:
        reset_request_id(token)

    assert payload["request_id"] == "req-42"
    assert payload["event"] == "section_generated"
    assert payload["email"] == "[REDACTED_EMAIL]"
    assert payload["message"] == "section_generated"
