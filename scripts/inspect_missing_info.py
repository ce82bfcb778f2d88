#!/usr/bin/env python3
"""Print the missing-info requirements derived from a stored case or analysis JSON file."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from kanton.completion import compute_completion
from kanton.requirements import extract_requirements_with_source, select_analysis_source
from kanton.responses import ResponseLedger


def load_payload(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise SystemExit(f"File not found: {path}")
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON in {path}: {exc}")


def build_report(payload: Any, *, as_case: bool) -> dict[str, object]:
    analysis = select_analysis_source(payload) if as_case else payload
    source, requirements = extract_requirements_with_source(analysis)
    report: dict[str, object] = {
        "source": source,
        "requirements": [requirement.model_dump() for requirement in requirements],
    }
    if as_case and isinstance(payload, dict):
        responses = payload.get("responses")
        ledger = ResponseLedger()
        ledger.load_saved([item for item in responses or [] if isinstance(item, dict)])
        report["completion"] = compute_completion(requirements, ledger.saved_responses).model_dump()
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show which questions a case analysis asks the client.")
    parser.add_argument("path", type=Path, help="JSON file with a case record or a bare analysis payload.")
    parser.add_argument(
        "--analysis",
        action="store_true",
        help="Treat the file as a bare analysis payload instead of a case record.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when no requirements could be extracted.",
    )
    args = parser.parse_args(argv)

    payload = load_payload(args.path)
    report = build_report(payload, as_case=not args.analysis)
    print(json.dumps(report, indent=2, ensure_ascii=False))

    if args.strict and not report["requirements"]:
        print("No requirements found.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
