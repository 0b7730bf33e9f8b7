#!/usr/bin/env python3
"""Compose a request JSON file into a deployable Bicep / Terraform tree.

    python -m scripts.compose_request --request req.json --output out/

Exit codes: 0 success, 1 partial generation, 2 nothing generated.
"""
import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path

from engine.composite import CompositeEngine
from engine.errors import RequestValidationError
from engine.settings import EngineSettings, configure_logging
from schemas.composition import CompositeResult, TemplateDialect
from schemas.wire import dump_result, load_request

_log = logging.getLogger("compose_request")

EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_NOTHING = 2


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate composite infrastructure-as-code from a request JSON file."
    )
    parser.add_argument("--request", required=True, help="Path to the request JSON")
    parser.add_argument("--output", required=True, help="Directory the generated files are written to")
    parser.add_argument(
        "--dialect",
        choices=[d.value for d in TemplateDialect],
        help="Override the request's dialect",
    )
    parser.add_argument("--workers", type=int, default=None, help="Parallel generation workers")
    parser.add_argument("--summary", help="Optional path for a JSON run summary (no file contents)")
    return parser.parse_args()


def write_files(result: CompositeResult, output_dir: Path) -> int:
    for rel_path, text in result.files.items():
        target = output_dir / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return len(result.files)


def exit_code(result: CompositeResult) -> int:
    if result.success:
        return EXIT_SUCCESS
    return EXIT_PARTIAL if result.files else EXIT_NOTHING


def main() -> int:
    args = parse_args()
    settings = EngineSettings.from_env()
    configure_logging(settings)

    payload = Path(args.request).read_text(encoding="utf-8")
    try:
        request = load_request(payload, settings)
    except RequestValidationError as exc:
        for violation in exc.violations:
            print(f"  ✗ {violation}")
        print(f"Request rejected: {args.request}")
        return EXIT_NOTHING
    if args.dialect:
        request = replace(request, dialect=TemplateDialect(args.dialect))

    result = CompositeEngine(settings=settings).generate(request, max_workers=args.workers)

    output_dir = Path(args.output)
    written = write_files(result, output_dir)
    for unit in result.unit_results:
        mark = {"succeeded": "✓", "failed": "✗", "skipped": "–"}[unit.status.value]
        print(f"  {mark} {unit.unit_id} ({unit.resource_type})")
    for error in result.errors:
        print(f"  ! {error}")

    if args.summary:
        summary_path = Path(args.summary)
        summary_path.parent.mkdir(parents=True, exist_ok=True)
        summary_path.write_text(
            json.dumps(dump_result(result, include_files=False), indent=2), encoding="utf-8",
        )

    code = exit_code(result)
    if code == EXIT_SUCCESS:
        print(f"Composite written: {written} file(s) in {output_dir}")
    elif code == EXIT_PARTIAL:
        print(f"Partial composite written: {written} file(s) in {output_dir}")
    else:
        print(f"Nothing generated ({result.failure_kind.value if result.failure_kind else 'unknown'})")
    return code


if __name__ == "__main__":
    raise SystemExit(main())
