"""
Command-line entry point.

    layer-assessor assess --input request.json [--format json|table]

Reads a JSON assessment request (``-`` or no ``--input`` reads stdin) and
prints the result. Exit status is 2 when the request is rejected.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, TextIO

import structlog

from assessor.exceptions import ValidationError
from assessor.presenters.assessment import (
    format_layer_summary,
    layer_summary_frame,
    suggestion_frame,
    target_suggestion_frame,
)
from assessor.services.assessor import AssessmentResponse, AssessorService
from assessor.services.payloads import parse_request, response_to_dict
from config.logging import setup_logging
from config.settings import load_settings

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_INVALID = 2


def _read_payload(path: str | None, stdin: TextIO) -> Any:
    if path is None or path == "-":
        return json.load(stdin)
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


def render_table(response: AssessmentResponse) -> str:
    result = response.result
    lines = [
        f"Assessment {response.assessment_id}",
        f"Monthly total: {result.monthly_total}",
        "",
        format_layer_summary(layer_summary_frame(result)).to_string(),
        "",
    ]
    suggestions = suggestion_frame(result)
    if suggestions.empty:
        lines.append("No saving plan changes proposed.")
    else:
        lines.append(suggestions.to_string(index=False))
    lines.append("")
    lines.append("Target suggestions:")
    target_suggestions = target_suggestion_frame(response)
    if target_suggestions.empty:
        lines.append("No target-driven changes proposed.")
    else:
        lines.append(target_suggestions.to_string(index=False))
    allocation = result.one_time_allocation
    if allocation is not None:
        lines.append("")
        lines.append("One-time allocation:")
        for layer, amount in allocation.layer_buckets.items():
            lines.append(f"  Layer {layer}: {amount}")
        for isin, amount in (allocation.instrument_buckets or {}).items():
            lines.append(f"  {isin}: {amount}")
    if result.diagnostics.redistribution_notes:
        lines.append("")
        lines.append("Notes:")
        lines.extend(f"  - {note}" for note in result.diagnostics.redistribution_notes)
    return "\n".join(lines)


def _run_assess(args: argparse.Namespace, stdin: TextIO, stdout: TextIO, stderr: TextIO) -> int:
    try:
        payload = _read_payload(args.input, stdin)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"error: cannot read request: {exc}", file=stderr)
        return EXIT_INVALID

    try:
        request = parse_request(payload)
        response = AssessorService(settings=args.settings).run(request)
    except ValidationError as exc:
        logger.warning("assessment_rejected", error=str(exc))
        print(f"error: {exc}", file=stderr)
        return EXIT_INVALID

    if args.format == "table":
        print(render_table(response), file=stdout)
    else:
        print(json.dumps(response_to_dict(response), indent=2), file=stdout)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="layer-assessor",
        description="Assess saving plans against layer targets.",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    assess = subparsers.add_parser("assess", help="Assess a JSON request")
    assess.add_argument("--input", "-i", default=None, metavar="PATH", help="Request file (default: stdin)")
    assess.add_argument("--format", "-f", choices=("json", "table"), default="json")
    assess.set_defaults(func=_run_assess)
    return parser


def main(
    argv: list[str] | None = None,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Main entry point for CLI."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ValidationError as exc:
        print(f"error: {exc}", file=stderr)
        return EXIT_INVALID
    setup_logging(debug=args.debug or settings.debug)
    args.settings = settings
    return args.func(args, stdin, stdout, stderr)


if __name__ == "__main__":
    sys.exit(main())
