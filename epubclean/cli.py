from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from epubclean.config import get_settings
from epubclean.errors import JobBusy
from epubclean.runtime.jobs import JobGate, run_sanitize_job
from epubclean.telemetry.logging import configure_root_logging

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_BAD_ARGS = 2
EXIT_IMAGES_FAILED = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="epubclean",
        description="Re-encode every image inside an EPUB with safe, normalized settings.",
    )
    parser.add_argument("input", help="path to the .epub to sanitize")
    parser.add_argument("-o", "--output", help="output path (default: <stem>_sanitized.epub)")
    parser.add_argument("--report-json", help="write the full job report as JSON to this path")
    parser.add_argument("--log-level", default=None, help="logging level (default from settings)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return EXIT_OK if exc.code in (0, None) else EXIT_BAD_ARGS

    src = Path(args.input)
    if src.suffix.lower() != ".epub" or not src.is_file():
        print(f"epubclean: not an existing .epub file: {src}", file=sys.stderr)
        return EXIT_BAD_ARGS

    settings = get_settings()
    configure_root_logging(args.log_level or settings.LOG_LEVEL, json_lines=settings.LOG_JSON)

    try:
        result = run_sanitize_job(src, args.output, gate=JobGate(), settings=settings)
    except JobBusy as exc:  # pragma: no cover - a fresh gate is never held
        print(f"epubclean: {exc}", file=sys.stderr)
        return EXIT_JOB_FAILED

    if args.report_json:
        Path(args.report_json).write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")

    if not result.ok:
        print(f"epubclean: job failed: {result.error}", file=sys.stderr)
        return EXIT_JOB_FAILED

    s = result.stats
    print(
        f"Wrote {result.output_path}: {s.total} images "
        f"(ok={s.ok} repaired={s.repaired} replaced={s.replaced} failed={s.failed})"
    )
    return EXIT_IMAGES_FAILED if result.any_failed else EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
