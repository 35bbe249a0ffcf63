# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Passport CLI: scan, plan and validate commands.

Usage:
    python -m pagepassport.cli scan --url URL [--output DIR] [--min-sections N] [--json-logs]
    python -m pagepassport.cli plan --passport FILE [--output FILE]
    python -m pagepassport.cli validate --passport FILE
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from urllib.parse import urlsplit

from tabulate import tabulate

from . import Passport
from ._progress import print_step, status_spinner
from .config import ScanConfig, browser_config_from_env
from .errors import PassportError
from .logging_config import configure
from .pipeline import run_scan
from .plan_compiler import compile_plan
from .serializer import load_passport, plan_to_json, validate_passport

logger = logging.getLogger(__name__)


def _validate_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise argparse.ArgumentTypeError(f"expected an absolute http(s) URL, got {url!r}")
    return url


def _default_run_dir(url: str) -> Path:
    host = urlsplit(url).netloc.replace(":", "_") or "page"
    return Path("runs") / f"{host}-{datetime.now().strftime('%Y%m%d-%H%M%S')}"


def _section_table(passport: Passport) -> str:
    rows = [
        (
            s.order,
            str(s.type),
            f"{s.confidence:.2f}",
            "yes" if s.policy.include_in_clone else "no",
            len(s.assets),
            (s.heading or "")[:40],
        )
        for s in passport.sections
    ]
    return tabulate(rows, headers=["#", "type", "conf", "clone", "assets", "heading"], tablefmt="simple")


def cmd_scan(args: argparse.Namespace) -> None:
    """Scan one URL into a run directory."""
    output_dir = Path(args.output) if args.output else _default_run_dir(args.url)
    try:
        scan_config = ScanConfig.from_env()
        browser_config = browser_config_from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    with status_spinner(f"Scanning {args.url}..."):
        result = asyncio.run(
            run_scan(args.url, output_dir=output_dir, scan_config=scan_config, browser_config=browser_config)
        )

    passport = result.passport
    print(_section_table(passport))
    print(f"\nSections: {len(passport.sections)}  Assets: {len(passport.assets)}  Planned: {len(result.plan.sections)}")
    print(f"Run saved to {output_dir}")
    for warning in passport.diagnostics.get("warnings", []):
        print_step(f"warning: {warning}")

    if passport.sections and not result.plan.sections:
        print("Error: every extracted section was excluded; the plan is empty.", file=sys.stderr)
        sys.exit(1)
    if not result.ok or len(passport.sections) < args.min_sections:
        print(
            f"Error: {len(passport.sections)} section(s) extracted, at least {args.min_sections} required.",
            file=sys.stderr,
        )
        sys.exit(1)


def cmd_plan(args: argparse.Namespace) -> None:
    """Compile a plan from a saved passport."""
    passport = load_passport(args.passport)
    text = plan_to_json(compile_plan(passport))
    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        print(f"Plan saved to {out}")
    else:
        print(text)


def cmd_validate(args: argparse.Namespace) -> None:
    """Structural validation of a saved passport."""
    path = Path(args.passport)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: cannot read {path}: {e}", file=sys.stderr)
        sys.exit(1)
    errors = validate_passport(data)
    if errors:
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print(f"Invalid passport: {len(errors)} error(s)", file=sys.stderr)
        sys.exit(1)
    print(f"OK: {path} ({len(data['sectionTree']['children'])} sections)")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Page Passport CLI", prog="python -m pagepassport.cli")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_scan = subparsers.add_parser("scan", help="Scan a product page into a passport + plan")
    p_scan.add_argument("--url", type=_validate_url, required=True, metavar="URL", help="Absolute http(s) URL")
    p_scan.add_argument("--output", "-o", type=str, metavar="DIR", help="Run directory (default: runs/<host>-<time>)")
    p_scan.add_argument("--min-sections", type=int, default=1, metavar="N", help="Exit 1 below N sections")
    p_scan.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")

    p_plan = subparsers.add_parser("plan", help="Compile a plan from a passport file")
    p_plan.add_argument("--passport", required=True, metavar="FILE")
    p_plan.add_argument("--output", "-o", type=str, metavar="FILE", help="Write plan JSON here (default: stdout)")

    p_validate = subparsers.add_parser("validate", help="Validate a passport file")
    p_validate.add_argument("--passport", required=True, metavar="FILE")

    commands = {"scan": cmd_scan, "plan": cmd_plan, "validate": cmd_validate}

    args = parser.parse_args(argv)
    configure(
        json_output=getattr(args, "json_logs", False),
        level="DEBUG" if args.verbose else "INFO",
    )

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except PassportError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            logger.exception("Command %s failed", args.command)
        sys.exit(1)


if __name__ == "__main__":
    main()
