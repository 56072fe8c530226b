"""
Command-line interface for pdfsentry.

Provides subcommands for scanning PDF files and listing the detection
rules. This module is the entry point referenced in pyproject.toml as
``pdfsentry.cli:main``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import structlog

from .models import (
    DEFAULT_MAX_CONTENT_LENGTH,
    Detector,
    Finding,
    MagicByteCheck,
    RiskLevel,
    ScanOptions,
    ScanResult,
    Severity,
)

EXIT_SAFE = 0
EXIT_ERROR = 1
EXIT_FINDINGS = 2


# ---------------------------------------------------------------------------
# ANSI color helpers
# ---------------------------------------------------------------------------

def _supports_color() -> bool:
    """Return True if stdout appears to support ANSI color codes."""
    if not hasattr(sys.stdout, "isatty"):
        return False
    if not sys.stdout.isatty():
        return False
    return True


_COLOR_ENABLED: bool | None = None


def _color(text: str, code: str) -> str:
    """Wrap *text* in ANSI escape codes if the terminal supports it."""
    global _COLOR_ENABLED
    if _COLOR_ENABLED is None:
        _COLOR_ENABLED = _supports_color()
    if not _COLOR_ENABLED:
        return text
    return f"\033[{code}m{text}\033[0m"


def _red(text: str) -> str:
    return _color(text, "31")


def _yellow(text: str) -> str:
    return _color(text, "33")


def _blue(text: str) -> str:
    return _color(text, "34")


def _green(text: str) -> str:
    return _color(text, "32")


def _bold(text: str) -> str:
    return _color(text, "1")


def _dim(text: str) -> str:
    return _color(text, "2")


# ---------------------------------------------------------------------------
# Output formatting helpers
# ---------------------------------------------------------------------------

def _severity_color(level: Severity | RiskLevel) -> str:
    """Return a color-coded label for a severity or risk level."""
    label = level.value.upper()
    if level.value == "critical":
        return _bold(_red(label))
    elif level.value == "high":
        return _red(label)
    elif level.value == "medium":
        return _yellow(label)
    elif level.value == "low":
        return _blue(label)
    return _green(label)


def _print_header(text: str) -> None:
    """Print a section header with visual separation."""
    print()
    print(_bold(f"  {text}"))
    print(_dim(f"  {'-' * len(text)}"))


def _print_findings(findings: list[Finding]) -> None:
    """Print findings with color-coded severities."""
    if not findings:
        print(f"  {_green('No script-injection indicators found.')}")
        return

    counts: dict[Severity, int] = {}
    for f in findings:
        counts[f.severity] = counts.get(f.severity, 0) + 1

    summary_parts = []
    for level in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW):
        count = counts.get(level, 0)
        if count > 0:
            summary_parts.append(f"{_severity_color(level)}: {count}")
    print(f"  Found {len(findings)} issue(s): {', '.join(summary_parts)}")
    print()

    for i, finding in enumerate(findings, 1):
        print(f"  [{_severity_color(finding.severity)}] {finding.name} ({finding.category.value})")
        print(f"    {finding.description}")
        print(f"    Location: line {finding.location.line}, column {finding.location.column}")
        if finding.context:
            preview = finding.context.replace("\n", " ")
            if len(preview) > 120:
                preview = preview[:117] + "..."
            print(f"    Context:  {_dim(preview)}")
        if i < len(findings):
            print()


def _print_result(path: Path, result: ScanResult) -> None:
    _print_header(f"Scan: {path}")
    if not result.success:
        print(f"  {_red('Error:')} {result.error}")
        return

    if result.metadata is not None:
        print(f"  Pages:          {result.metadata.page_count}")
        print(f"  Scanned chars:  {result.metadata.content_length}")
        if result.metadata.extraction_error:
            print(f"  {_yellow('Text extraction failed;')} raw bytes scanned only")
    print(f"  Risk level:     {_severity_color(result.risk_level)}")
    print()
    _print_findings(result.findings)


def _exit_code(results: list[ScanResult]) -> int:
    if any(not r.success for r in results):
        return EXIT_ERROR
    if any(not r.safe_to_use for r in results):
        return EXIT_FINDINGS
    return EXIT_SAFE


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool) -> None:
    """Route structlog through stdlib logging on stderr so --json stays clean."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[structlog.dev.ConsoleRenderer(colors=False)],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------

def _parse_detectors(raw: str) -> tuple[Detector, ...]:
    """Parse a comma-separated detector list such as 'xss,js'."""
    names = [part.strip() for part in raw.split(",") if part.strip()]
    try:
        return tuple(Detector(name) for name in names)
    except ValueError:
        valid = ", ".join(d.value for d in Detector)
        raise argparse.ArgumentTypeError(f"detectors must be a comma list of: {valid}")


def _handle_scan(args: argparse.Namespace) -> int:
    """Handle the 'scan' subcommand."""
    from .api import scan_files
    from .pool import InlineExecutor, WorkerPool

    paths = [Path(p) for p in args.inputs]
    options = ScanOptions(
        detectors=args.detectors,
        threshold=Severity(args.threshold),
        max_content_length=args.max_content_length,
        include_raw_content=args.include_raw_content,
        magic_byte_check=MagicByteCheck(args.magic_byte_check),
    )

    if len(paths) > 1 and args.workers != 1:
        executor = WorkerPool(size=args.workers)
    else:
        executor = InlineExecutor()

    with executor:
        results = scan_files(paths, options, executor)

    if args.json:
        payload = [
            {"file": str(path), "result": result.model_dump(mode="json")}
            for path, result in zip(paths, results)
        ]
        print(json.dumps(payload, indent=2))
        return _exit_code(results)

    for path, result in zip(paths, results):
        _print_result(path, result)

    if len(results) > 1:
        flagged = sum(1 for r in results if r.success and not r.safe_to_use)
        failed = sum(1 for r in results if not r.success)
        print()
        print(f"  Total: {len(results)} file(s), {flagged} flagged, {failed} failed")
    print()

    return _exit_code(results)


def _handle_rules(args: argparse.Namespace) -> int:
    """Handle the 'rules' subcommand."""
    from .rules import RULE_SETS

    for category, rules in RULE_SETS.items():
        _print_header(f"{category.value} ({len(rules)} rules)")
        for rule in rules:
            print(f"  [{_severity_color(rule.severity)}] {rule.name}")
            print(f"    {_dim(rule.description)}")
    print()
    return EXIT_SAFE


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="pdfsentry",
        description="pdfsentry: detect script-injection indicators in PDF files.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Enable debug logging on stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- scan ---
    scan_parser = subparsers.add_parser(
        "scan",
        help="Scan one or more PDF files for XSS, PDF JavaScript and form-action indicators",
    )
    scan_parser.add_argument(
        "inputs",
        nargs="+",
        help="Path(s) to the PDF file(s) to scan",
    )
    scan_parser.add_argument(
        "--detectors",
        type=_parse_detectors,
        default=(Detector.XSS, Detector.JS, Detector.FORM),
        help="Comma-separated detectors to run: xss, js, form (default: all)",
    )
    scan_parser.add_argument(
        "--threshold",
        choices=[s.value for s in Severity],
        default=Severity.MEDIUM.value,
        help="Minimum severity to report (default: medium)",
    )
    scan_parser.add_argument(
        "--max-content-length",
        type=int,
        default=DEFAULT_MAX_CONTENT_LENGTH,
        help="Cap on extracted text, in characters (default: 10000000)",
    )
    scan_parser.add_argument(
        "--magic-byte-check",
        choices=[m.value for m in MagicByteCheck],
        default=MagicByteCheck.FULL.value,
        help="How strictly to check for the %%PDF- signature (default: full)",
    )
    scan_parser.add_argument(
        "--include-raw-content",
        action="store_true",
        default=False,
        help="Include the scanned text in --json output",
    )
    scan_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes for multi-file scans (default: $PDFSENTRY_WORKERS or CPU count)",
    )
    scan_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print results as JSON",
    )

    # --- rules ---
    subparsers.add_parser(
        "rules",
        help="List every detection rule with its category and severity",
    )

    return parser


def _get_version() -> str:
    """Return the package version string."""
    try:
        from . import __version__
        return __version__
    except ImportError:
        return "0.1.0"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the pdfsentry CLI.

    Parses arguments, dispatches to the appropriate subcommand handler,
    and exits with its code: 0 when every file is clean, 2 when any
    finding was reported, 1 on errors.

    Args:
        argv: Optional argument list for testing. Defaults to sys.argv[1:].
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    _configure_logging(args.verbose)

    handlers = {
        "scan": _handle_scan,
        "rules": _handle_rules,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = handler(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)
    except ValueError as exc:
        # Option values that argparse accepted but ScanOptions rejected.
        print(f"\nError: {exc}")
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
