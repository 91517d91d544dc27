"""Session monitor installation doctor."""

from __future__ import annotations

import argparse

from ccmon_mcp.config import get_settings
from ccmon_mcp.diagnostics import CheckResult, CheckSeverity, DiagnosticEngine, DiagnosticReport

RESET = "\033[0m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
BOLD = "\033[1m"

_TAGS = {
    CheckSeverity.PASS: f"{GREEN}[PASS]{RESET}",
    CheckSeverity.WARN: f"{YELLOW}[WARN]{RESET}",
    CheckSeverity.FAIL: f"{RED}[FAIL]{RESET}",
}


def build_engine() -> DiagnosticEngine:
    settings = get_settings()
    return DiagnosticEngine(settings.monitor_dir, settings.claude_dir)


def print_check(check: CheckResult) -> None:
    print(f"  {_TAGS[check.severity]} {check.message}")
    if check.detail:
        print(f"         {check.detail}")


def print_summary(report: DiagnosticReport) -> None:
    warnings = "warning" if report.warn_count == 1 else "warnings"
    errors = "error" if report.fail_count == 1 else "errors"
    print()
    print(
        f"Summary: {report.pass_count} passed, {report.warn_count} {warnings}, "
        f"{report.fail_count} {errors}"
    )


def print_report(report: DiagnosticReport, *, verbose: bool) -> None:
    for check in report.checks:
        if verbose or check.severity is not CheckSeverity.PASS:
            print_check(check)
    print_summary(report)


def apply_fixes(engine: DiagnosticEngine, report: DiagnosticReport) -> int:
    """Apply each distinct fix once; returns how many were attempted."""

    applied: set[str] = set()
    for check in report.checks:
        if check.fix is None or check.severity is CheckSeverity.PASS or check.fix.key in applied:
            continue
        applied.add(check.fix.key)
        success, message = engine.apply_fix(check.fix)
        if success:
            print(f"  {GREEN}Fixed:{RESET} {message}")
        else:
            print(f"  {RED}Fix failed:{RESET} {message}")
    return len(applied)


def run(args: argparse.Namespace, engine: DiagnosticEngine | None = None) -> int:
    engine = engine or build_engine()

    print(f"{BOLD}Session Monitor Doctor{RESET}")
    print("======================")
    print()

    report = engine.run_all_checks()
    print_report(report, verbose=args.verbose)

    if args.fix:
        print()
        if apply_fixes(engine, report):
            print()
            print("Re-running checks after fixes...")
            print()
            report = engine.run_all_checks()
            print_report(report, verbose=args.verbose)
        else:
            print("Nothing to fix.")

    return 1 if report.has_critical_issues else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Diagnose session monitor installation health")
    parser.add_argument("--fix", action="store_true", help="Attempt to repair fixable issues")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show passing checks too (default: only warnings and failures)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args))


if __name__ == "__main__":
    main()
