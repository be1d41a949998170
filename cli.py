#!/usr/bin/env python3
"""Command-line entry for the suite, combine and cleanup stages."""

import argparse
import logging
import sys
from typing import List, Optional

from services.combined_report_aggregator import generate_combined_report
from services.execution_normalizer import RunInputError
from services.suite_report_builder import generate_suite_report
from services.temp_cleanup import cleanup_temp
from utils.config import load_config, load_report_settings
from utils.log_utils import setup_logging

logger = logging.getLogger("apireport")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="apireport-cli",
        description="Build per-suite API test reports, combine them, and clean up Temp/.",
    )
    parser.add_argument("--log-level", default=None, help="Override logging.log_level from config.yaml.")
    sub = parser.add_subparsers(dest="command", required=True)

    suite = sub.add_parser("suite", help="Render one Newman run JSON as a suite report.")
    suite.add_argument("input_json", help="Newman run JSON produced by the test runner.")
    suite.add_argument("output_html", help="Destination of the suite report.")
    suite.add_argument("title", nargs="?", default=None, help="Report title.")
    suite.add_argument("sla_ms", nargs="?", default=None, help="Response-time SLA in ms (non-numeric -> default).")
    suite.add_argument("--root", default=None, help="Project root holding Temp/ (defaults to PROJECT_ROOT).")

    combine = sub.add_parser("combine", help="Combine every suite report in Temp/.")
    combine.add_argument("--root", default=None, help="Project root holding Temp/ and EmailReports/.")

    cleanup = sub.add_parser("cleanup", help="Remove everything inside Temp/.")
    cleanup.add_argument("project_root", nargs="?", default=None, help="Project root holding Temp/.")

    return parser.parse_args(argv)


def parse_sla(value: Optional[str], default: int) -> int:
    """SLA argument as int; anything non-numeric falls back to the default."""
    if value is None:
        return default
    try:
        sla = int(float(value))
    except (ValueError, OverflowError):
        logger.warning("Ignoring non-numeric SLA '%s'; using %d ms.", value, default)
        return default
    return sla if sla >= 0 else default


def run_suite(args: argparse.Namespace) -> int:
    settings = load_report_settings(project_root=args.root)
    sla_ms = parse_sla(args.sla_ms, settings["sla_ms"])
    try:
        result = generate_suite_report(args.input_json, args.output_html, args.title, sla_ms, settings)
    except RunInputError as e:
        logger.error("%s", e)
        return 1
    stats = result["statistics"]
    logger.info("Suite %s / %s: %d passed, %d failed (%d%%)",
                result["suite"]["grouping_key"], result["suite"]["module_key"],
                stats["passed_cases"], stats["failed_cases"], stats["pass_pct"])
    return 0


def run_combine(args: argparse.Namespace) -> int:
    generate_combined_report(load_report_settings(project_root=args.root))
    return 0


def run_cleanup(args: argparse.Namespace) -> int:
    try:
        cleanup_temp(args.project_root)
    except Exception as e:
        logger.error("Temp cleanup failed: %s", e)
        return 1
    return 0


COMMANDS = {
    "suite": run_suite,
    "combine": run_combine,
    "cleanup": run_cleanup,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(load_config(), level=args.log_level)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
