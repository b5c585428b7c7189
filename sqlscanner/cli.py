"""
Command-line interface.

    sqlscanner scan [TARGET] [options]   report interpolated SQL in Perl code
    sqlscanner init [--force]            write a starter .sqlscanner.yaml
    sqlscanner list-rules                describe the registered rules

``scan`` exits with 1 when it reports an unsuppressed finding or could
not read or analyze something, so it can gate a CI job.
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from sqlscanner import __version__
from sqlscanner.config import (
    CONFIG_FILE_NAMES,
    ConfigurationError,
    PolicyConfig,
    ScanConfig,
    create_default_config,
    load_scan_config,
)
from sqlscanner.core.engine import ScanEngine
from sqlscanner.core.rules import registry
from sqlscanner.formatters import get_formatter

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_INTERRUPTED = 130

EPILOG = """
examples:
  sqlscanner scan lib/
  sqlscanner scan bin/report.pl --format json
  sqlscanner scan . --format sarif --output sqlscanner.sarif
  sqlscanner scan . --safe-functions "My::DB::in_list My::DB::order_by"
  sqlscanner scan . --quoting-methods "quote quote_identifier db_quote"
"""


def _add_scan_arguments(scan: argparse.ArgumentParser) -> None:
    scan.add_argument("target", nargs="?", default=".", help="file or directory to scan (default: .)")
    scan.add_argument("-c", "--config", metavar="FILE", help="configuration file (default: nearest .sqlscanner.yaml)")
    scan.add_argument("-j", "--jobs", type=int, default=None, metavar="N", help="files scanned in parallel")
    scan.add_argument("--include", action="append", metavar="GLOB", help="only scan matching files (repeatable)")
    scan.add_argument("--exclude", action="append", metavar="GLOB", help="skip matching paths (repeatable)")
    scan.add_argument("-v", "--verbose", action="store_true", help="log progress and show remediation advice")

    policy = scan.add_argument_group("policy")
    policy.add_argument(
        "--quoting-methods",
        metavar="NAMES",
        help="space-separated methods that quote their argument; replaces quote/quote_identifier",
    )
    policy.add_argument(
        "--safe-functions",
        metavar="NAMES",
        help="space-separated fully qualified functions whose result is safe to interpolate",
    )
    policy.add_argument(
        "--prefer-upper-case-keywords",
        action="store_true",
        default=None,
        help="only upper-case keywords make a string look like SQL",
    )

    output = scan.add_argument_group("output")
    output.add_argument("-f", "--format", choices=["text", "json", "sarif"], default=None, help="report format")
    output.add_argument("-o", "--output", metavar="FILE", help="write the report to FILE instead of stdout")
    output.add_argument("--show-suppressed", action="store_true", help="include findings silenced by comments")
    output.add_argument("--no-color", action="store_true", help="plain text output")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlscanner",
        description="Find SQL statements built by interpolating unquoted values in Perl code.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    _add_scan_arguments(commands.add_parser("scan", help="scan Perl sources"))

    init = commands.add_parser("init", help=f"write a starter {CONFIG_FILE_NAMES[0]}")
    init.add_argument("-f", "--force", action="store_true", help="replace an existing file")

    commands.add_parser("list-rules", help="describe the registered rules")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def build_engine_config(args: argparse.Namespace, scan_config: ScanConfig) -> Dict[str, Any]:
    """
    Merge command-line options over the configuration file.

    Policy options are validated here so a typo on the command line is
    reported before any file is read.
    """
    options = scan_config.to_engine_config()

    if args.jobs is not None:
        options["max_workers"] = args.jobs
    if args.include:
        options["include_patterns"] = list(args.include)
    if args.exclude:
        options["ignore_patterns"] = [*options.get("ignore_patterns", []), *args.exclude]

    policy = options["policy"]
    for name in ("quoting_methods", "safe_functions"):
        value = getattr(args, name)
        if value is not None:
            policy[name] = value
    if args.prefer_upper_case_keywords:
        policy["prefer_upper_case_keywords"] = True
    PolicyConfig.from_options(policy)

    return options


def cmd_scan(args: argparse.Namespace) -> int:
    if not os.path.exists(args.target):
        print(f"Error: target not found: {args.target}", file=sys.stderr)
        return EXIT_FINDINGS

    scan_config = load_scan_config(args.config, start_dir=args.target)
    engine = ScanEngine(build_engine_config(args, scan_config))
    logger.info("Scanning %s", os.path.abspath(args.target))
    result = engine.scan(args.target)

    settings = scan_config.output
    format_name = args.format or settings.format
    formatter = get_formatter(
        format_name,
        use_color=settings.color and not args.no_color,
        verbose=args.verbose or settings.verbose,
        include_suppressed=args.show_suppressed or settings.show_suppressed,
    )
    report = formatter.format_result(result)

    destination = args.output or settings.output_file
    if destination:
        with open(destination, "w", encoding="utf-8") as f:
            f.write(report)
        logger.info("Wrote %s report to %s", format_name, destination)
        if format_name == "text":
            print(f"Results written to {destination}")
    else:
        print(report)

    return EXIT_FINDINGS if result.total_findings or result.errors else EXIT_CLEAN


def cmd_init(args: argparse.Namespace) -> int:
    target = CONFIG_FILE_NAMES[0]

    if os.path.exists(target) and not args.force:
        print(f"{target} already exists; pass --force to replace it.")
        return EXIT_FINDINGS

    with open(target, "w", encoding="utf-8") as f:
        f.write(create_default_config())

    print(f"Wrote {target}")
    return EXIT_CLEAN


def cmd_list_rules(args: argparse.Namespace) -> int:
    rules = registry.get_all_metadata()

    for meta in rules:
        state = "" if meta.enabled_by_default else " (disabled)"
        print(f"{meta.rule_id}  {meta.name}{state}")
        print(f"    severity: {meta.severity.value}  confidence: {meta.confidence.value}  {meta.cwe_id or ''}".rstrip())
        print(f"    {meta.description}")
        for reference in meta.references:
            print(f"    see {reference}")

    print(f"\n{len(rules)} rule(s) registered")
    return EXIT_CLEAN


COMMANDS = {
    "scan": cmd_scan,
    "init": cmd_init,
    "list-rules": cmd_list_rules,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_CLEAN

    configure_logging(getattr(args, "verbose", False))

    try:
        return handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (ConfigurationError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FINDINGS
    except Exception as e:
        logger.exception("Unexpected failure")
        print(f"Error: {e}", file=sys.stderr)
        if os.environ.get("DEBUG"):
            raise
        return EXIT_FINDINGS


if __name__ == "__main__":
    sys.exit(main())
