# run.py
# Entry point. Config and wiring only; no logic lives here.
#
#   state-review check <config.json> <simulation.json> [--scoped] [--json]
#   state-review list [directory]
#
# Exit codes: 0 gate open, 1 blocking failures, 2 structural error.

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from state_review import display
from state_review.config import Settings, load_settings
from state_review.normalizer import MalformedDiffError, normalize
from state_review.parser import parse
from state_review.report import build_report
from state_review.simulation import hashes_match, read_simulation_output
from state_review.steps import StepId
from state_review.tasks import list_task_configs

EXIT_OK = 0
EXIT_BLOCKED = 1
EXIT_STRUCTURAL = 2


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="state-review",
        description="Check a simulated upgrade state diff against its expected-state config",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("check", help="Reconcile a simulation against a task config")
    check.add_argument("config", type=str, help="Path to the expected-state JSON document")
    check.add_argument("diff", type=str, help="Path to the captured simulation output (JSON)")
    check.add_argument("--scoped", action="store_true", default=None, help="Ignore untracked addresses")
    check.add_argument("--json", action="store_true", help="Print the report as JSON")
    check.add_argument(
        "--unexpected-step",
        choices=[step.value for step in StepId],
        help="Step that receives undeclared changes",
    )

    listing = commands.add_parser("list", help="List task configs and their ledger accounts")
    listing.add_argument("directory", nargs="?", type=str, help="Directory holding task configs")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _structural(args: argparse.Namespace, message: str, issues: list[str] | None = None) -> int:
    if args.json:
        display.json_error(message, issues)
    else:
        display.halt(message)
    return EXIT_STRUCTURAL


def check(args: argparse.Namespace, settings: Settings) -> int:
    try:
        document = Path(args.config).read_text(encoding="utf-8")
        simulation = json.loads(Path(args.diff).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        return _structural(args, f"Could not read input: {exc}")

    result = parse(document)
    if not result.ok:
        if args.json:
            issues = [str(issue) for issue in result.failure.issues]
            return _structural(args, f"{args.config} failed validation", issues)
        display.parse_failed(result.failure, args.config)
        return EXIT_STRUCTURAL
    spec = result.spec

    scoped = settings.scoped if args.scoped is None else args.scoped
    try:
        output = read_simulation_output(simulation)
        actual = normalize(output.records, spec, scoped=scoped)
        applied = normalize(output.overrides)
    except MalformedDiffError as exc:
        return _structural(args, str(exc))

    report = build_report(spec, actual, args.unexpected_step or settings.unexpected_step, applied)

    hashes_verified = None
    if spec.expected_hashes is not None and output.signing is not None:
        hashes_verified = hashes_match(spec.expected_hashes, output.signing)
    blocked = report.blocking_errors_exist or hashes_verified is False

    if args.json:
        display.json_report(report, output.signing, hashes_verified)
        return EXIT_BLOCKED if blocked else EXIT_OK

    display.banner(spec, args.config)
    display.report(report)
    if report.blocking_errors_exist:
        display.gate_closed(report.step_counts.grand_total.failed)
        return EXIT_BLOCKED
    if hashes_verified is False:
        display.halt("Simulated domain/message hashes differ from the expected hashes in the config.")
        return EXIT_BLOCKED

    display.gate_open(output.signing, spec.ledger_id, hashes_verified)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    settings = load_settings()
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(settings.log_level)

    if args.command == "list":
        display.task_list(list_task_configs(args.directory or settings.tasks_dir))
        return EXIT_OK
    return check(args, settings)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
