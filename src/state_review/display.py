# display.py
# All terminal output for the state-diff review.
#
# This module owns presentation entirely. run.py never formats strings; it
# calls named functions here. The engine modules never print.
#
# Colour language:
#   cyan    - task metadata and navigation
#   yellow  - disabled steps, skipped checks and expected differences
#   green   - passed checks, gate open
#   red     - failures, missing and unexpected changes, gate closed

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from state_review.hexwords import word_to_int
from state_review.models import (
    NavEntry,
    StepCounts,
    TaskSpec,
    ValidationItem,
    ValidationReport,
    ValidationStatus,
)
from state_review.parser import ParseFailure
from state_review.simulation import SigningHashes
from state_review.steps import STEP_LABELS, ChangeKind, StepId
from state_review.tasks import TaskConfigOption

console = Console()

WEI_PER_ETH = 10**18
NOT_FOUND = "Not found"

_STATUS_STYLES = {
    ValidationStatus.PASSED: ("✓ passed", "bold green"),
    ValidationStatus.FAILED: ("✗ failed", "bold red"),
    ValidationStatus.MISSING: ("✗ missing", "bold red"),
    ValidationStatus.UNEXPECTED: ("! unexpected", "bold red"),
}

_DIFF_STYLES = {
    "unchanged": "white",
    "removed": "bold red strike",
    "added": "bold green",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 70) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def field_diffs(expected: str, actual: str) -> list[tuple[str, str]]:
    """
    Split two strings around their common prefix and suffix.

    Returns (kind, text) segments where kind is unchanged, removed (only in
    expected) or added (only in actual).
    """
    if expected == actual:
        return [("unchanged", expected)]

    limit = min(len(expected), len(actual))
    prefix = 0
    while prefix < limit and expected[prefix] == actual[prefix]:
        prefix += 1

    suffix = 0
    while (
        suffix < limit - prefix
        and expected[len(expected) - 1 - suffix] == actual[len(actual) - 1 - suffix]
    ):
        suffix += 1

    segments: list[tuple[str, str]] = []
    if prefix:
        segments.append(("unchanged", expected[:prefix]))
    removed = expected[prefix:len(expected) - suffix]
    if removed:
        segments.append(("removed", removed))
    added = actual[prefix:len(actual) - suffix]
    if added:
        segments.append(("added", added))
    if suffix:
        segments.append(("unchanged", expected[len(expected) - suffix:]))
    return segments


def format_balance(word: str) -> str:
    """'0x..de0b6b3a7640000' -> '1 ETH (1000000000000000000 wei)'."""
    try:
        wei = word_to_int(word)
    except (TypeError, ValueError):
        return word
    whole, fraction = divmod(wei, WEI_PER_ETH)
    decimals = f"{fraction:018d}".rstrip("0")
    eth = f"{whole}.{decimals}" if decimals else str(whole)
    return f"{eth} ETH ({wei} wei)"


def _format_value(value: str | None, kind: ChangeKind) -> str:
    if value is None:
        return "(any)"
    if kind is ChangeKind.BALANCE:
        return format_balance(value)
    if kind is ChangeKind.NONCE:
        return str(word_to_int(value))
    return value


def _diff_text(expected: str, actual: str) -> Text:
    text = Text()
    for kind, segment in field_diffs(expected, actual):
        text.append(segment, style=_DIFF_STYLES[kind])
    return text


def _item_row(item: ValidationItem) -> list:
    status, style = _STATUS_STYLES[item.status]
    if item.is_disabled:
        style = "yellow"
        status += " (disabled)"
    elif item.expected_difference:
        style = "bold yellow"
        status = "≈ expected difference"

    source = item.expected or item.actual
    kind = source.change_kind
    slot = source.slot if kind is ChangeKind.STORAGE else kind.value
    name = (item.expected.contract_name if item.expected else None) or source.contract_address

    expected_after = _format_value(item.expected.after_value, kind) if item.expected else "(none)"
    if item.actual is None:
        actual_after: Text | str = NOT_FOUND
    elif item.status is ValidationStatus.FAILED and item.expected and item.expected.after_value:
        actual_after = _diff_text(expected_after, _format_value(item.actual.after_value, kind))
    else:
        actual_after = _format_value(item.actual.after_value, kind)

    return [Text(status, style=style), name, _mono(slot, 18), expected_after, actual_after, item.description]


# ---------------------------------------------------------------------------
# Task header and catalog
# ---------------------------------------------------------------------------


def banner(spec: TaskSpec, config_path: str) -> None:
    disabled = ", ".join(sorted(step.value for step in spec.disabled_steps)) or "none"
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{escape(spec.task_name or 'Upgrade state review')}[/bold cyan]\n"
            f"[dim]Config         :[/dim] [white]{escape(config_path)}[/white]\n"
            f"[dim]Ledger account :[/dim] [white]{spec.ledger_id}[/white]\n"
            f"[dim]Expected       :[/dim] [white]{len(spec.entries)} change(s)[/white]\n"
            f"[dim]Disabled steps :[/dim] [white]{disabled}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def task_list(options: list[TaskConfigOption]) -> None:
    console.print()
    if not options:
        console.print("[yellow]No task configs found.[/yellow]")
        return

    table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan", padding=(0, 1))
    table.add_column("Task", style="bold white")
    table.add_column("File", style="dim white")
    table.add_column("Ledger", justify="center")
    for option in options:
        ledger = str(option.ledger.ledger_id)
        if not option.ledger.from_valid_document:
            ledger = f"[yellow]{ledger} (default, config invalid)[/yellow]"
        table.add_row(option.display_name, option.config_file, ledger)
    console.print(table)


# ---------------------------------------------------------------------------
# Structural errors
# ---------------------------------------------------------------------------


def parse_failed(failure: ParseFailure, source: str) -> None:
    lines = "\n".join(f"[white]• {escape(str(issue))}[/white]" for issue in failure.issues)
    console.print()
    console.print(
        Panel(
            f"[bold red]{escape(source)} failed validation ({len(failure.issues)} issue(s)).[/bold red]\n\n{lines}",
            title=_label("CONFIG INVALID ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


def step_table(step: StepId, items: list[ValidationItem]) -> None:
    console.print()
    console.print(Rule(f"[cyan]{STEP_LABELS[step]}[/cyan]", style="cyan"))
    if not items:
        console.print("[dim]  No checks in this step.[/dim]")
        return

    table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan", padding=(0, 1))
    table.add_column("Status", width=22)
    table.add_column("Contract", style="bold white")
    table.add_column("Slot", style="dim white")
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("Description", style="dim white")
    for item in items:
        table.add_row(*_item_row(item))
    console.print(table)


def nav_summary(nav_list: list[NavEntry], counts: StepCounts) -> None:
    console.print()
    table = Table(box=box.SIMPLE, header_style="bold dim", padding=(0, 1))
    table.add_column("#", justify="center", width=3)
    table.add_column("Step")
    table.add_column("Checks", justify="right")
    table.add_column("Passed", justify="right")
    table.add_column("Failing", justify="right")

    for index, entry in enumerate(nav_list, start=1):
        count = counts[entry.step_id]
        label = f"[yellow]{entry.label} (disabled)[/yellow]" if entry.is_disabled else entry.label
        failing = f"[bold red]{entry.failed_count}[/bold red]" if entry.failed_count else "0"
        table.add_row(str(index), label, str(count.total), str(count.passed), failing)

    total = counts.grand_total
    table.add_row("", "[bold]Total[/bold]", str(total.total), str(total.passed), str(total.failed))
    console.print(Panel(table, title="[dim]REVIEW STEPS[/dim]", border_style="dim", padding=(0, 1)))


def report(result: ValidationReport) -> None:
    for step, items in result.items_by_step.items():
        step_table(step, items)
    nav_summary(result.nav_list, result.step_counts)


# ---------------------------------------------------------------------------
# Signing gate
# ---------------------------------------------------------------------------


def gate_closed(failed: int) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]{failed} blocking check(s) failed.[/bold red]\n"
            "[white]Do not sign. Resolve the failures above first.[/white]",
            title=_label("SIGNING GATE: CLOSED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def gate_open(signing: SigningHashes | None, ledger_id: int, hashes_verified: bool | None) -> None:
    body = "[bold green]All enabled checks passed.[/bold green]\n"
    if signing is None:
        body += "[dim]No signing payload in the simulation output.[/dim]"
    else:
        body += (
            f"\n[dim]Ledger account:[/dim] [white]{ledger_id}[/white]"
            f"\n[dim]Domain hash:[/dim]\n[white]{signing.domain_hash}[/white]"
            f"\n[dim]Message hash:[/dim]\n[white]{signing.message_hash}[/white]"
        )
        if hashes_verified:
            body += "\n[green]Hashes match the expected values in the config.[/green]"
    console.print()
    console.print(
        Panel(
            body,
            title=_label("SIGNING GATE: OPEN ✓", "green"),
            border_style="green",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Machine-readable output (--json)
# ---------------------------------------------------------------------------


def json_report(
    result: ValidationReport,
    signing: SigningHashes | None,
    hashes_verified: bool | None,
) -> None:
    payload = result.model_dump(mode="json", by_alias=True)
    payload["signing"] = None
    if signing is not None:
        payload["signing"] = {
            "domainHash": signing.domain_hash,
            "messageHash": signing.message_hash,
            "dataToSign": signing.data_to_sign,
            "hashesVerified": hashes_verified,
        }
    console.print_json(data=payload)


def json_error(message: str, issues: list[str] | None = None) -> None:
    console.print_json(data={"error": {"message": message, "issues": issues or []}})
