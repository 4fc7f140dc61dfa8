# parser.py
# Expected-state document parser.
#
# parse() never raises on bad input. It returns a ParseResult holding either
# a TaskSpec or the complete list of violations, each tagged with the dotted
# path of the offending field. Callers that need a spec call unwrap().

import json
import logging

from pydantic import BaseModel, ConfigDict, ValidationError

from state_review.models import ExpectedStateEntry, StateOverride, TaskSpec

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_ID = 0
ENTRIES_FIELD = "expectedChanges"
OVERRIDES_FIELD = "stateOverrides"

_PYDANTIC_PREFIXES = ("Value error, ", "Assertion failed, ")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigParseError(Exception):
    """Raised when a TaskSpec is required but the document failed to parse."""

    def __init__(self, failure: "ParseFailure", source: str | None = None) -> None:
        self.failure = failure
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(prefix + failure.summary())


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class ParseIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class ParseFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    issues: tuple[ParseIssue, ...]

    def summary(self) -> str:
        lines = ["Configuration has errors", "", f"Errors ({len(self.issues)}):"]
        lines.extend(f"  • {issue}" for issue in self.issues)
        return "\n".join(lines)


class ParseResult(BaseModel):
    """Tagged parse outcome: exactly one of spec / failure is set."""

    model_config = ConfigDict(frozen=True)

    spec: TaskSpec | None = None
    failure: ParseFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self, source: str | None = None) -> TaskSpec:
        if self.failure is not None:
            raise ConfigParseError(self.failure, source)
        return self.spec


class LedgerLookup(BaseModel):
    """Ledger index read from a task document, flagged when it is only a fallback."""

    model_config = ConfigDict(frozen=True)

    ledger_id: int
    from_valid_document: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc)


def _clean_message(message: str) -> str:
    for prefix in _PYDANTIC_PREFIXES:
        if message.startswith(prefix):
            return message[len(prefix):]
    return message


def _issues_from(exc: ValidationError) -> list[ParseIssue]:
    return [
        ParseIssue(path=_format_path(error["loc"]), message=_clean_message(error["msg"]))
        for error in exc.errors()
    ]


def _duplicate_issues(raw_entries: object) -> list[ParseIssue]:
    """
    Flag entries repeating a (step, address, slot) triple.

    Runs independently of full-document validation so duplicates are reported
    alongside any other violations. Entries that fail on their own are skipped
    here; their errors already come from the document pass.
    """
    if not isinstance(raw_entries, list):
        return []

    seen: dict[tuple, int] = {}
    issues: list[ParseIssue] = []
    for index, raw in enumerate(raw_entries):
        try:
            entry = ExpectedStateEntry.model_validate(raw)
        except ValidationError:
            continue
        key = (entry.step_id, *entry.key)
        if key in seen:
            issues.append(
                ParseIssue(
                    path=f"{ENTRIES_FIELD}.{index}",
                    message=(
                        f"duplicate contractAddress/slot {entry.contract_address}/{entry.slot} "
                        f"in step {entry.step_id.value}; first declared at "
                        f"{ENTRIES_FIELD}.{seen[key]}"
                    ),
                )
            )
        else:
            seen[key] = index
    return issues


def _duplicate_override_issues(raw_overrides: object) -> list[ParseIssue]:
    """Flag overrides repeating an (address, key) pair across all groups."""
    if not isinstance(raw_overrides, list):
        return []

    seen: dict[tuple[str, str], str] = {}
    issues: list[ParseIssue] = []
    for group_index, raw in enumerate(raw_overrides):
        try:
            group = StateOverride.model_validate(raw)
        except ValidationError:
            continue
        for index, override in enumerate(group.overrides):
            path = f"{OVERRIDES_FIELD}.{group_index}.overrides.{index}"
            key = (group.address, override.key)
            if key in seen:
                issues.append(
                    ParseIssue(
                        path=path,
                        message=(
                            f"duplicate override of {group.address}/{override.key}; "
                            f"first declared at {seen[key]}"
                        ),
                    )
                )
            else:
                seen[key] = path
    return issues


def _failed(issues: list[ParseIssue]) -> ParseResult:
    return ParseResult(failure=ParseFailure(issues=tuple(issues)))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_data(data: object) -> ParseResult:
    """Validate an already-decoded JSON value."""
    if not isinstance(data, dict):
        return _failed([ParseIssue(path="", message="Document must be a JSON object")])

    issues: list[ParseIssue] = []
    spec = None
    try:
        spec = TaskSpec.model_validate(data)
    except ValidationError as exc:
        issues.extend(_issues_from(exc))
    issues.extend(_duplicate_issues(data.get(ENTRIES_FIELD)))
    issues.extend(_duplicate_override_issues(data.get(OVERRIDES_FIELD)))

    if issues:
        return _failed(issues)
    return ParseResult(spec=spec)


def parse(document: str | bytes) -> ParseResult:
    """Parse expected-state JSON text into a TaskSpec or a ParseFailure."""
    try:
        data = json.loads(document)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
        return _failed([ParseIssue(path="", message=f"Invalid JSON: {exc}")])
    return parse_data(data)


def read_ledger_id(document: str | bytes) -> LedgerLookup:
    """
    Best-effort ledger index for listings and display.

    Falls back to ledger 0 when the document does not fully parse. The
    fallback is flagged and must never stand in for parse() where the spec
    itself is needed.
    """
    result = parse(document)
    if result.ok:
        return LedgerLookup(ledger_id=result.spec.ledger_id, from_valid_document=True)

    logger.warning(
        "Document failed to parse (%d issue(s)); using default ledger id %d",
        len(result.failure.issues),
        DEFAULT_LEDGER_ID,
    )
    return LedgerLookup(ledger_id=DEFAULT_LEDGER_ID, from_valid_document=False)
