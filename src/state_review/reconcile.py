# reconcile.py
# Reconciliation engine: expected entries vs. normalized simulated changes.
#
# Pure function of its arguments. No shared state, no I/O, safe to call from
# any thread. Output order is expected entries in declaration order, then
# unexpected changes in diff-encounter order.

import logging
from collections.abc import Iterable

from state_review.hexwords import values_equal
from state_review.models import (
    ActualStateChange,
    ExpectedStateEntry,
    TaskSpec,
    ValidationItem,
    ValidationStatus,
)
from state_review.steps import DEFAULT_UNEXPECTED_STEP, ChangeKind, StepId

logger = logging.getLogger(__name__)

Key = tuple[str, str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _merge_actual(actual: Iterable[ActualStateChange]) -> dict[Key, ActualStateChange]:
    """
    Index changes by (address, slot).

    Repeated keys collapse to their net effect: the first-seen before value
    and the last-seen after value. Dict order is first-seen order.
    """
    merged: dict[Key, ActualStateChange] = {}
    for change in actual:
        existing = merged.get(change.key)
        if existing is None:
            merged[change.key] = change
            continue
        logger.debug("Merging repeated write to %s slot %s", *change.key)
        merged[change.key] = existing.model_copy(update={"after_value": change.after_value})
    return merged


def _compare(entry: ExpectedStateEntry, change: ActualStateChange) -> ValidationStatus:
    kind = entry.change_kind
    if entry.after_value is not None and not values_equal(entry.after_value, change.after_value, kind):
        return ValidationStatus.FAILED
    if entry.before_value is not None and not values_equal(entry.before_value, change.before_value, kind):
        return ValidationStatus.FAILED
    return ValidationStatus.PASSED


def _location(address: str, slot: str, kind: ChangeKind) -> str:
    if kind is ChangeKind.STORAGE:
        return f"slot {slot} of {address}"
    return f"{kind.value} of {address}"


def _describe_expected(entry: ExpectedStateEntry) -> str:
    if entry.description:
        return entry.description
    where = _location(entry.contract_address, entry.slot, entry.change_kind)
    if entry.step_id is StepId.STATE_OVERRIDES:
        return f"Override of {where}"
    return f"Expected change to {where}"


def _describe_unexpected(change: ActualStateChange, step: StepId) -> str:
    where = _location(change.contract_address, change.slot, change.change_kind)
    if step is StepId.STATE_OVERRIDES:
        return f"Undeclared override of {where}"
    return f"Undeclared change to {where}"


def _expected_items(
    spec: TaskSpec,
    entries: Iterable[ExpectedStateEntry],
    lookup: dict[Key, ActualStateChange],
    consumed: set[Key],
) -> list[ValidationItem]:
    items: list[ValidationItem] = []
    for entry in entries:
        change = lookup.get(entry.key)
        if change is None:
            status = ValidationStatus.PASSED if entry.optional else ValidationStatus.MISSING
        else:
            consumed.add(entry.key)
            status = _compare(entry, change)

        items.append(
            ValidationItem(
                status=status,
                step_id=entry.step_id,
                is_disabled=spec.is_step_disabled(entry.step_id),
                expected=entry,
                actual=change,
                description=_describe_expected(entry),
            )
        )
    return items


def _unexpected_items(
    spec: TaskSpec,
    changes: Iterable[ActualStateChange],
    step: StepId,
) -> list[ValidationItem]:
    disabled = spec.is_step_disabled(step)
    return [
        ValidationItem(
            status=ValidationStatus.UNEXPECTED,
            step_id=step,
            is_disabled=disabled,
            expected=None,
            actual=change,
            description=_describe_unexpected(change, step),
        )
        for change in changes
    ]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def reconcile(
    spec: TaskSpec,
    actual: Iterable[ActualStateChange],
    unexpected_step: StepId | str = DEFAULT_UNEXPECTED_STEP,
) -> list[ValidationItem]:
    """
    Produce one ValidationItem per expected entry, plus one per unconsumed
    change on an address the spec tracks.

    Changes on addresses no entry mentions are ignored. Items in disabled
    steps keep their raw status and are only flagged is_disabled.
    """
    unexpected_step = StepId(unexpected_step)
    lookup = _merge_actual(actual)
    consumed: set[Key] = set()

    items = _expected_items(spec, spec.entries, lookup, consumed)
    tracked = spec.tracked_addresses
    leftovers = [
        change
        for key, change in lookup.items()
        if key not in consumed and change.contract_address in tracked
    ]
    items.extend(_unexpected_items(spec, leftovers, unexpected_step))

    logger.debug(
        "Reconciled %d expected entr(ies) against %d change(s): %d item(s)",
        len(spec.entries),
        len(lookup),
        len(items),
    )
    return items


def reconcile_overrides(
    spec: TaskSpec,
    applied: Iterable[ActualStateChange],
) -> list[ValidationItem]:
    """
    Check the storage overrides the simulation applied against the declared
    ones, matched by (address, slot).

    Every applied override that was not declared is unexpected, whatever
    its address: forced state the config does not mention invalidates the
    simulation.
    """
    lookup = _merge_actual(applied)
    consumed: set[Key] = set()

    items = _expected_items(spec, spec.override_entries, lookup, consumed)
    leftovers = [change for key, change in lookup.items() if key not in consumed]
    items.extend(_unexpected_items(spec, leftovers, StepId.STATE_OVERRIDES))

    logger.debug("Reconciled overrides: %d item(s), %d undeclared", len(items), len(leftovers))
    return items
