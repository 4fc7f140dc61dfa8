# report.py
# Report aggregation over reconciled ValidationItems.
#
# Advisory only: nothing here raises. Enforcing "no blocking errors" before
# signing is the caller's job.

from collections.abc import Iterable

from state_review.models import (
    ActualStateChange,
    NavEntry,
    StepCount,
    StepCounts,
    TaskSpec,
    ValidationItem,
    ValidationReport,
    ValidationStatus,
)
from state_review.reconcile import reconcile, reconcile_overrides
from state_review.steps import CANONICAL_STEPS, DEFAULT_UNEXPECTED_STEP, STEP_LABELS, StepId

ItemsByStep = dict[StepId, list[ValidationItem]]


def group_by_step(items: Iterable[ValidationItem]) -> ItemsByStep:
    """Bucket items by step. Every canonical step is present, in canonical order."""
    grouped: ItemsByStep = {step: [] for step in CANONICAL_STEPS}
    for item in items:
        grouped[item.step_id].append(item)
    return grouped


def has_blocking_errors(items_by_step: ItemsByStep) -> bool:
    return any(item.is_blocking for items in items_by_step.values() for item in items)


def _count(items: list[ValidationItem]) -> StepCount:
    return StepCount(
        total=len(items),
        passed=sum(1 for item in items if item.status is ValidationStatus.PASSED),
        failed=sum(1 for item in items if item.is_blocking),
    )


def step_counts(items_by_step: ItemsByStep) -> StepCounts:
    steps = {step: _count(items_by_step.get(step, [])) for step in CANONICAL_STEPS}
    grand_total = StepCount(
        total=sum(count.total for count in steps.values()),
        passed=sum(count.passed for count in steps.values()),
        failed=sum(count.failed for count in steps.values()),
    )
    return StepCounts(steps=steps, grand_total=grand_total)


def build_nav_list(
    items_by_step: ItemsByStep,
    disabled_steps: Iterable[StepId] = (),
) -> list[NavEntry]:
    """
    One NavEntry per canonical step, in canonical order.

    A step is disabled when every item in it is disabled. An empty step has
    no items to decide by, so it is disabled only when listed in
    disabled_steps.
    """
    disabled = frozenset(disabled_steps)
    counts = step_counts(items_by_step)
    nav: list[NavEntry] = []
    for step in CANONICAL_STEPS:
        items = items_by_step.get(step, [])
        if items:
            is_disabled = all(item.is_disabled for item in items)
        else:
            is_disabled = step in disabled
        nav.append(
            NavEntry(
                step_id=step,
                label=STEP_LABELS[step],
                failed_count=counts[step].failed,
                is_disabled=is_disabled,
            )
        )
    return nav


def build_report(
    spec: TaskSpec,
    actual: Iterable[ActualStateChange],
    unexpected_step: StepId | str = DEFAULT_UNEXPECTED_STEP,
    overrides: Iterable[ActualStateChange] = (),
) -> ValidationReport:
    """Reconcile the diff and the applied overrides, then aggregate in one call."""
    items = reconcile(spec, actual, unexpected_step) + reconcile_overrides(spec, overrides)
    items_by_step = group_by_step(items)
    return ValidationReport(
        items_by_step=items_by_step,
        nav_list=build_nav_list(items_by_step, spec.disabled_steps),
        step_counts=step_counts(items_by_step),
        blocking_errors_exist=has_blocking_errors(items_by_step),
    )
