# normalizer.py
# Canonicalizes raw simulated state-change records into ActualStateChange.
#
# A record that cannot be parsed aborts the whole run: a corrupt simulation
# output cannot be partially trusted.

import logging
from collections.abc import Iterable, Mapping

from state_review.hexwords import normalize_address, normalize_value, normalize_word, zero_value
from state_review.models import ActualStateChange, TaskSpec
from state_review.steps import ChangeKind, kind_for_slot

logger = logging.getLogger(__name__)

VALUE_FIELDS = ("beforeValue", "afterValue")


class MalformedDiffError(Exception):
    """Raised when a state-change record cannot be parsed. Always fatal."""

    def __init__(self, index: int | None, field: str, reason: str) -> None:
        self.index = index
        self.field = field
        self.reason = reason
        where = f"record {index}" if index is not None else "simulation output"
        if field:
            where += f" field {field!r}"
        super().__init__(f"Malformed state diff at {where}: {reason}")


# ---------------------------------------------------------------------------
# Record normalization
# ---------------------------------------------------------------------------


def _change_kind(index: int, record: Mapping) -> ChangeKind:
    raw_kind = record.get("changeKind")
    if isinstance(raw_kind, ChangeKind):
        return raw_kind
    if raw_kind is None:
        return kind_for_slot(record.get("slot")) or ChangeKind.STORAGE
    try:
        return ChangeKind(str(raw_kind).strip().lower())
    except ValueError:
        raise MalformedDiffError(index, "changeKind", f"unknown change kind {raw_kind!r}") from None


def _slot(index: int, record: Mapping, kind: ChangeKind) -> str:
    raw_slot = record.get("slot")
    if kind is ChangeKind.STORAGE:
        if raw_slot is None:
            raise MalformedDiffError(index, "slot", "storage change has no slot")
        try:
            return normalize_word(raw_slot)
        except ValueError as exc:
            raise MalformedDiffError(index, "slot", str(exc)) from exc
    if raw_slot is not None and kind_for_slot(raw_slot) is not kind:
        raise MalformedDiffError(index, "slot", f"slot {raw_slot!r} contradicts kind {kind.value!r}")
    return kind.value


def normalize_record(index: int, record: object) -> ActualStateChange:
    if isinstance(record, ActualStateChange):
        record = record.model_dump(by_alias=True, mode="json")
    if not isinstance(record, Mapping):
        raise MalformedDiffError(index, "", f"record must be an object, got {type(record).__name__}")

    try:
        address = normalize_address(record.get("contractAddress"))
    except ValueError as exc:
        raise MalformedDiffError(index, "contractAddress", str(exc)) from exc

    kind = _change_kind(index, record)
    slot = _slot(index, record, kind)

    values: dict[str, str] = {}
    for field in VALUE_FIELDS:
        raw_value = record.get(field)
        if raw_value is None:
            values[field] = zero_value(kind)
            continue
        try:
            values[field] = normalize_value(raw_value, kind)
        except ValueError as exc:
            raise MalformedDiffError(index, field, str(exc)) from exc

    return ActualStateChange(
        contract_address=address,
        slot=slot,
        before_value=values["beforeValue"],
        after_value=values["afterValue"],
        change_kind=kind,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(
    raw_diff: Iterable[object],
    spec: TaskSpec | None = None,
    scoped: bool = False,
) -> list[ActualStateChange]:
    """
    Normalize every record of a raw state diff.

    With scoped=True, records for addresses the spec never references are
    dropped after the whole diff has been validated. The default keeps
    everything so unexpected writes stay visible to reconciliation.
    """
    if scoped and spec is None:
        raise ValueError("Scoped normalization requires a TaskSpec.")

    changes = [normalize_record(index, record) for index, record in enumerate(raw_diff)]

    if scoped:
        tracked = spec.tracked_addresses
        kept = [change for change in changes if change.contract_address in tracked]
        logger.debug("Scoped normalization kept %d of %d change(s)", len(kept), len(changes))
        return kept

    logger.debug("Normalized %d state change(s)", len(changes))
    return changes
