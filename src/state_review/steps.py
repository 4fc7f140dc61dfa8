# steps.py
# The closed review-step taxonomy and state-change kinds.
#
# Every step identifier used anywhere in the package is declared here.
# Adding a step means adding one member to StepId and one label.

from enum import Enum


class StepId(str, Enum):
    """Logical review step an expected state change belongs to."""

    TASK_ORIGIN = "taskOrigin"
    NESTED_CALLS = "nestedCalls"
    SIGNER_ACCOUNTS = "signerAccounts"
    STATE_OVERRIDES = "stateOverrides"
    STATE_CHANGES = "stateChanges"
    BALANCE_CHANGES = "balanceChanges"


class ChangeKind(str, Enum):
    STORAGE = "storage"
    BALANCE = "balance"
    NONCE = "nonce"
    CODE = "code"


# Fixed review order. Declaration order of StepId is the canonical order.
CANONICAL_STEPS: tuple[StepId, ...] = tuple(StepId)

STEP_LABELS: dict[StepId, str] = {
    StepId.TASK_ORIGIN: "Task Origin",
    StepId.NESTED_CALLS: "Nested Calls",
    StepId.SIGNER_ACCOUNTS: "Signer Accounts",
    StepId.STATE_OVERRIDES: "State Overrides",
    StepId.STATE_CHANGES: "State Changes",
    StepId.BALANCE_CHANGES: "Balance Changes",
}

# Writes nobody declared usually come from calls nested under the reviewed tx.
DEFAULT_UNEXPECTED_STEP = StepId.NESTED_CALLS

# Non-storage kinds use their own name as the slot sentinel.
SLOT_SENTINELS: dict[str, ChangeKind] = {
    kind.value: kind for kind in ChangeKind if kind is not ChangeKind.STORAGE
}

NUMERIC_KINDS = frozenset({ChangeKind.BALANCE, ChangeKind.NONCE})


def kind_for_slot(slot: str | None) -> ChangeKind | None:
    """Return the kind named by a sentinel slot, or None for storage keys."""
    if not isinstance(slot, str):
        return None
    return SLOT_SENTINELS.get(slot.strip().lower())
