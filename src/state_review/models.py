# models.py
# Data contracts for the state-diff review engine.
# No business logic lives here, only schema and validation.
#
# JSON field names are camelCase (the expected-state document format and the
# report format); Python attributes are snake_case.

from enum import Enum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from state_review.hexwords import (
    check_value,
    normalize_address,
    normalize_value,
    normalize_word,
    word_to_int,
)
from state_review.steps import ChangeKind, StepId, kind_for_slot

_HASH_HEX_DIGITS = 64


class _Contract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Expected state (Input A)
# ---------------------------------------------------------------------------


class ExpectedStateEntry(_Contract):
    """One declared expectation about a contract's state after the upgrade."""

    contract_address: str = Field(..., description="20-byte address, lower-case hex.")
    change_kind: ChangeKind = Field(default=ChangeKind.STORAGE)
    slot: str | None = Field(
        default=None,
        validate_default=True,
        description="32-byte storage key, or the kind name for balance/nonce/code.",
    )
    before_value: str | None = Field(default=None, description="Absent: previous value unchecked.")
    after_value: str | None = Field(default=None, description="Absent: any resulting value.")
    step_id: StepId
    optional: bool = Field(default=False, description="Absence from the diff is not a failure.")
    allow_difference: bool = Field(
        default=False, description="A mismatch is reported but does not block signing."
    )
    description: str = ""
    contract_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _infer_kind_from_slot(cls, data):
        if not isinstance(data, dict):
            return data
        if data.get("changeKind") is None and data.get("change_kind") is None:
            kind = kind_for_slot(data.get("slot"))
            if kind is not None:
                data = {**data, "changeKind": kind.value}
        return data

    @field_validator("contract_address")
    @classmethod
    def _canonical_address(cls, value: str) -> str:
        return normalize_address(value, require_prefix=True)

    @field_validator("slot")
    @classmethod
    def _canonical_slot(cls, value: str | None, info: ValidationInfo) -> str | None:
        if "change_kind" not in info.data:
            # Kind is invalid and already reported; still check the slot's shape.
            if value is not None and kind_for_slot(value) is None:
                normalize_word(value, require_prefix=True)
            return value
        kind = info.data["change_kind"]
        if kind is ChangeKind.STORAGE:
            if value is None:
                raise ValueError("slot is required for storage entries")
            return normalize_word(value, require_prefix=True)
        if value is not None and kind_for_slot(value) is not kind:
            raise ValueError(f"slot must be {kind.value!r} for {kind.value} entries")
        return kind.value

    @field_validator("before_value", "after_value", mode="before")
    @classmethod
    def _canonical_value(cls, value, info: ValidationInfo):
        if value is None:
            return None
        if "change_kind" not in info.data:
            check_value(value)
            return None
        kind = info.data["change_kind"]
        if kind in (ChangeKind.STORAGE, ChangeKind.CODE) and not isinstance(value, str):
            raise ValueError(f"{kind.value} values must be 0x-prefixed hex strings")
        return normalize_value(value, kind, require_prefix=True)

    @property
    def key(self) -> tuple[str, str]:
        return (self.contract_address, self.slot)


class ExpectedHashes(_Contract):
    """EIP-712 domain/message hash pair the signer is expected to see."""

    address: str
    domain_hash: str
    message_hash: str

    @field_validator("address")
    @classmethod
    def _canonical_address(cls, value: str) -> str:
        return normalize_address(value, require_prefix=True)

    @field_validator("domain_hash", "message_hash")
    @classmethod
    def _canonical_hash(cls, value: str) -> str:
        if not (value.startswith("0x") and len(value) == 2 + _HASH_HEX_DIGITS):
            raise ValueError("hash must be 0x followed by exactly 64 hex characters")
        return normalize_word(value, require_prefix=True)


class OverrideSlot(_Contract):
    """One storage slot the simulation is expected to force before it runs."""

    key: str
    value: str
    description: str = ""
    allow_difference: bool = False

    @field_validator("key", "value")
    @classmethod
    def _canonical_word(cls, value: str) -> str:
        return normalize_word(value, require_prefix=True)


class StateOverride(_Contract):
    """Storage overrides declared for one contract."""

    name: str = Field(..., min_length=1)
    address: str
    overrides: tuple[OverrideSlot, ...] = ()

    @field_validator("address")
    @classmethod
    def _canonical_address(cls, value: str) -> str:
        return normalize_address(value, require_prefix=True)

    def as_entries(self) -> tuple[ExpectedStateEntry, ...]:
        """Each override as an entry of the stateOverrides step."""
        return tuple(
            ExpectedStateEntry(
                contract_address=self.address,
                slot=override.key,
                after_value=override.value,
                step_id=StepId.STATE_OVERRIDES,
                allow_difference=override.allow_difference,
                description=override.description,
                contract_name=self.name,
            )
            for override in self.overrides
        )


class TaskSpec(_Contract):
    """The parsed expected-state document. Immutable once built."""

    ledger_id: int = Field(default=0, ge=0, description="Hardware-wallet account index.")
    task_name: str | None = None
    entries: tuple[ExpectedStateEntry, ...] = Field(..., alias="expectedChanges")
    disabled_steps: frozenset[StepId] = Field(default_factory=frozenset)
    state_overrides: tuple[StateOverride, ...] = ()
    expected_hashes: ExpectedHashes | None = Field(
        default=None, alias="expectedDomainAndMessageHashes"
    )

    @field_validator("ledger_id", mode="before")
    @classmethod
    def _ledger_default(cls, value):
        return 0 if value is None else value

    @property
    def tracked_addresses(self) -> frozenset[str]:
        return frozenset(entry.contract_address for entry in self.entries)

    @property
    def override_entries(self) -> tuple[ExpectedStateEntry, ...]:
        return tuple(entry for override in self.state_overrides for entry in override.as_entries())

    def is_step_disabled(self, step: StepId) -> bool:
        return step in self.disabled_steps


# ---------------------------------------------------------------------------
# Actual state (Input B, normalized)
# ---------------------------------------------------------------------------


class ActualStateChange(_Contract):
    """One normalized entry of the simulated state diff."""

    contract_address: str
    slot: str
    before_value: str
    after_value: str
    change_kind: ChangeKind = ChangeKind.STORAGE

    @property
    def key(self) -> tuple[str, str]:
        return (self.contract_address, self.slot)

    @property
    def before_int(self) -> int | None:
        if self.change_kind is ChangeKind.CODE:
            return None
        return word_to_int(self.before_value)

    @property
    def after_int(self) -> int | None:
        if self.change_kind is ChangeKind.CODE:
            return None
        return word_to_int(self.after_value)


# ---------------------------------------------------------------------------
# Verdicts and report
# ---------------------------------------------------------------------------


class ValidationStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    MISSING = "missing"
    UNEXPECTED = "unexpected"


class ValidationItem(_Contract):
    """Outcome of reconciling one expected entry, or one unmatched actual change."""

    status: ValidationStatus
    step_id: StepId
    is_disabled: bool = False
    expected: ExpectedStateEntry | None = None
    actual: ActualStateChange | None = None
    description: str = ""

    @computed_field
    @property
    def all_passed(self) -> bool:
        return self.status is ValidationStatus.PASSED

    @computed_field
    @property
    def expected_difference(self) -> bool:
        """A mismatch the config declared acceptable. Status stays failed."""
        return (
            self.status is ValidationStatus.FAILED
            and self.expected is not None
            and self.expected.allow_difference
        )

    @property
    def is_blocking(self) -> bool:
        return not self.all_passed and not self.is_disabled and not self.expected_difference

    @property
    def contract_address(self) -> str:
        source = self.expected or self.actual
        return source.contract_address if source else ""


class StepCount(_Contract):
    total: int = 0
    passed: int = 0
    failed: int = 0


class StepCounts(_Contract):
    steps: dict[StepId, StepCount] = Field(default_factory=dict)
    grand_total: StepCount = Field(default_factory=StepCount)

    def __getitem__(self, step: StepId) -> StepCount:
        return self.steps.get(step, StepCount())


class NavEntry(_Contract):
    """One step of the sequential review navigation."""

    step_id: StepId
    label: str
    failed_count: int
    is_disabled: bool


class ValidationReport(_Contract):
    items_by_step: dict[StepId, list[ValidationItem]]
    nav_list: list[NavEntry]
    step_counts: StepCounts
    blocking_errors_exist: bool

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)
