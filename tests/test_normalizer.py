import pytest

from state_review.hexwords import (
    EMPTY_CODE,
    ZERO_WORD,
    int_to_word,
    normalize_address,
    normalize_quantity,
    normalize_word,
    values_equal,
    word_to_int,
)
from state_review.models import TaskSpec
from state_review.normalizer import MalformedDiffError, normalize, normalize_record
from state_review.steps import ChangeKind

TRACKED = "0x" + "11" * 20
UNTRACKED = "0x" + "22" * 20


def _word(n: int) -> str:
    return "0x" + f"{n:064x}"


def _raw(address=TRACKED, slot="0x1", before="0x0", after="0x1", **extra) -> dict:
    record = {"contractAddress": address, "slot": slot, "beforeValue": before, "afterValue": after}
    record.update(extra)
    return record


def _spec() -> TaskSpec:
    return TaskSpec.model_validate(
        {
            "expectedChanges": [
                {"contractAddress": TRACKED, "slot": "0x1", "afterValue": "0x1", "stepId": "stateChanges"}
            ]
        }
    )


# ---------------------------------------------------------------------------
# hexwords
# ---------------------------------------------------------------------------

def test_normalize_word_pads_and_lowercases():
    assert normalize_word("0xABC") == "0x" + "0" * 61 + "abc"
    assert normalize_word("abc") == normalize_word("0xabc")
    assert normalize_word(255) == _word(255)

def test_normalize_word_rejects_bad_input():
    for bad in ("", "0xZZ", "0x" + "1" * 65, True, None, 1.5):
        with pytest.raises(ValueError):
            normalize_word(bad)

def test_normalize_word_require_prefix():
    with pytest.raises(ValueError, match="0x-prefixed"):
        normalize_word("ff", require_prefix=True)


def test_empty_quantity_reads_as_zero_in_simulation_input():
    assert normalize_word("0x") == ZERO_WORD
    assert normalize_quantity("0x") == ZERO_WORD
    with pytest.raises(ValueError, match="no hex digits"):
        normalize_word("0x", require_prefix=True)
    with pytest.raises(ValueError):
        normalize_quantity("0x", require_prefix=True)

def test_normalize_accepts_empty_quantity_values():
    [storage, balance] = normalize(
        [
            _raw(before="0x", after="0x5"),
            {"contractAddress": TRACKED, "slot": "balance", "beforeValue": "0x", "afterValue": "0x10"},
        ]
    )
    assert storage.before_value == ZERO_WORD
    assert balance.before_int == 0
    assert balance.after_int == 16

def test_normalize_address():
    assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20
    with pytest.raises(ValueError):
        normalize_address("0x1234")
    with pytest.raises(ValueError):
        normalize_address("0x" + "ab" * 21)

def test_normalize_quantity_accepts_decimal_and_hex():
    assert normalize_quantity("1000") == normalize_quantity("0x3e8") == normalize_quantity(1000)
    with pytest.raises(ValueError):
        normalize_quantity("3e8")

def test_int_word_conversions():
    assert int_to_word(0) == ZERO_WORD
    assert word_to_int(_word(42)) == 42
    with pytest.raises(ValueError):
        int_to_word(-1)
    with pytest.raises(ValueError):
        int_to_word(2**256)

def test_values_equal():
    assert values_equal("0x01", _word(1))
    assert values_equal("0xAB", "0xab")
    assert not values_equal("0x01", "0x02")
    assert not values_equal("0xZZ", "0xZZ")
    assert values_equal(None, None)
    assert not values_equal(None, ZERO_WORD)
    assert values_equal("1000", "0x3e8", ChangeKind.BALANCE)
    assert values_equal("0x6080", "0x6080", ChangeKind.CODE)
    assert not values_equal("0x6080", "0x006080", ChangeKind.CODE)


# ---------------------------------------------------------------------------
# normalize: canonical output
# ---------------------------------------------------------------------------

def test_normalize_canonicalizes_storage_record():
    [change] = normalize([_raw(address="0x" + "11" * 20, slot="0xA", before="0x0", after="FF")])
    assert change.contract_address == TRACKED
    assert change.slot == _word(10)
    assert change.before_value == ZERO_WORD
    assert change.after_value == _word(255)
    assert change.change_kind is ChangeKind.STORAGE
    assert change.key == (TRACKED, _word(10))

def test_missing_values_default_to_zero():
    [change] = normalize([{"contractAddress": TRACKED, "slot": "0x1", "afterValue": "0x2"}])
    assert change.before_value == ZERO_WORD
    assert change.before_int == 0
    assert change.after_int == 2

def test_balance_record_reads_decimal_strings():
    [change] = normalize([{"contractAddress": TRACKED, "slot": "balance", "beforeValue": "10", "afterValue": 25}])
    assert change.change_kind is ChangeKind.BALANCE
    assert change.slot == "balance"
    assert change.before_int == 10
    assert change.after_int == 25

def test_code_record():
    [change] = normalize([{"contractAddress": TRACKED, "changeKind": "code", "afterValue": "0x6080AB"}])
    assert change.slot == "code"
    assert change.before_value == EMPTY_CODE
    assert change.after_value == "0x6080ab"
    assert change.after_int is None

def test_normalize_is_idempotent():
    raw = [
        _raw(slot="0x1", after="0xFF"),
        {"contractAddress": UNTRACKED, "slot": "nonce", "beforeValue": 1, "afterValue": 2},
    ]
    once = normalize(raw)
    assert normalize(once) == once

def test_normalize_record_accepts_normalized_change():
    change = normalize_record(0, _raw())
    assert normalize_record(0, change) == change

def test_normalize_preserves_order_and_duplicates():
    raw = [_raw(slot="0x2"), _raw(slot="0x1"), _raw(slot="0x2", before="0x1", after="0x3")]
    changes = normalize(raw)
    assert [c.slot for c in changes] == [_word(2), _word(1), _word(2)]


# ---------------------------------------------------------------------------
# normalize: malformed input
# ---------------------------------------------------------------------------

def test_malformed_address_reports_index_and_field():
    with pytest.raises(MalformedDiffError) as excinfo:
        normalize([_raw(), _raw(address="0xnope")])
    assert excinfo.value.index == 1
    assert excinfo.value.field == "contractAddress"
    assert "record 1" in str(excinfo.value)

def test_malformed_value():
    with pytest.raises(MalformedDiffError) as excinfo:
        normalize([_raw(after="0x" + "f" * 65)])
    assert excinfo.value.field == "afterValue"

def test_record_must_be_object():
    with pytest.raises(MalformedDiffError) as excinfo:
        normalize(["0x1234"])
    assert excinfo.value.index == 0

def test_storage_record_requires_slot():
    with pytest.raises(MalformedDiffError) as excinfo:
        normalize([{"contractAddress": TRACKED, "afterValue": "0x1"}])
    assert excinfo.value.field == "slot"

def test_unknown_change_kind():
    with pytest.raises(MalformedDiffError) as excinfo:
        normalize([_raw(changeKind="transient")])
    assert excinfo.value.field == "changeKind"

def test_slot_contradicting_kind():
    with pytest.raises(MalformedDiffError):
        normalize([_raw(slot="balance", changeKind="nonce")])


# ---------------------------------------------------------------------------
# normalize: scoping
# ---------------------------------------------------------------------------

def test_default_mode_keeps_untracked_addresses():
    changes = normalize([_raw(), _raw(address=UNTRACKED)], _spec())
    assert [c.contract_address for c in changes] == [TRACKED, UNTRACKED]

def test_scoped_mode_drops_untracked_addresses():
    changes = normalize([_raw(), _raw(address=UNTRACKED)], _spec(), scoped=True)
    assert [c.contract_address for c in changes] == [TRACKED]

def test_scoped_mode_still_validates_untracked_records():
    with pytest.raises(MalformedDiffError):
        normalize([_raw(), _raw(address=UNTRACKED, after="0xZZ")], _spec(), scoped=True)

def test_scoped_mode_requires_spec():
    with pytest.raises(ValueError):
        normalize([_raw()], scoped=True)
