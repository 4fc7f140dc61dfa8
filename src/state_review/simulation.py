# simulation.py
# Adapters from simulation artefacts to raw state-change records.
#
# Nothing here runs a simulation or touches the network. The functions take
# already-captured output (Foundry account accesses, a geth prestateTracer
# diff, the EIP-712 payload) and produce the record shape normalize() reads.

import re
from collections.abc import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, field_validator

from state_review.hexwords import (
    EMPTY_CODE,
    int_to_word,
    normalize_address,
    normalize_code,
    normalize_value,
    normalize_word,
    zero_value,
)
from state_review.models import ExpectedHashes
from state_review.normalizer import MalformedDiffError
from state_review.steps import ChangeKind

EIP712_PREFIX = "0x1901"
_HASH = re.compile(r"^0x[0-9a-f]{64}$")

# Foundry VmSafe.AccountAccessKind values used below.
ACCESS_KIND_DELEGATE_CALL = 1
ACCESS_KIND_CREATE = 4

PRESTATE_FIELDS = (ChangeKind.BALANCE, ChangeKind.NONCE, ChangeKind.CODE)


# ---------------------------------------------------------------------------
# Signing payload
# ---------------------------------------------------------------------------


class SigningHashes(BaseModel):
    """Domain/message hash pair handed verbatim to the hardware signer."""

    model_config = ConfigDict(frozen=True)

    domain_hash: str
    message_hash: str

    @field_validator("domain_hash", "message_hash")
    @classmethod
    def _lower_hex_hash(cls, value: str) -> str:
        if not _HASH.match(value):
            raise ValueError("hash must be 0x followed by exactly 64 lowercase hex characters")
        return value

    @property
    def data_to_sign(self) -> str:
        return EIP712_PREFIX + self.domain_hash[2:] + self.message_hash[2:]


def split_data_to_sign(data: str) -> SigningHashes:
    """Split 0x1901 || domainHash || messageHash into its two hashes."""
    text = data.strip().lower() if isinstance(data, str) else ""
    if not text.startswith(EIP712_PREFIX):
        raise MalformedDiffError(None, "dataToSign", "must start with the EIP-712 prefix 0x1901")
    body = text[len(EIP712_PREFIX):]
    if len(body) != 128 or not re.fullmatch(r"[0-9a-f]*", body):
        raise MalformedDiffError(
            None, "dataToSign", f"expected 64 bytes of domain and message hash, got {len(body) / 2:g}"
        )
    return SigningHashes(domain_hash="0x" + body[:64], message_hash="0x" + body[64:])


def hashes_match(expected: ExpectedHashes | None, actual: SigningHashes | None) -> bool:
    if expected is None or actual is None:
        return False
    return (
        expected.domain_hash == actual.domain_hash.lower()
        and expected.message_hash == actual.message_hash.lower()
    )


# ---------------------------------------------------------------------------
# Foundry account accesses
# ---------------------------------------------------------------------------


def _as_int(value: object, field: str, index: int) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise MalformedDiffError(index, field, "expected an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 16) if text[:2].lower() == "0x" else int(text)
        except ValueError:
            pass
    raise MalformedDiffError(index, field, f"expected an integer, got {value!r}")


def _checked(index: int, field: str, fn, value):
    try:
        return fn(value)
    except ValueError as exc:
        raise MalformedDiffError(index, field, str(exc)) from exc


def _mapping(value: object, index: int | None, field: str) -> Mapping:
    """Missing sections read as empty; anything else must be an object."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedDiffError(index, field, f"expected an object, got {type(value).__name__}")
    return value


def _record(address: str, kind: ChangeKind, before: str, after: str, slot: str | None = None) -> dict:
    return {
        "contractAddress": address,
        "slot": slot if slot is not None else kind.value,
        "changeKind": kind.value,
        "beforeValue": before,
        "afterValue": after,
    }


def flatten_account_accesses(accesses: Iterable[Mapping]) -> list[dict]:
    """
    Collapse Foundry account accesses into net state-change records.

    Only non-reverted storage writes count; repeated writes to a slot keep the
    first previous value and the last new value, and net no-ops are dropped.
    Balance deltas accumulate per account, skipping delegate calls.
    """
    storage: dict[tuple[str, str], list[str]] = {}
    balances: dict[str, list[int]] = {}
    nonces: dict[str, list[int]] = {}
    code: dict[str, str] = {}

    for index, access in enumerate(accesses):
        if not isinstance(access, Mapping):
            raise MalformedDiffError(index, "", "account access must be an object")
        if access.get("reverted"):
            continue
        account = _checked(index, "account", normalize_address, access.get("account"))
        kind = _as_int(access.get("kind"), "kind", index)

        writes = access.get("storageAccesses") or ()
        if not isinstance(writes, (list, tuple)):
            raise MalformedDiffError(index, "storageAccesses", "must be a list of storage accesses")
        for write in writes:
            if not isinstance(write, Mapping):
                raise MalformedDiffError(index, "storageAccesses", "storage access must be an object")
            if not write.get("isWrite") or write.get("reverted"):
                continue
            owner = _checked(index, "storageAccesses.account", normalize_address, write.get("account", account))
            slot = _checked(index, "storageAccesses.slot", normalize_word, write.get("slot"))
            previous = _checked(index, "storageAccesses.previousValue", normalize_word, write.get("previousValue", 0))
            new = _checked(index, "storageAccesses.newValue", normalize_word, write.get("newValue", 0))
            entry = storage.setdefault((owner, slot), [previous, previous])
            entry[1] = new

        old_balance = _as_int(access.get("oldBalance"), "oldBalance", index)
        new_balance = _as_int(access.get("newBalance"), "newBalance", index)
        delta = new_balance - old_balance
        if delta and kind != ACCESS_KIND_DELEGATE_CALL:
            entry = balances.setdefault(account, [0, new_balance])
            entry[0] += delta
            entry[1] = new_balance

        old_nonce = _as_int(access.get("oldNonce"), "oldNonce", index)
        new_nonce = _as_int(access.get("newNonce"), "newNonce", index)
        if old_nonce != new_nonce:
            nonces.setdefault(account, [old_nonce, new_nonce])[1] = new_nonce

        deployed = access.get("deployedCode") or EMPTY_CODE
        if kind == ACCESS_KIND_CREATE and deployed not in ("0x", ""):
            code[account] = _checked(index, "deployedCode", normalize_code, deployed)

    records: list[dict] = []
    for (address, slot), (before, after) in storage.items():
        if before != after:
            records.append(_record(address, ChangeKind.STORAGE, before, after, slot))
    for address, (delta, after) in balances.items():
        if delta == 0:
            continue
        before = after - delta
        if before < 0:
            raise MalformedDiffError(None, "oldBalance", f"negative balance computed for {address}")
        records.append(_record(address, ChangeKind.BALANCE, int_to_word(before), int_to_word(after)))
    for address, (before, after) in nonces.items():
        if before != after:
            records.append(_record(address, ChangeKind.NONCE, int_to_word(before), int_to_word(after)))
    for address, deployed in code.items():
        records.append(_record(address, ChangeKind.CODE, EMPTY_CODE, deployed))
    return records


# ---------------------------------------------------------------------------
# geth prestateTracer (diffMode)
# ---------------------------------------------------------------------------


def flatten_prestate_diff(trace: Mapping) -> list[dict]:
    """
    Convert a prestateTracer diff ({"pre": ..., "post": ...}) to records.

    Fields absent on one side count as zero. An account present only in
    "pre" was destroyed, so every non-zero field it had goes to zero.
    """
    if not isinstance(trace, Mapping):
        raise MalformedDiffError(None, "prestate", "trace must be an object with pre/post")
    pre_state = _mapping(trace.get("pre"), None, "pre")
    post_state = _mapping(trace.get("post"), None, "post")

    records: list[dict] = []
    addresses = list(pre_state) + [address for address in post_state if address not in pre_state]
    for index, raw_address in enumerate(addresses):
        address = _checked(index, "address", normalize_address, raw_address)
        pre_account = _mapping(pre_state.get(raw_address), index, "pre")
        post_account = post_state.get(raw_address)
        destroyed = post_account is None
        post_account = _mapping(post_account, index, "post")

        for kind in PRESTATE_FIELDS:
            field = kind.value
            if field not in post_account and not (destroyed and field in pre_account):
                continue
            before = _checked(index, field, lambda v: normalize_value(v, kind), pre_account.get(field, zero_value(kind)))
            after = _checked(index, field, lambda v: normalize_value(v, kind), post_account.get(field, zero_value(kind)))
            if before != after:
                records.append(_record(address, kind, before, after))

        pre_storage = _mapping(pre_account.get("storage"), index, "pre.storage")
        post_storage = _mapping(post_account.get("storage"), index, "post.storage")
        for raw_slot in list(pre_storage) + [s for s in post_storage if s not in pre_storage]:
            slot = _checked(index, "storage", normalize_word, raw_slot)
            before = _checked(index, "storage", normalize_word, pre_storage.get(raw_slot, 0))
            after = _checked(index, "storage", normalize_word, post_storage.get(raw_slot, 0))
            if before != after:
                records.append(_record(address, ChangeKind.STORAGE, before, after, slot))
    return records


# ---------------------------------------------------------------------------
# Applied state overrides
# ---------------------------------------------------------------------------


def _override_pairs(raw: object) -> list[tuple[object, Mapping]]:
    """(address, {slot: value}) pairs from either supported override shape."""
    if isinstance(raw, list):
        pairs = []
        for index, group in enumerate(raw):
            group = _mapping(group, index, "stateOverrides")
            slots = {}
            for override in group.get("overrides") or ():
                override = _mapping(override, index, "stateOverrides.overrides")
                slots[override.get("key")] = override.get("value")
            pairs.append((group.get("address"), slots))
        return pairs
    overrides = _mapping(raw, None, "stateOverrides")
    pairs = []
    for index, (address, account) in enumerate(overrides.items()):
        account = _mapping(account, index, "stateOverrides")
        slots = account.get("stateDiff") or account.get("state")
        pairs.append((address, _mapping(slots, index, "stateOverrides.stateDiff")))
    return pairs


def flatten_state_overrides(raw: object) -> list[dict]:
    """
    Records for the storage overrides a simulation applied before running.

    Accepts the declared shape ([{"address", "overrides": [{"key", "value"}]}])
    or the eth_call override map ({address: {"stateDiff": {slot: value}}}).
    An override has no previous value, so before mirrors the forced value.
    """
    records: list[dict] = []
    for index, (raw_address, slots) in enumerate(_override_pairs(raw)):
        address = _checked(index, "stateOverrides.address", normalize_address, raw_address)
        for raw_slot, raw_value in slots.items():
            slot = _checked(index, "stateOverrides.key", normalize_word, raw_slot)
            value = _checked(index, "stateOverrides.value", normalize_word, raw_value)
            records.append(_record(address, ChangeKind.STORAGE, value, value, slot))
    return records


# ---------------------------------------------------------------------------
# Whole output
# ---------------------------------------------------------------------------


class SimulationOutput(BaseModel):
    # Records stay unvalidated here; normalize() owns their error reporting.
    records: list
    overrides: list = []
    signing: SigningHashes | None = None


def read_simulation_output(data: object) -> SimulationOutput:
    """
    Accept a bare list of records, or an object carrying one of stateDiff,
    accountAccesses or prestate, plus optional stateOverrides and dataToSign.
    """
    if isinstance(data, list):
        return SimulationOutput(records=data)
    if not isinstance(data, Mapping):
        raise MalformedDiffError(None, "", "simulation output must be a list or an object")

    if isinstance(data.get("stateDiff"), list):
        records = list(data["stateDiff"])
    elif isinstance(data.get("accountAccesses"), list):
        records = flatten_account_accesses(data["accountAccesses"])
    elif isinstance(data.get("prestate"), Mapping):
        records = flatten_prestate_diff(data["prestate"])
    else:
        raise MalformedDiffError(None, "", "no stateDiff, accountAccesses or prestate section found")

    overrides = flatten_state_overrides(data["stateOverrides"]) if data.get("stateOverrides") else []
    signing = split_data_to_sign(data["dataToSign"]) if data.get("dataToSign") else None
    return SimulationOutput(records=records, overrides=overrides, signing=signing)
