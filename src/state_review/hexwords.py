# hexwords.py
# Canonical forms for EVM addresses, 32-byte words, quantities and bytecode.
#
# Canonical word: "0x" + 64 lower-case hex digits. Two values are equal iff
# their canonical forms are equal, so case and leading-zero padding never
# matter. stdlib only.

import re

from state_review.steps import ChangeKind, NUMERIC_KINDS

WORD_HEX_DIGITS = 64
ADDRESS_HEX_DIGITS = 40
MAX_WORD = 2**256 - 1
ZERO_WORD = "0x" + "0" * WORD_HEX_DIGITS
EMPTY_CODE = "0x"

_HEX = re.compile(r"^[0-9a-fA-F]*$")
_DECIMAL = re.compile(r"^[0-9]+$")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _hex_body(value: object, what: str, require_prefix: bool) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a hex string, got {type(value).__name__}")
    text = value.strip()
    if text[:2] in ("0x", "0X"):
        body = text[2:]
    elif require_prefix:
        raise ValueError(f"{what} must be 0x-prefixed hex, got {value!r}")
    else:
        body = text
    if not _HEX.match(body):
        raise ValueError(f"{what} is not valid hex: {value!r}")
    return body


# ---------------------------------------------------------------------------
# Public normalizers
# ---------------------------------------------------------------------------


def int_to_word(number: int) -> str:
    if number < 0 or number > MAX_WORD:
        raise ValueError(f"value {number} does not fit in an unsigned 256-bit word")
    return f"0x{number:0{WORD_HEX_DIGITS}x}"


def word_to_int(word: str) -> int:
    return int(word, 16)


def normalize_address(value: object, require_prefix: bool = False) -> str:
    """Lower-case 0x-prefixed 20-byte address. Raises ValueError otherwise."""
    body = _hex_body(value, "address", require_prefix)
    if len(body) != ADDRESS_HEX_DIGITS:
        raise ValueError(f"address must be 20 bytes, got {len(body)} hex digits: {value!r}")
    return "0x" + body.lower()


def normalize_word(value: object, require_prefix: bool = False) -> str:
    """
    Canonical 32-byte word from hex text (1-64 digits) or a non-negative int.

    Bare hex digits are accepted unless require_prefix is set; simulation
    tools emit both forms. Without require_prefix the empty quantity "0x"
    reads as zero.
    """
    if isinstance(value, bool):
        raise ValueError("word must be hex or an integer, got a boolean")
    if isinstance(value, int):
        return int_to_word(value)
    body = _hex_body(value, "word", require_prefix)
    if not body:
        if require_prefix or not value.strip():
            raise ValueError(f"word has no hex digits: {value!r}")
        return ZERO_WORD
    if len(body) > WORD_HEX_DIGITS:
        raise ValueError(f"word is wider than 32 bytes ({len(body)} hex digits)")
    return "0x" + body.lower().rjust(WORD_HEX_DIGITS, "0")


def normalize_quantity(value: object, require_prefix: bool = False) -> str:
    """
    Canonical word for a numeric field (balance, nonce).

    Accepts ints, 0x-prefixed hex and decimal strings, so "0x01", "0x00..01",
    1 and "1" all normalize to the same word. Bare strings are always
    decimal. "0x" is zero unless require_prefix is set.
    """
    if isinstance(value, str):
        text = value.strip()
        if _DECIMAL.match(text):
            return int_to_word(int(text))
        if not require_prefix and text.lower() == "0x":
            return ZERO_WORD
        return normalize_word(text, require_prefix=True)
    return normalize_word(value)


def normalize_code(value: object, require_prefix: bool = False) -> str:
    body = _hex_body(value, "code", require_prefix)
    if len(body) % 2:
        raise ValueError(f"code must be a whole number of bytes, got {len(body)} hex digits")
    return "0x" + body.lower()


def normalize_value(value: object, kind: ChangeKind, require_prefix: bool = False) -> str:
    """Dispatch to the canonical form for a change kind."""
    if kind is ChangeKind.CODE:
        return normalize_code(value, require_prefix)
    if kind in NUMERIC_KINDS:
        return normalize_quantity(value, require_prefix)
    return normalize_word(value, require_prefix)


def check_value(value: object) -> None:
    """
    Kind-independent shape check: 0x hex, a decimal string or a
    non-negative int. Raises ValueError otherwise.
    """
    if isinstance(value, bool):
        raise ValueError("value must be hex or an integer, got a boolean")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"value must not be negative, got {value}")
        return
    if isinstance(value, str) and _DECIMAL.match(value.strip()):
        return
    _hex_body(value, "value", require_prefix=True)


def zero_value(kind: ChangeKind) -> str:
    return EMPTY_CODE if kind is ChangeKind.CODE else ZERO_WORD


def values_equal(left: object, right: object, kind: ChangeKind = ChangeKind.STORAGE) -> bool:
    """
    Equality under canonical normalization.

    Unparseable values are never equal to anything, including themselves.
    """
    if left is None or right is None:
        return left is None and right is None
    try:
        return normalize_value(left, kind) == normalize_value(right, kind)
    except ValueError:
        return False
