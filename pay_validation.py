# pay_validation.py
"""
Acceptance rules shared by the URL codec, the request types and the transfer builder.

Every "is this a valid request?" question is answered here and nowhere else.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Tuple, Union
from urllib.parse import urlparse

from solders.pubkey import Pubkey

from pay_errors import (
    EmptyReferenceSet,
    InvalidAmount,
    MalformedAddress,
    PrecisionOverflow,
)

SOL_DECIMALS = 9
MAX_MINT_DECIMALS = 255  # mint decimals are a u8
U64_MAX = 2**64 - 1
ADDRESS_LENGTH = 32

_AMOUNT_RE = re.compile(r"[0-9]+(\.[0-9]+)?")

AddressLike = Union[Pubkey, str, bytes]
AmountLike = Union[Decimal, int, str]


def to_address(value: AddressLike, *, field: str = "address") -> Pubkey:
    if isinstance(value, Pubkey):
        return value

    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_LENGTH:
            raise MalformedAddress(f"{field}: expected {ADDRESS_LENGTH} bytes, got {len(value)}")
        return Pubkey(bytes(value))

    if isinstance(value, str):
        if not value:
            raise MalformedAddress(f"{field}: empty")
        try:
            return Pubkey.from_string(value)
        except (ValueError, TypeError) as exc:
            raise MalformedAddress(f"{field}: not a 32-byte base58 key: {value!r}") from exc

    raise MalformedAddress(f"{field}: unsupported type {type(value).__name__}")


def to_amount(value: AmountLike) -> Decimal:
    """
    Accept an amount as Decimal, int or plain decimal text.

    Floats are refused outright: they can't carry an exact decimal amount.
    """
    if isinstance(value, (bool, float)):
        raise InvalidAmount(f"amount must be Decimal, int or str, not {type(value).__name__}")

    if isinstance(value, int):
        if value < 0:
            raise InvalidAmount(f"amount is negative: {value}")
        return Decimal(value)

    if isinstance(value, str):
        if not _AMOUNT_RE.fullmatch(value):
            raise InvalidAmount(f"amount is not a non-negative decimal: {value!r}")
        try:
            return Decimal(value)
        except InvalidOperation as exc:
            raise InvalidAmount(f"amount is not a decimal: {value!r}") from exc

    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAmount(f"amount is not finite: {value}")
        if value.is_signed():
            raise InvalidAmount(f"amount is negative: {value}")
        return value

    raise InvalidAmount(f"unsupported amount type {type(value).__name__}")


def format_amount(amount: Decimal) -> str:
    # format(..., "f") is exact; normalize() would round past 28 digits
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def fraction_digits(amount: Decimal) -> int:
    text = format_amount(amount)
    _, _, frac = text.partition(".")
    return len(frac)


def check_precision(amount: Decimal, decimals: int) -> None:
    places = fraction_digits(amount)
    if places > decimals:
        raise PrecisionOverflow(f"amount {format_amount(amount)} has {places} decimal places, max is {decimals}")


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    check_precision(amount, decimals)

    _, digits, exponent = amount.as_tuple()
    units = int("".join(str(d) for d in digits) or "0")
    shift = exponent + decimals
    if shift >= 0:
        units *= 10**shift
    else:
        units, rest = divmod(units, 10**-shift)
        if rest:
            raise PrecisionOverflow(f"amount {format_amount(amount)} can't be expressed with {decimals} decimals")

    if units > U64_MAX:
        raise PrecisionOverflow(f"amount {format_amount(amount)} exceeds u64 at {decimals} decimals")
    return units


def to_references(value: Union[AddressLike, Iterable[AddressLike], None]) -> Optional[Tuple[Pubkey, ...]]:
    if value is None:
        return None

    if isinstance(value, (Pubkey, str, bytes, bytearray)):
        return (to_address(value, field="reference"),)

    refs = tuple(to_address(v, field="reference") for v in value)
    if not refs:
        raise EmptyReferenceSet("reference set is present but empty")
    return refs


def is_https_link(link: str) -> bool:
    try:
        parts = urlparse(link)
    except ValueError:
        return False
    return parts.scheme == "https" and bool(parts.netloc)
