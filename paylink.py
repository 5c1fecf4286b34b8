# paylink.py
import urllib.parse as up
from decimal import Decimal
from typing import Iterable, Optional, Union

from pay_errors import MalformedAddress, UnsupportedURLShape
from pay_fields import TransactionRequest, TransferRequest
from pay_validation import format_amount

SOLANA_PROTOCOL = "solana:"

USDC_MINT_MAINNET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

# same unreserved set as JS encodeURIComponent, so wallets decode us byte-for-byte
_URI_SAFE = "!~*'()"

# any of these means the path is a recipient, not a link
_TRANSFER_KEYS = ("amount", "spl-token", "reference", "memo")


def _encode_component(value: str) -> str:
    return up.quote(value, safe=_URI_SAFE)


def encode_transfer_request_url(request: TransferRequest) -> str:
    """
    Encode a transfer request.

    Example:
      solana:<recipient>?amount=0.01&spl-token=<mint>&reference=<ref>&label=Michael&message=Thanks%20for%20all%20the%20fish&memo=OrderId1234

    Parameters are always written in the order amount, spl-token, reference(s),
    label, message, memo. Fields that are None are left out.
    """
    url = SOLANA_PROTOCOL + _encode_component(str(request.recipient))

    params: list[tuple[str, str]] = []

    if request.amount is not None:
        params.append(("amount", format_amount(request.amount)))
    if request.spl_token is not None:
        params.append(("spl-token", str(request.spl_token)))
    for ref in request.references or ():
        params.append(("reference", str(ref)))
    if request.label is not None:
        params.append(("label", request.label))
    if request.message is not None:
        params.append(("message", request.message))
    if request.memo is not None:
        params.append(("memo", request.memo))

    if params:
        url += "?" + "&".join(f"{key}={_encode_component(value)}" for key, value in params)

    return url


def encode_transaction_request_url(request: TransactionRequest) -> str:
    url = SOLANA_PROTOCOL + _encode_component(request.link)

    params: list[tuple[str, str]] = []
    if request.label is not None:
        params.append(("label", request.label))
    if request.message is not None:
        params.append(("message", request.message))

    if params:
        url += "?" + "&".join(f"{key}={_encode_component(value)}" for key, value in params)

    return url


def encode_url(request: Union[TransferRequest, TransactionRequest]) -> str:
    if isinstance(request, TransferRequest):
        return encode_transfer_request_url(request)
    if isinstance(request, TransactionRequest):
        return encode_transaction_request_url(request)
    raise TypeError(f"cannot encode {type(request).__name__} as a Solana Pay URL")


def solana_pay_url(
    recipient: str,
    amount: Optional[Union[str, Decimal]] = None,
    *,
    spl_token: Optional[str] = None,  # None requests SOL
    reference: Union[str, Iterable[str], None] = None,
    label: Optional[str] = None,
    message: Optional[str] = None,
    memo: Optional[str] = None,
) -> str:
    """
    Build a Solana Pay URL from plain strings.

    Example:
      solana_pay_url(recipient, "5.25", spl_token=USDC_MINT_MAINNET, message="Invoice #123", memo="inv_123")

    Raises the same errors as TransferRequest for a bad address or amount.
    """
    request = TransferRequest(
        recipient=recipient,
        amount=amount,
        spl_token=spl_token,
        references=reference,
        label=label,
        message=message,
        memo=memo,
    )
    return encode_transfer_request_url(request)


def parse_url(url: str) -> Union[TransferRequest, TransactionRequest]:
    """
    Parse a `solana:` URL into a TransferRequest or a TransactionRequest.

    The two shapes are told apart by the path: a path that percent-decodes to
    something containing ':' is a link (transaction request), anything else is
    a recipient address (transfer request). A link may only be combined with
    label/message.

    Unknown query keys are ignored. For singular keys the first occurrence
    wins; `reference` keeps every occurrence in the order it appears.
    """
    if not isinstance(url, str):
        raise UnsupportedURLShape(f"URL must be str, not {type(url).__name__}")
    if url[:len(SOLANA_PROTOCOL)].lower() != SOLANA_PROTOCOL:
        raise UnsupportedURLShape(f"not a Solana Pay URL (missing {SOLANA_PROTOCOL!r} prefix)")

    rest = url[len(SOLANA_PROTOCOL):]
    rest, _, _ = rest.partition("#")
    path, _, query = rest.partition("?")

    first: dict[str, str] = {}
    references: list[str] = []
    try:
        pairs = up.parse_qsl(query, keep_blank_values=True, errors="strict")
    except UnicodeDecodeError as exc:
        raise UnsupportedURLShape("query is not valid percent-encoded UTF-8") from exc
    for key, value in pairs:
        if key == "reference":
            references.append(value)
        elif key not in first:
            first[key] = value

    try:
        target = up.unquote(path, errors="strict")
    except UnicodeDecodeError as exc:
        raise MalformedAddress("path is not valid percent-encoded UTF-8") from exc
    if not target:
        raise MalformedAddress("missing recipient")

    if ":" in target:
        mixed = [k for k in _TRANSFER_KEYS if k in first or (k == "reference" and references)]
        if mixed:
            raise UnsupportedURLShape(f"link URL carries transfer parameters: {', '.join(mixed)}")
        return TransactionRequest(
            link=target,
            label=first.get("label"),
            message=first.get("message"),
        )

    return TransferRequest(
        recipient=target,
        amount=first.get("amount"),
        spl_token=first.get("spl-token"),
        references=references or None,
        label=first.get("label"),
        message=first.get("message"),
        memo=first.get("memo"),
    )
