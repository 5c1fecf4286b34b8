# payment_check.py
import asyncio
import json
import os
import time
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solders.signature import Signature
from spl.memo.constants import MEMO_PROGRAM_ID

from event_log import log_event, short
from pay_errors import FindReferenceError, MissingAmount, ValidateTransferError
from pay_fields import TransferRequest
from pay_rpc import COMMITMENT, rpc_client
from pay_tx import resolve_associated_account
from pay_validation import SOL_DECIMALS, AddressLike, to_address, to_smallest_unit

load_dotenv()

POLL_SECONDS = int(os.getenv("PAY_POLL_SECONDS", "5"))
TIMEOUT_SECONDS = int(os.getenv("PAY_TIMEOUT_SECONDS", "300"))


def _account_keys(message: dict) -> List[str]:
    # jsonParsed gives {"pubkey": ..., "signer": ...}; other encodings give bare strings
    keys = message.get("accountKeys") or []
    return [k.get("pubkey") if isinstance(k, dict) else k for k in keys]


def _token_amounts(balances: List[dict]) -> Dict[int, dict]:
    return {tb.get("accountIndex"): tb for tb in balances or [] if tb.get("accountIndex") is not None}


def _check_native(meta: dict, keys: List[str], request: TransferRequest) -> None:
    recipient = str(request.recipient)
    if recipient not in keys:
        raise ValidateTransferError("recipient not found")
    idx = keys.index(recipient)

    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if idx >= len(pre) or idx >= len(post):
        raise ValidateTransferError("recipient balance missing")

    expected = to_smallest_unit(request.amount, SOL_DECIMALS)
    if post[idx] - pre[idx] != expected:
        raise ValidateTransferError(f"amount not transferred: got {post[idx] - pre[idx]}, want {expected}")


def _check_token(meta: dict, keys: List[str], request: TransferRequest, decimals: Optional[int]) -> None:
    mint = str(request.spl_token)
    # not signing here, so PDA recipients are fine
    ata = str(resolve_associated_account(request.recipient, request.spl_token, allow_owner_off_curve=True))
    if ata not in keys:
        raise ValidateTransferError("recipient token account not found")
    idx = keys.index(ata)

    post = _token_amounts(meta.get("postTokenBalances")).get(idx)
    if post is None or post.get("mint") != mint:
        raise ValidateTransferError("recipient token account not credited with the requested mint")
    pre = _token_amounts(meta.get("preTokenBalances")).get(idx)

    post_ui = post.get("uiTokenAmount") or {}
    pre_ui = (pre or {}).get("uiTokenAmount") or {}
    if decimals is None:
        if post_ui.get("decimals") is None:
            raise ValidateTransferError("mint decimals unknown")
        decimals = int(post_ui["decimals"])

    delta = int(post_ui.get("amount") or 0) - int(pre_ui.get("amount") or 0)
    expected = to_smallest_unit(request.amount, decimals)
    if delta != expected:
        raise ValidateTransferError(f"amount not transferred: got {delta}, want {expected}")


def _check_memo(message: dict, memo: str) -> None:
    for ix in message.get("instructions") or []:
        if ix.get("programId") != str(MEMO_PROGRAM_ID):
            continue
        if ix.get("parsed") == memo:
            return
    raise ValidateTransferError("memo not found")


def transfer_matches(tx_json: Dict[str, Any], request: TransferRequest, *, decimals: Optional[int] = None) -> None:
    """
    Check a jsonParsed getTransaction response against the request it should pay.

    Raises ValidateTransferError if the transaction failed, the recipient (or
    its ATA for a token) didn't receive exactly `amount`, a reference key is
    missing, or the memo differs.
    """
    if request.amount is None:
        raise MissingAmount("cannot validate a transfer without an amount")

    res = (tx_json or {}).get("result") or {}
    if not res:
        raise ValidateTransferError("transaction not found")

    meta = res.get("meta") or {}
    if meta.get("err") is not None:
        raise ValidateTransferError(f"transaction failed: {meta.get('err')}")

    message = (res.get("transaction") or {}).get("message") or {}
    keys = _account_keys(message)

    if request.is_native:
        _check_native(meta, keys, request)
    else:
        _check_token(meta, keys, request, decimals)

    for ref in request.references or ():
        if str(ref) not in keys:
            raise ValidateTransferError(f"reference {ref} not found")

    if request.memo is not None:
        _check_memo(message, request.memo)


async def find_reference(client: AsyncClient, reference: AddressLike, *, limit: int = 1000) -> str:
    """Oldest signature (within `limit`) of a transaction that mentions `reference`."""
    ref_pk = to_address(reference, field="reference")
    resp = await client.get_signatures_for_address(ref_pk, limit=limit, commitment=COMMITMENT)
    sigs = resp.value or []
    if not sigs:
        raise FindReferenceError(f"no transaction references {ref_pk}")
    # newest first
    return str(sigs[-1].signature)


async def validate_transfer(
    client: AsyncClient,
    signature: str,
    request: TransferRequest,
    *,
    decimals: Optional[int] = None,
) -> Dict[str, Any]:
    tx_resp = await client.get_transaction(
        Signature.from_string(signature),
        encoding="jsonParsed",
        commitment=COMMITMENT,
        max_supported_transaction_version=0,
    )
    tx_json = json.loads(tx_resp.to_json())
    transfer_matches(tx_json, request, decimals=decimals)
    log_event("pay", "transfer valid", {"sig": short(signature, 10), "recipient": short(request.recipient)})
    return tx_json


async def _poll(
    client: AsyncClient,
    request: TransferRequest,
    decimals: Optional[int],
    timeout_seconds: int,
    poll_every_seconds: int,
) -> Optional[str]:
    ref_pk = request.references[0]
    deadline = time.monotonic() + timeout_seconds
    seen: set[str] = set()

    while time.monotonic() < deadline:
        try:
            sigs_resp = await client.get_signatures_for_address(ref_pk, limit=10, commitment=COMMITMENT)
        except Exception as e:
            # back off on rate limiting, surface everything else
            cause = getattr(e, "__cause__", None) or getattr(e, "__context__", None)
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 429:
                log_event("pay", "poll rate_limited", {"ref": short(ref_pk)})
                await asyncio.sleep(max(10, poll_every_seconds))
                continue
            raise

        for s in (sigs_resp.value or []):
            sig = str(s.signature)
            if sig in seen:
                continue
            seen.add(sig)

            try:
                await validate_transfer(client, sig, request, decimals=decimals)
            except ValidateTransferError as e:
                log_event("pay", "poll skip", {"sig": short(sig, 10), "reason": str(e)})
                continue
            return sig

        await asyncio.sleep(poll_every_seconds)

    log_event("pay", "poll timeout", {"ref": short(ref_pk), "seen": len(seen)})
    return None


async def wait_for_payment(
    request: TransferRequest,
    *,
    decimals: Optional[int] = None,
    timeout_seconds: int = TIMEOUT_SECONDS,
    poll_every_seconds: int = POLL_SECONDS,
    client: Optional[AsyncClient] = None,
) -> Optional[str]:
    """
    Poll the request's first reference until a transaction that satisfies the
    request shows up. Returns its signature, or None on timeout.
    """
    if not request.references:
        raise FindReferenceError("request has no reference to watch")

    if client is not None:
        return await _poll(client, request, decimals, timeout_seconds, poll_every_seconds)

    async with rpc_client() as owned:
        return await _poll(owned, request, decimals, timeout_seconds, poll_every_seconds)
