# pay_request_fetch.py
"""
Dereference a transaction-request link.

GET  <link>                      -> {"label": ..., "icon": ...}
POST <link> {"account": <pubkey>} -> {"transaction": <base64>, "message": ...}

The wallet signs what comes back; nothing here builds or signs locally.
"""
import base64
import binascii
import os
from typing import Any, Dict, Optional, Tuple

import httpx
from dotenv import load_dotenv
from solders.transaction import VersionedTransaction

from event_log import log_event, short
from pay_errors import FetchTransactionError
from pay_fields import TransactionRequest
from pay_validation import AddressLike, to_address

load_dotenv()

HTTP_TIMEOUT = float(os.getenv("PAY_HTTP_TIMEOUT", "15"))

_HEADERS = {"Accept": "application/json", "Accept-Encoding": "gzip, deflate"}


def _json_object(resp: httpx.Response) -> Dict[str, Any]:
    resp.raise_for_status()
    try:
        data = resp.json()
    except ValueError as exc:
        raise FetchTransactionError("response is not JSON") from exc
    if not isinstance(data, dict):
        raise FetchTransactionError("response must be a JSON object")
    return data


async def _get(client: httpx.AsyncClient, link: str) -> Dict[str, Any]:
    return _json_object(await client.get(link, headers=_HEADERS))


async def _post(client: httpx.AsyncClient, link: str, account: str) -> Dict[str, Any]:
    return _json_object(await client.post(link, json={"account": account}, headers=_HEADERS))


async def fetch_link_metadata(
    request: TransactionRequest,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, str]:
    if client is None:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as owned:
            data = await _get(owned, request.link)
    else:
        data = await _get(client, request.link)

    label = data.get("label")
    icon = data.get("icon")
    if not isinstance(label, str) or not label:
        raise FetchTransactionError("label missing")
    if not isinstance(icon, str) or not icon:
        raise FetchTransactionError("icon missing")

    log_event("fetch", "metadata ok", {"link": short(request.link, 30), "label": label})
    return {"label": label, "icon": icon}


async def fetch_transaction(
    request: TransactionRequest,
    account: AddressLike,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Tuple[VersionedTransaction, Optional[str]]:
    """
    POST the wallet's account to the link and decode the transaction it returns.
    Returns (transaction, message); message is the server's optional note to show the user.
    """
    account_pk = to_address(account, field="account")
    log_event("fetch", "transaction start", {"link": short(request.link, 30), "account": short(account_pk)})

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as owned:
                data = await _post(owned, request.link, str(account_pk))
        else:
            data = await _post(client, request.link, str(account_pk))
    except httpx.HTTPError as e:
        log_event("fetch", "ERR_FETCH_HTTP", {"link": short(request.link, 30), "err": repr(e)})
        raise

    encoded = data.get("transaction")
    if not isinstance(encoded, str) or not encoded:
        raise FetchTransactionError("transaction missing")

    message = data.get("message")
    if message is not None and not isinstance(message, str):
        raise FetchTransactionError("message must be a string")

    try:
        tx = VersionedTransaction.from_bytes(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise FetchTransactionError("transaction is not a valid base64 versioned transaction") from exc

    log_event("fetch", "transaction ok", {"tx_b64_len": len(encoded)})
    return tx, message
