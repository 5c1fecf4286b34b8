# pay_rpc.py
"""
Thin async adapter over the Solana JSON-RPC client.

This is the only place that talks to a node for the core: recent blockhash,
mint decimals, submit, confirm. Everything it returns feeds the pure
builder / checker; RPC and HTTP errors are not wrapped.
"""
import os
from typing import Optional, Union

from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.hash import Hash
from solders.signature import Signature
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from event_log import log_event, short
from pay_errors import AccountResolutionError
from pay_validation import AddressLike, to_address

load_dotenv()

RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
COMMITMENT = Commitment(os.getenv("SOLANA_COMMITMENT", "confirmed"))

# SPL mint layout: 4 option + 32 authority + 8 supply, then the u8 decimals
_MINT_DECIMALS_OFFSET = 44
_TOKEN_PROGRAMS = (str(TOKEN_PROGRAM_ID), str(TOKEN_2022_PROGRAM_ID))


def rpc_client(rpc_url: Optional[str] = None) -> AsyncClient:
    """Use as `async with rpc_client() as client:`."""
    return AsyncClient(rpc_url or RPC_URL, commitment=COMMITMENT)


async def get_recent_blockhash(client: AsyncClient) -> Hash:
    resp = await client.get_latest_blockhash(commitment=COMMITMENT)
    blockhash = resp.value.blockhash
    log_event("rpc", "blockhash", {"hash": short(blockhash)})
    return blockhash


async def get_mint_decimals(client: AsyncClient, mint: AddressLike) -> int:
    mint_pk = to_address(mint, field="spl-token")
    resp = await client.get_account_info(mint_pk, commitment=COMMITMENT)
    if resp.value is None:
        raise AccountResolutionError(f"mint account {mint_pk} not found")
    if str(resp.value.owner) not in _TOKEN_PROGRAMS:
        raise AccountResolutionError(f"account {mint_pk} is not owned by a token program")

    data = bytes(resp.value.data)
    if len(data) <= _MINT_DECIMALS_OFFSET:
        raise AccountResolutionError(f"account {mint_pk} is not a token mint")

    decimals = data[_MINT_DECIMALS_OFFSET]
    log_event("rpc", "mint decimals", {"mint": short(mint_pk), "decimals": decimals})
    return decimals


async def submit_transaction(client: AsyncClient, raw_transaction: bytes) -> Signature:
    log_event("rpc", "submit start", {"tx_len": len(raw_transaction)})
    try:
        resp = await client.send_raw_transaction(raw_transaction)
    except Exception as e:
        log_event("rpc", "ERR_SUBMIT", {"err": repr(e)})
        raise
    log_event("rpc", "submit ok", {"sig": short(resp.value, 10)})
    return resp.value


async def confirm_transaction(client: AsyncClient, signature: Union[Signature, str]):
    """
    Wait for `signature` to reach the configured commitment.
    Returns the signature status (check `.err` for on-chain failure).
    """
    sig = Signature.from_string(signature) if isinstance(signature, str) else signature
    try:
        resp = await client.confirm_transaction(sig, commitment=COMMITMENT)
    except Exception as e:
        log_event("rpc", "ERR_CONFIRM", {"sig": short(sig, 10), "err": repr(e)})
        raise

    status = resp.value[0] if resp.value else None
    log_event("rpc", "confirm ok", {
        "sig": short(sig, 10),
        "failed": bool(status is not None and status.err is not None),
    })
    return status