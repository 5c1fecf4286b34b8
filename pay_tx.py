# pay_tx.py
from typing import Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams as SystemTransferParams
from solders.system_program import transfer as system_transfer
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from event_log import log_event, short
from pay_errors import AccountResolutionError, MissingAmount, MissingMintDecimals
from pay_fields import TransferRequest, UnsignedTransaction
from pay_validation import (
    MAX_MINT_DECIMALS,
    SOL_DECIMALS,
    AddressLike,
    to_address,
    to_smallest_unit,
)


def resolve_associated_account(
    owner: Pubkey,
    mint: Pubkey,
    *,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
    allow_owner_off_curve: bool = False,
) -> Pubkey:
    """
    Derive the associated token account for (owner, mint). Pure, no RPC.

    Owners off the ed25519 curve (PDAs) can't sign for their ATA, so they're
    refused unless the caller says otherwise.
    """
    if not allow_owner_off_curve and not owner.is_on_curve():
        raise AccountResolutionError(f"owner {owner} is off curve")
    try:
        return get_associated_token_address(owner, mint, token_program_id)
    except (ValueError, TypeError) as exc:
        raise AccountResolutionError(f"cannot derive ATA for owner={owner} mint={mint}") from exc


def with_references(ix: Instruction, references: Optional[Sequence[Pubkey]]) -> Instruction:
    if not references:
        return ix
    extra = [AccountMeta(ref, is_signer=False, is_writable=False) for ref in references]
    return Instruction(program_id=ix.program_id, data=ix.data, accounts=list(ix.accounts) + extra)


def memo_instruction(memo: str) -> Instruction:
    return Instruction(program_id=MEMO_PROGRAM_ID, data=memo.encode("utf-8"), accounts=[])


def _native_transfer(payer: Pubkey, request: TransferRequest) -> Instruction:
    lamports = to_smallest_unit(request.amount, SOL_DECIMALS)
    return system_transfer(
        SystemTransferParams(from_pubkey=payer, to_pubkey=request.recipient, lamports=lamports)
    )


def _token_transfer(
    payer: Pubkey,
    request: TransferRequest,
    decimals: Optional[int],
    token_program_id: Pubkey,
) -> Instruction:
    if decimals is None:
        raise MissingMintDecimals(f"decimals of mint {request.spl_token} are required for a token transfer")
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= MAX_MINT_DECIMALS:
        raise MissingMintDecimals(f"invalid mint decimals: {decimals!r}")

    mint = request.spl_token
    # the payer signs for its ATA; the recipient may be a PDA
    source = resolve_associated_account(payer, mint, token_program_id=token_program_id)
    dest = resolve_associated_account(
        request.recipient, mint, token_program_id=token_program_id, allow_owner_off_curve=True
    )
    units = to_smallest_unit(request.amount, decimals)

    return transfer_checked(
        TransferCheckedParams(
            program_id=token_program_id,
            source=source,
            mint=mint,
            dest=dest,
            owner=payer,
            amount=units,
            decimals=decimals,
            signers=[],
        )
    )


def build_transfer(
    payer: AddressLike,
    request: TransferRequest,
    *,
    decimals: Optional[int] = None,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> UnsignedTransaction:
    """
    Build the unsigned transfer that satisfies `request`, paid by `payer`.

    - SOL (no spl-token): one system transfer, amount in lamports.
    - SPL token: one transferChecked between the payer's and the recipient's
      ATAs. `decimals` is the mint's decimals (see pay_rpc.get_mint_decimals).
      The recipient may be off curve (a PDA); the payer may not.
    - References go at the tail of the transfer's accounts, read-only, in order.
    - Memo, if any, is a separate memo instruction after the transfer.

    Never touches the network; blockhash, fee payer and signing are the caller's job.
    """
    payer_pk = to_address(payer, field="payer")

    if request.amount is None:
        raise MissingAmount("request has no amount; resolve one before building")

    kind = "sol" if request.is_native else "spl"
    log_event("pay", "build start", {
        "kind": kind,
        "payer": short(payer_pk),
        "recipient": short(request.recipient),
        "refs": len(request.references or ()),
    })

    try:
        if request.is_native:
            ix = _native_transfer(payer_pk, request)
        else:
            ix = _token_transfer(payer_pk, request, decimals, token_program_id)
    except Exception as e:
        log_event("pay", "ERR_BUILD_TRANSFER", {"kind": kind, "recipient": short(request.recipient), "err": repr(e)})
        raise

    instructions = [with_references(ix, request.references)]
    if request.memo is not None:
        instructions.append(memo_instruction(request.memo))

    tx = UnsignedTransaction(payer=payer_pk, instructions=tuple(instructions))
    log_event("pay", "build ok", {"kind": kind, "ixs": len(tx.instructions), "keys": len(tx.account_keys)})
    return tx
