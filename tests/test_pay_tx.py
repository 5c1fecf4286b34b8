import base64
from decimal import Decimal

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from pay_errors import (
    AccountResolutionError,
    MalformedAddress,
    MissingAmount,
    MissingMintDecimals,
    PrecisionOverflow,
)
from pay_fields import TransferRequest
from pay_tx import build_transfer, resolve_associated_account
from paylink import USDC_MINT_MAINNET, parse_url

USDC = Pubkey.from_string(USDC_MINT_MAINNET)


def _system_transfer_data(lamports: int) -> bytes:
    return (2).to_bytes(4, "little") + lamports.to_bytes(8, "little")


def _transfer_checked_data(amount: int, decimals: int) -> bytes:
    return bytes([12]) + amount.to_bytes(8, "little") + bytes([decimals])


def test_native_request_builds_single_system_transfer() -> None:
    payer = Keypair().pubkey()
    recipient = Keypair().pubkey()

    tx = build_transfer(payer, TransferRequest(recipient=recipient, amount=Decimal("0.01")))

    assert len(tx.instructions) == 1
    ix = tx.instructions[0]
    assert ix.program_id == SYSTEM_PROGRAM_ID
    assert [m.pubkey for m in ix.accounts] == [payer, recipient]
    assert ix.accounts[0].is_signer and ix.accounts[0].is_writable
    assert ix.data == _system_transfer_data(10_000_000)
    assert tx.payer == payer


def test_token_request_builds_transfer_checked_between_atas() -> None:
    payer = Keypair().pubkey()
    recipient = Keypair().pubkey()
    request = TransferRequest(recipient=recipient, amount="5.25", spl_token=USDC)

    tx = build_transfer(payer, request, decimals=6)

    ix = tx.instructions[0]
    assert ix.program_id == TOKEN_PROGRAM_ID
    assert [m.pubkey for m in ix.accounts] == [
        get_associated_token_address(payer, USDC),
        USDC,
        get_associated_token_address(recipient, USDC),
        payer,
    ]
    assert ix.data == _transfer_checked_data(5_250_000, 6)


@pytest.mark.parametrize("token", [None, USDC])
def test_references_follow_functional_keys_in_order(token) -> None:
    payer = Keypair().pubkey()
    refs = [Pubkey.new_unique() for _ in range(3)]
    request = TransferRequest(recipient=Keypair().pubkey(), amount="1", spl_token=token, references=refs)

    tx = build_transfer(payer, request, decimals=6)

    accounts = tx.instructions[0].accounts
    functional = 2 if token is None else 4
    assert len(accounts) == functional + 3
    assert [m.pubkey for m in accounts[functional:]] == refs
    assert all(not m.is_signer and not m.is_writable for m in accounts[functional:])
    assert set(refs) <= set(tx.account_keys)


def test_memo_is_a_separate_instruction_after_the_transfer() -> None:
    request = parse_url(
        "solana:mvines9iiHiQTysrwkJjGf2gb9Ex9jXJX8ns3qwf2kN?amount=0.01&label=Michael"
        "&message=Thanks%20for%20all%20the%20fish&memo=OrderId1234"
    )
    tx = build_transfer(Keypair().pubkey(), request)

    assert len(tx.instructions) == 2
    transfer_ix, memo_ix = tx.instructions
    assert transfer_ix.program_id == SYSTEM_PROGRAM_ID
    assert memo_ix.program_id == MEMO_PROGRAM_ID
    assert memo_ix.data == b"OrderId1234"
    assert list(memo_ix.accounts) == []


def test_unicode_memo_is_utf8() -> None:
    request = TransferRequest(recipient=Keypair().pubkey(), amount="1", memo="café ☕")
    tx = build_transfer(Keypair().pubkey(), request)
    assert tx.instructions[1].data == "café ☕".encode("utf-8")


def test_missing_amount() -> None:
    with pytest.raises(MissingAmount):
        build_transfer(Keypair().pubkey(), TransferRequest(recipient=Keypair().pubkey()))


def test_token_transfer_needs_mint_decimals() -> None:
    request = TransferRequest(recipient=Keypair().pubkey(), amount="1", spl_token=USDC)
    with pytest.raises(MissingMintDecimals):
        build_transfer(Keypair().pubkey(), request)
    with pytest.raises(MissingMintDecimals):
        build_transfer(Keypair().pubkey(), request, decimals=-1)


def test_token_amount_finer_than_mint_overflows() -> None:
    request = TransferRequest(recipient=Keypair().pubkey(), amount="0.1234567", spl_token=USDC)
    with pytest.raises(PrecisionOverflow):
        build_transfer(Keypair().pubkey(), request, decimals=6)


def test_off_curve_recipient_gets_an_ata() -> None:
    pda = get_associated_token_address(Keypair().pubkey(), USDC)
    assert not pda.is_on_curve()
    request = TransferRequest(recipient=pda, amount="1", spl_token=USDC)

    tx = build_transfer(Keypair().pubkey(), request, decimals=6)
    assert tx.instructions[0].accounts[2].pubkey == get_associated_token_address(pda, USDC)


def test_off_curve_payer_is_refused() -> None:
    pda = get_associated_token_address(Keypair().pubkey(), USDC)
    request = TransferRequest(recipient=Keypair().pubkey(), amount="1", spl_token=USDC)

    with pytest.raises(AccountResolutionError):
        build_transfer(pda, request, decimals=6)
    with pytest.raises(AccountResolutionError):
        resolve_associated_account(pda, USDC)
    assert resolve_associated_account(pda, USDC, allow_owner_off_curve=True) == get_associated_token_address(pda, USDC)


def test_resolve_associated_account_is_deterministic() -> None:
    owner = Keypair().pubkey()
    assert resolve_associated_account(owner, USDC) == resolve_associated_account(owner, USDC)


def test_unsigned_transaction_compiles_with_external_blockhash() -> None:
    payer = Keypair().pubkey()
    ref = Pubkey.new_unique()
    request = TransferRequest(recipient=Keypair().pubkey(), amount="0.5", references=[ref], memo="x")

    tx = build_transfer(payer, request)
    encoded = tx.to_base64(Hash.default())
    decoded = VersionedTransaction.from_bytes(base64.b64decode(encoded))

    keys = list(decoded.message.account_keys)
    assert keys[0] == payer
    assert ref in keys
    assert MEMO_PROGRAM_ID in keys


def test_payer_must_be_an_address() -> None:
    with pytest.raises(MalformedAddress):
        build_transfer("nope", TransferRequest(recipient=Keypair().pubkey(), amount="1"))
