# pay_fields.py
"""
Request and transaction value types.

TransferRequest / TransactionRequest are what a merchant encodes into a
`solana:` link and what a wallet gets back from parsing one.
UnsignedTransaction is what the builder hands to an external signer.

All three are immutable and validated on construction: if you hold one,
it's valid.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.null_signer import NullSigner
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from pay_errors import UnsupportedURLShape
from pay_validation import (
    MAX_MINT_DECIMALS,
    SOL_DECIMALS,
    check_precision,
    is_https_link,
    to_address,
    to_amount,
    to_references,
)

# Label, Message and Memo carry no structure beyond "UTF-8 text".
Label = str
Message = str
Memo = str


def _check_text(name: str, value: Optional[str]) -> None:
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{name} must be str or None, not {type(value).__name__}")


@dataclass(frozen=True)
class TransferRequest:
    recipient: Pubkey
    amount: Optional[Decimal] = None
    spl_token: Optional[Pubkey] = None
    references: Optional[Tuple[Pubkey, ...]] = None
    label: Optional[Label] = None
    message: Optional[Message] = None
    memo: Optional[Memo] = None

    def __post_init__(self):
        """
        Normalize boundary inputs (base58 strings, text amounts, a single
        reference instead of a list) into the field types above.
        """
        _check_text("label", self.label)
        _check_text("message", self.message)
        _check_text("memo", self.memo)

        recipient = to_address(self.recipient, field="recipient")
        spl_token = to_address(self.spl_token, field="spl-token") if self.spl_token is not None else None

        amount = None
        if self.amount is not None:
            amount = to_amount(self.amount)
            # token precision is mint specific; the builder checks the real decimals
            check_precision(amount, SOL_DECIMALS if spl_token is None else MAX_MINT_DECIMALS)

        references = to_references(self.references)

        object.__setattr__(self, "recipient", recipient)
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "spl_token", spl_token)
        object.__setattr__(self, "references", references)

    @property
    def is_native(self) -> bool:
        return self.spl_token is None


@dataclass(frozen=True)
class TransactionRequest:
    link: str
    label: Optional[Label] = None
    message: Optional[Message] = None

    def __post_init__(self):
        if not isinstance(self.link, str) or not is_https_link(self.link):
            raise UnsupportedURLShape(f"transaction request link must be an https URL: {self.link!r}")
        _check_text("label", self.label)
        _check_text("message", self.message)


@dataclass(frozen=True)
class UnsignedTransaction:
    payer: Pubkey
    instructions: Tuple[Instruction, ...]
    account_keys: Tuple[Pubkey, ...] = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "instructions", tuple(self.instructions))

        seen = {self.payer: None}
        for ix in self.instructions:
            for meta in ix.accounts:
                seen.setdefault(meta.pubkey, None)
            seen.setdefault(ix.program_id, None)
        object.__setattr__(self, "account_keys", tuple(seen))

    def to_message(self, recent_blockhash: Hash) -> MessageV0:
        return MessageV0.try_compile(
            payer=self.payer,
            instructions=list(self.instructions),
            address_lookup_table_accounts=[],
            recent_blockhash=recent_blockhash,
        )

    def to_versioned(self, recent_blockhash: Hash) -> VersionedTransaction:
        # placeholder signature; the external signer replaces it
        return VersionedTransaction(self.to_message(recent_blockhash), [NullSigner(self.payer)])

    def to_base64(self, recent_blockhash: Hash) -> str:
        return base64.b64encode(bytes(self.to_versioned(recent_blockhash))).decode("utf-8")
