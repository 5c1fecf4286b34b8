# pay_errors.py
"""
Errors raised while encoding, parsing, building or checking Solana Pay requests.

All of them are ValueError subclasses: they describe bad input, never a
transient condition, so nothing here is retried.
"""


class SolanaPayError(ValueError):
    pass


class MalformedAddress(SolanaPayError):
    pass


class InvalidAmount(SolanaPayError):
    pass


class PrecisionOverflow(InvalidAmount):
    """Amount has more fractional digits (or more units) than the target can hold."""


class AccountResolutionError(SolanaPayError):
    pass


class MissingAmount(SolanaPayError):
    pass


class MissingMintDecimals(SolanaPayError):
    pass


class EmptyReferenceSet(SolanaPayError):
    pass


class UnsupportedURLShape(SolanaPayError):
    pass


# network-side checks
class FindReferenceError(SolanaPayError):
    pass


class ValidateTransferError(SolanaPayError):
    pass


class FetchTransactionError(SolanaPayError):
    pass
