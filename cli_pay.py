# cli_pay.py
import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Union

from solders.hash import Hash

from pay_errors import SolanaPayError
from pay_fields import TransactionRequest, TransferRequest
from pay_rpc import get_mint_decimals, get_recent_blockhash, rpc_client
from pay_tx import build_transfer
from pay_validation import format_amount
from paylink import encode_url, parse_url


def describe(request: Union[TransferRequest, TransactionRequest]) -> Dict[str, Any]:
    if isinstance(request, TransactionRequest):
        return {"type": "transaction", "link": request.link, "label": request.label, "message": request.message}

    return {
        "type": "transfer",
        "recipient": str(request.recipient),
        "amount": format_amount(request.amount) if request.amount is not None else None,
        "spl_token": str(request.spl_token) if request.spl_token else None,
        "references": [str(r) for r in request.references] if request.references else None,
        "label": request.label,
        "message": request.message,
        "memo": request.memo,
    }


def _encode(args) -> str:
    if args.link:
        request = TransactionRequest(link=args.link, label=args.label, message=args.message)
    else:
        if not args.recipient:
            raise SolanaPayError("--recipient or --link is required")
        request = TransferRequest(
            recipient=args.recipient,
            amount=args.amount,
            spl_token=args.spl_token,
            references=args.reference,
            label=args.label,
            message=args.message,
            memo=args.memo,
        )
    return encode_url(request)


async def _build(args) -> str:
    request = parse_url(args.url)
    if not isinstance(request, TransferRequest):
        raise SolanaPayError("transaction request links are fetched, not built")

    decimals = args.decimals
    blockhash: Optional[Hash] = None
    if args.blockhash:
        try:
            blockhash = Hash.from_string(args.blockhash)
        except ValueError as exc:
            raise SolanaPayError(f"invalid --blockhash: {args.blockhash!r}") from exc

    if blockhash is None or (decimals is None and not request.is_native):
        async with rpc_client(args.rpc_url) as client:
            if decimals is None and not request.is_native:
                decimals = await get_mint_decimals(client, request.spl_token)
            if blockhash is None:
                blockhash = await get_recent_blockhash(client)

    tx = build_transfer(args.payer, request, decimals=decimals)
    return tx.to_base64(blockhash)


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cli_pay", description="Solana Pay links: encode, parse, build")
    sub = parser.add_subparsers(dest="command", required=True)

    enc = sub.add_parser("encode", help="encode a transfer or transaction request URL")
    enc.add_argument("--recipient")
    enc.add_argument("--link", help="https link for a transaction request")
    enc.add_argument("--amount")
    enc.add_argument("--spl-token", dest="spl_token")
    enc.add_argument("--reference", action="append")
    enc.add_argument("--label")
    enc.add_argument("--message")
    enc.add_argument("--memo")

    par = sub.add_parser("parse", help="parse a solana: URL and print it as JSON")
    par.add_argument("url")

    bld = sub.add_parser("build", help="build the unsigned transfer for a solana: URL (base64)")
    bld.add_argument("url")
    bld.add_argument("--payer", required=True)
    bld.add_argument("--decimals", type=int, help="mint decimals; fetched from RPC if omitted")
    bld.add_argument("--blockhash", help="recent blockhash; fetched from RPC if omitted")
    bld.add_argument("--rpc-url", dest="rpc_url")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = make_parser().parse_args(argv)

    try:
        if args.command == "encode":
            print(_encode(args))
        elif args.command == "parse":
            print(json.dumps(describe(parse_url(args.url)), indent=2))
        elif args.command == "build":
            print(asyncio.run(_build(args)))
    except SolanaPayError as e:
        print(f"error: {type(e).__name__}: {e}", file=sys.stderr)
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
