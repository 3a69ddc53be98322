#!/usr/bin/env python3
"""
PayNow QR sales: amount -> transaction id, bill reference and payload

The sale desk applies the minimum amount and surcharge policy, mints the
transaction id and reference, and builds the payload. Storing the sale and
showing the QR to the payer is left to the caller.

Usage:
    paynow-qr --config paynow_config.json --amount 100 --operator Amy \\
        --name "Table 5" --company Lunar --output sale.png
    paynow-qr --verify 00020101021226...6304ABCD
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

import structlog

from emv_tlv import parse_payload, verify_checksum
from paynow_config import Config
from paynow_errors import InvalidAmount, PayNowError, errmsg
from paynow_qr import Amount, PayNowQRGenerator, apply_surcharge, to_amount
from txn_reference import REFERENCE_STYLES, DisplayReference, TxnReferenceAllocator

logger = structlog.get_logger()

ReferenceStrategy = Callable[[str, str, str], DisplayReference]


@dataclass(frozen=True)
class QRSale:
    payload: str
    transaction_id: str
    display_reference: str
    base_amount: Decimal
    charged_amount: Decimal


class PayNowSaleDesk:
    """
    One receiving account plus the shared transaction id allocator

    A single desk (and its allocator) should be shared by every caller in
    the process so ids stay unique.
    """

    def __init__(
        self,
        config: Config,
        allocator: Optional[TxnReferenceAllocator] = None,
        reference_strategy: Optional[ReferenceStrategy] = None,
    ):
        self.config = config
        self.allocator = allocator or TxnReferenceAllocator()
        self.reference_strategy = reference_strategy or REFERENCE_STYLES[config.reference_style]()
        self.generator = PayNowQRGenerator(
            mode=config.mode,
            uen=config.uen,
            mobile=config.mobile,
            merchant_name=config.merchant_name,
            merchant_city=config.merchant_city,
            editable=config.editable,
            expiry=config.expiry,
        )

    def base_amount(self, amount: Amount) -> Decimal:
        """Base amount after the minimum-amount rule."""
        base = to_amount(amount)
        minimum = to_amount(self.config.min_amount)
        return max(base, minimum)

    def create_qr_sale(self, base_amount: Amount, operator: str, name: str, company: str) -> QRSale:
        """
        Mint a transaction id and build the payload for one QR sale

        Amount and account are checked before an id is allocated, so a
        rejected sale does not use up a counter value.

        Raises:
            PayNowError: the amount or the account configuration is invalid
        """
        base = self.base_amount(base_amount)
        charged = apply_surcharge(base, self.config.surcharge_percent)
        if charged <= 0:
            raise InvalidAmount(f"{errmsg.AMOUNT_NOT_POSITIVE}: got {base_amount!r}")
        self.generator.merchant_account_info().encode()

        txn_id = self.allocator.next_id(company)
        reference = self.reference_strategy(txn_id, operator, name)
        payload = self.generator.generate_payload(charged, reference)

        logger.info(
            "qr_sale_created",
            transaction_id=txn_id,
            company=company,
            operator=operator,
            base_amount=str(base),
            charged_amount=str(charged),
        )
        return QRSale(
            payload=payload,
            transaction_id=txn_id,
            display_reference=str(reference),
            base_amount=base,
            charged_amount=charged,
        )

    def render_png(self, payload: str) -> bytes:
        return self.generator.generate_qr_png(payload)


# ---------- CLI ----------

def configure_logging(verbose: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate PayNow QR payloads for sales.")
    parser.add_argument("--config", help="Path to JSON config file (default: environment / .env)")
    parser.add_argument("--amount", help="Base sale amount before surcharge")
    parser.add_argument("--operator", default="", help="Operator name for the bill reference")
    parser.add_argument("--name", default="", help="Customer name or table for the bill reference")
    parser.add_argument("--company", default="", help="Company (Lunar, Wave, Ion, 101)")
    parser.add_argument("--output", help="Write the QR code PNG to this path")
    parser.add_argument("--parse", action="store_true", help="Print the parsed payload structure")
    parser.add_argument("--verify", metavar="PAYLOAD", help="Check the CRC of an existing payload and exit")
    parser.add_argument("--verbose", action="store_true")
    return parser


def run(args: argparse.Namespace) -> int:
    if args.verify:
        ok = verify_checksum(args.verify)
        print("CRC OK" if ok else "CRC MISMATCH")
        if args.parse:
            print(json.dumps(parse_payload(args.verify), indent=2))
        return 0 if ok else 1

    if args.amount is None:
        logger.error("missing_argument", argument="--amount")
        return 2

    config = Config.load(Path(args.config)) if args.config else Config.from_env()
    desk = PayNowSaleDesk(config)
    sale = desk.create_qr_sale(args.amount, args.operator, args.name, args.company)

    print(f"Transaction ID: {sale.transaction_id}")
    print(f"Reference: {sale.display_reference}")
    print(f"Amount: SGD {sale.charged_amount} (base {sale.base_amount})")
    print(f"Payload: {sale.payload}")

    if args.output:
        Path(args.output).write_bytes(desk.render_png(sale.payload))
        print(f"QR Code saved to: {args.output}")

    if args.parse:
        print(json.dumps(parse_payload(sale.payload), indent=2))

    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    try:
        return run(args)
    except PayNowError as e:
        logger.error("payload_rejected", error_type=type(e).__name__, error=str(e))
        return 2
    except ValueError as e:
        logger.error("invalid_config", error=str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
