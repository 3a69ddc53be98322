#!/usr/bin/env python3
"""
PayNow QR payload generator

Builds dynamic SGQR payloads carrying a PayNow merchant account block
(tag 26) for a mobile number or UEN proxy. The payload string is handed
unmodified to ``qrcode`` to draw the image.
"""

import io
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

import qrcode

from emv_tlv import BillReference, MerchantName, append_crc, encode_nested_tlv, encode_tlv
from paynow_errors import (
    InvalidAmount,
    InvalidProxyValue,
    MissingConfiguration,
    errmsg,
)

Amount = Union[Decimal, int, float, str]

MODE_MOBILE = "mobile"
MODE_UEN = "uen"

PAYNOW_GUI = "SG.PAYNOW"
PROXY_TYPE_CODES = {MODE_MOBILE: "0", MODE_UEN: "2"}

PAYLOAD_FORMAT_INDICATOR = "01"
POINT_OF_INITIATION_DYNAMIC = "12"
MERCHANT_CATEGORY_CODE = "0000"
CURRENCY_SGD = "702"
COUNTRY_CODE = "SG"
DEFAULT_MERCHANT_CITY = "Singapore"

CENTS = Decimal("0.01")

# Accepted shapes: local 8 digits, or 65 / 065 / 0065 country prefix
_MOBILE_PREFIXES = {8: "", 10: "65", 11: "065", 12: "0065"}
_LOCAL_MOBILE_RE = re.compile(r"^[89]\d{7}$")


# ---------- Proxy normalization ----------

def normalize_mobile(raw: Any) -> str:
    """
    Reduce a Singapore mobile number to its 8-digit local form

    Non-digits are dropped first, so "+65 9123 4567" is accepted.

    Raises:
        InvalidProxyValue: unrecognized shape or not an 8/9 leading number
    """
    digits = re.sub(r"\D", "", str(raw or ""))
    prefix = _MOBILE_PREFIXES.get(len(digits))
    if prefix is None or not digits.startswith(prefix):
        raise InvalidProxyValue(f"{errmsg.INVALID_MOBILE}: {raw!r}")

    local8 = digits[len(prefix):]
    if not _LOCAL_MOBILE_RE.match(local8):
        raise InvalidProxyValue(f"{errmsg.INVALID_MOBILE}: {raw!r}")
    return local8


@dataclass(frozen=True)
class MerchantAccountInfo:
    """PayNow proxy block, encoded under tag 26."""

    proxy_type: str
    proxy_value: str
    editable: bool = False
    expiry: Optional[str] = None

    def encode(self) -> str:
        data_objects = [
            ("00", PAYNOW_GUI),
            ("01", PROXY_TYPE_CODES[self.proxy_type]),
            ("02", self.proxy_value),
            ("03", "1" if self.editable else "0"),
        ]
        if self.expiry:
            data_objects.append(("04", self.expiry))
        return encode_tlv("26", encode_nested_tlv(data_objects))


def build_merchant_account_info(
    mode: str,
    uen: str = "",
    mobile: str = "",
    editable: bool = False,
    expiry: Optional[str] = None,
) -> MerchantAccountInfo:
    """Validate the configured proxy and return the account block."""
    mode = (mode or "").strip().lower()

    if mode == MODE_MOBILE:
        return MerchantAccountInfo(MODE_MOBILE, normalize_mobile(mobile), editable, expiry)

    if mode == MODE_UEN:
        uen = (uen or "").strip()
        if not uen:
            raise MissingConfiguration(errmsg.UEN_REQUIRED)
        return MerchantAccountInfo(MODE_UEN, uen, editable, expiry)

    raise MissingConfiguration(f"{errmsg.UNKNOWN_MODE}: got {mode!r}")


# ---------- Amounts ----------

def _round_cents(amount: Decimal, original: Any) -> Decimal:
    # quantize fails once the result needs more digits than the context allows
    try:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"{errmsg.AMOUNT_TOO_LARGE}: {original!r}") from None


def to_amount(value: Amount) -> Decimal:
    """Convert to a cent-rounded Decimal; rounding is half-up."""
    if isinstance(value, bool):
        raise InvalidAmount(f"{errmsg.AMOUNT_NOT_NUMERIC}: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmount(f"{errmsg.AMOUNT_NOT_NUMERIC}: {value!r}") from None
    if not amount.is_finite():
        raise InvalidAmount(f"{errmsg.AMOUNT_NOT_NUMERIC}: {value!r}")
    return _round_cents(amount, value)


def apply_surcharge(base: Amount, percent: Amount = 0) -> Decimal:
    """Return ``base`` plus ``percent`` per cent, rounded to cents.

    >>> apply_surcharge(100, 3)
    Decimal('103.00')
    """
    base_amount = to_amount(base)
    try:
        rate = Decimal(str(percent))
    except InvalidOperation:
        raise InvalidAmount(f"{errmsg.AMOUNT_NOT_NUMERIC}: {percent!r}") from None
    if not rate.is_finite():
        raise InvalidAmount(f"{errmsg.AMOUNT_NOT_NUMERIC}: {percent!r}")
    if rate < 0:
        raise InvalidAmount(f"{errmsg.SURCHARGE_NEGATIVE}: {percent!r}")

    charged = base_amount * (1 + rate / 100)
    return _round_cents(charged, base)


# ---------- Payload ----------

def build_paynow_payload(
    amount: Amount,
    reference: str = "",
    *,
    mode: str = MODE_UEN,
    uen: str = "",
    mobile: str = "",
    merchant_name: str = "",
    merchant_city: str = DEFAULT_MERCHANT_CITY,
    editable: bool = False,
    expiry: Optional[str] = None,
) -> str:
    """
    Generate the complete PayNow payload string

    Merchant name and bill reference are cut to 25 characters. The field
    order is fixed; the string ends with ``6304`` and the CRC.

    Raises:
        InvalidAmount, InvalidProxyValue, MissingConfiguration, FieldTooLong
    """
    charged = to_amount(amount)
    if charged <= 0:
        raise InvalidAmount(f"{errmsg.AMOUNT_NOT_POSITIVE}: got {amount!r}")

    account = build_merchant_account_info(mode, uen=uen, mobile=mobile, editable=editable, expiry=expiry)

    body = "".join([
        encode_tlv("00", PAYLOAD_FORMAT_INDICATOR),
        encode_tlv("01", POINT_OF_INITIATION_DYNAMIC),
        account.encode(),
        encode_tlv("52", MERCHANT_CATEGORY_CODE),
        encode_tlv("53", CURRENCY_SGD),
        encode_tlv("54", f"{charged:.2f}"),
        encode_tlv("58", COUNTRY_CODE),
        encode_tlv("59", MerchantName(merchant_name)),
        encode_tlv("60", merchant_city or DEFAULT_MERCHANT_CITY),
        encode_tlv("62", encode_tlv("01", BillReference(reference or ""))),
    ])

    return append_crc(body)


class PayNowQRGenerator:
    """
    Generates PayNow QR payloads for one configured receiving account
    """

    def __init__(
        self,
        mode: str = MODE_UEN,
        uen: str = "",
        mobile: str = "",
        merchant_name: str = "Receiver",
        merchant_city: str = DEFAULT_MERCHANT_CITY,
        editable: bool = False,
        expiry: Optional[str] = None,
    ):
        self.mode = mode
        self.uen = uen
        self.mobile = mobile
        self.merchant_name = merchant_name
        self.merchant_city = merchant_city
        self.editable = editable
        self.expiry = expiry

    def merchant_account_info(self) -> MerchantAccountInfo:
        return build_merchant_account_info(
            self.mode, uen=self.uen, mobile=self.mobile, editable=self.editable, expiry=self.expiry
        )

    def generate_payload(self, amount: Amount, reference: str = "") -> str:
        return build_paynow_payload(
            amount,
            reference,
            mode=self.mode,
            uen=self.uen,
            mobile=self.mobile,
            merchant_name=self.merchant_name,
            merchant_city=self.merchant_city,
            editable=self.editable,
            expiry=self.expiry,
        )

    @staticmethod
    def make_qr(payload: str) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,  # Let it auto-determine size
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=8,
            border=1,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        return qr

    def generate_qr_png(self, payload: str) -> bytes:
        """Render ``payload`` as PNG bytes."""
        img = self.make_qr(payload).make_image(fill_color="black", back_color="white")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    def generate_qr_code(self, payload: str, output_file: str = "paynow.png") -> str:
        """
        Generate QR code image file from payload

        Returns:
            The path written
        """
        with open(output_file, "wb") as f:
            f.write(self.generate_qr_png(payload))
        return output_file
