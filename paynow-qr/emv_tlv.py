#!/usr/bin/env python3
"""
EMV QR Code (SGQR) text primitives: TLV fields, CRC-16 and parsing

Every data object on the wire is written as
``<2-char id><2-digit length><value>`` and the whole payload is closed by
the CRC object ``6304XXXX``.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from paynow_errors import FieldTooLong, MalformedPayload, PayNowError, errmsg

MAX_VALUE_LENGTH = 99

# CRC parameters for ISO/IEC 13239 (CRC-16/CCITT-FALSE)
CRC_POLYNOMIAL = 0x1021
CRC_INIT_VALUE = 0xFFFF

CRC_TAG = "63"
CRC_LENGTH = "04"

TOP_LEVEL_TAG_NAMES = {
    "00": "Payload Format Indicator",
    "01": "Point of Initiation Method",
    "52": "Merchant Category Code",
    "53": "Transaction Currency",
    "54": "Transaction Amount",
    "55": "Tip or Convenience Indicator",
    "58": "Country Code",
    "59": "Merchant Name",
    "60": "Merchant City",
    "61": "Postal Code",
    "62": "Additional Data Field Template",
    "63": "CRC",
    "64": "Merchant Information - Language Template",
}

# 26-51 are merchant account templates; 51 is the SGQR ID block
MERCHANT_ACCOUNT_TAGS = {f"{i:02d}" for i in range(26, 52)}
TEMPLATE_TAGS = MERCHANT_ACCOUNT_TAGS | {"62", "64"}

PAYNOW_SUBTAG_NAMES = {
    "00": "Globally Unique Identifier",
    "01": "Proxy Type",
    "02": "Proxy Value",
    "03": "Amount Editable Indicator",
    "04": "Expiry Date",
}

ADDITIONAL_DATA_SUBTAG_NAMES = {
    "01": "Bill Number",
    "02": "Mobile Number",
    "03": "Store Label",
    "04": "Loyalty Number",
    "05": "Reference Label",
    "06": "Customer Label",
    "07": "Terminal Label",
    "08": "Purpose of Transaction",
    "09": "Additional Consumer Data Request",
}

MERCHANT_LANGUAGE_SUBTAG_NAMES = {
    "00": "Language Preference",
    "01": "Merchant Name - Alternate Language",
    "02": "Merchant City - Alternate Language",
}


# ---------- UTF-16 code units ----------

# Lengths and the CRC count UTF-16 code units, so a character outside the
# BMP (e.g. an emoji) counts as two.

def code_units(value: str) -> bytes:
    """UTF-16-LE encoding of ``value``: two bytes per code unit."""
    return value.encode("utf-16-le", "surrogatepass")


def unit_length(value: str) -> int:
    return len(code_units(value)) // 2


def _decode_units(units: bytes) -> str:
    return units.decode("utf-16-le", "surrogatepass")


# ---------- Bounded values ----------

class FieldValue(str):
    """A TLV value that fits the 2-digit length prefix. Longer text is rejected."""

    def __new__(cls, value: Any = "") -> "FieldValue":
        value = str(value)
        length = unit_length(value)
        if length > MAX_VALUE_LENGTH:
            raise FieldTooLong(f"{errmsg.FIELD_TOO_LONG}: got {length}")
        return super().__new__(cls, value)


class ClippedText(str):
    """Text silently cut to ``max_length`` code units on construction.

    A surrogate pair split by the cut is dropped whole.
    """

    max_length = 25

    def __new__(cls, value: Any = "") -> "ClippedText":
        units = code_units(str(value))[:cls.max_length * 2]
        if len(units) >= 2 and 0xD800 <= int.from_bytes(units[-2:], "little") <= 0xDBFF:
            units = units[:-2]
        return super().__new__(cls, _decode_units(units))


class MerchantName(ClippedText):
    pass


class BillReference(ClippedText):
    pass


# ---------- Encoding ----------

def encode_tlv(tag: str, value: Any) -> str:
    """
    Encode data in TLV (Tag-Length-Value) format

    Args:
        tag: 2-digit tag identifier
        value: The value to encode (at most 99 UTF-16 code units)

    Returns:
        Encoded string in format: tag + length + value
    """
    tag = str(tag).zfill(2)
    if len(tag) != 2:
        raise PayNowError(f"{errmsg.BAD_TAG}: {tag!r}")

    value = FieldValue(value)
    return f"{tag}{unit_length(value):02d}{value}"


def encode_nested_tlv(data_objects: Iterable[Tuple[str, Any]]) -> str:
    """Concatenate ``(tag, value)`` pairs as TLV, keeping their order."""
    return "".join(encode_tlv(tag, value) for tag, value in data_objects)


def calculate_crc16(data: str) -> str:
    """
    Calculate CRC-16/CCITT-FALSE over the UTF-16 code units of ``data``

    Only the low byte of each code unit affects the register; higher bits
    are shifted out.

    Returns:
        4-character hexadecimal CRC value (uppercase)
    """
    crc = CRC_INIT_VALUE
    units = code_units(data)

    for i in range(0, len(units), 2):
        crc ^= int.from_bytes(units[i:i + 2], "little") << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ CRC_POLYNOMIAL
            else:
                crc = crc << 1
        crc &= 0xFFFF

    return format(crc, "04X")


def append_crc(body: str) -> str:
    """Close a payload body with its CRC object.

    The checksum covers the CRC object's own id and length, not its value.
    """
    crc = calculate_crc16(body + CRC_TAG + CRC_LENGTH)
    return body + encode_tlv(CRC_TAG, crc)


def verify_checksum(payload: str) -> bool:
    """True when the trailing ``6304XXXX`` matches the rest of the payload."""
    if len(payload) < 8 or payload[-8:-4] != CRC_TAG + CRC_LENGTH:
        return False
    return calculate_crc16(payload[:-4]) == payload[-4:]


# ---------- Parsing ----------

def parse_payload(payload: str, parent_tag: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Parse a payload string back to structured format

    Offsets and lengths are in UTF-16 code units, matching ``encode_tlv``.
    Templates (merchant accounts, additional data, language) are expanded
    into ``dataObjects``.

    Raises:
        MalformedPayload: a length prefix is not numeric or runs past the end
    """
    units = code_units(payload)
    total = len(units) // 2
    result = []
    i = 0

    def text(start: int, end: int) -> str:
        return _decode_units(units[start * 2:end * 2])

    while i < total:
        if i + 4 > total:
            raise MalformedPayload(f"{errmsg.TRUNCATED_PAYLOAD} at offset {i}")

        tag = text(i, i + 2)
        raw_length = text(i + 2, i + 4)
        if not (raw_length.isascii() and raw_length.isdigit()):
            raise MalformedPayload(f"{errmsg.BAD_LENGTH}: {raw_length!r} at offset {i + 2}")
        length = int(raw_length)

        value_start = i + 4
        value_end = value_start + length
        if value_end > total:
            raise MalformedPayload(f"{errmsg.TRUNCATED_PAYLOAD}: tag {tag} at offset {i}")

        value = text(value_start, value_end)
        obj = {
            "id": tag,
            "name": get_tag_name(tag, parent_tag),
            "length": raw_length,
            "value": value,
        }

        if parent_tag is None and tag in TEMPLATE_TAGS:
            obj["dataObjects"] = parse_payload(value, parent_tag=tag)
            if tag in MERCHANT_ACCOUNT_TAGS and _is_paynow(obj["dataObjects"]):
                for sub in obj["dataObjects"]:
                    sub["name"] = PAYNOW_SUBTAG_NAMES.get(sub["id"], sub["name"])

        result.append(obj)
        i = value_end

    return result


def _is_paynow(data_objects: List[Dict[str, Any]]) -> bool:
    return any(o["id"] == "00" and o["value"] == "SG.PAYNOW" for o in data_objects)


def get_tag_name(tag: str, parent_tag: Optional[str] = None) -> str:
    """Return descriptive name for a tag using context-specific mappings."""
    if parent_tag is None:
        if tag in TOP_LEVEL_TAG_NAMES:
            return TOP_LEVEL_TAG_NAMES[tag]
        if tag == "51":
            return "SGQR ID"
        if tag in MERCHANT_ACCOUNT_TAGS:
            return f"Merchant Account Information ({tag})"
        return f"Unknown Tag {tag}"

    if parent_tag in MERCHANT_ACCOUNT_TAGS:
        if tag == "00":
            return "Globally Unique Identifier"
        return f"Payment System Specific Data ({tag})"

    if parent_tag == "62":
        return ADDITIONAL_DATA_SUBTAG_NAMES.get(tag, f"Additional Data ({tag})")

    if parent_tag == "64":
        return MERCHANT_LANGUAGE_SUBTAG_NAMES.get(tag, f"Merchant Information - Language ({tag})")

    return f"Unknown Tag {tag}"


def find_value(parsed: List[Dict[str, Any]], *path: str) -> Optional[str]:
    """Look up a value by tag path, e.g. ``find_value(parsed, "62", "01")``."""
    objects = parsed
    found = None
    for tag in path:
        found = next((o for o in objects if o["id"] == tag), None)
        if found is None:
            return None
        objects = found.get("dataObjects", [])
    return found["value"] if found is not None else None
