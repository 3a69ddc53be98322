"""Tests for TLV encoding, CRC-16 and payload parsing."""

import pytest

from emv_tlv import (
    BillReference,
    FieldValue,
    MerchantName,
    append_crc,
    calculate_crc16,
    encode_nested_tlv,
    encode_tlv,
    find_value,
    parse_payload,
    verify_checksum,
)
from paynow_errors import FieldTooLong, MalformedPayload, PayNowError


class TestCrc16:
    @pytest.mark.parametrize(
        "data,expected",
        [
            ("", "FFFF"),
            ("A", "B915"),
            ("123456789", "29B1"),
        ],
    )
    def test_known_vectors(self, data, expected):
        assert calculate_crc16(data) == expected

    def test_always_four_uppercase_hex_digits(self):
        for data in ["0", "SG.PAYNOW", "000201010212", "x" * 500]:
            crc = calculate_crc16(data)
            assert len(crc) == 4
            assert crc == crc.upper()
            int(crc, 16)

    def test_no_state_between_calls(self):
        assert calculate_crc16("123456789") == calculate_crc16("123456789")


class TestTlvEncoding:
    def test_simple(self):
        assert encode_tlv("00", "01") == "000201"

    def test_string_value(self):
        assert encode_tlv("59", "HUGGS-M WALK") == "5912HUGGS-M WALK"

    def test_empty_value(self):
        assert encode_tlv("01", "") == "0100"

    def test_integer_tag_is_padded(self):
        assert encode_tlv(1, "12") == "010212"

    @pytest.mark.parametrize("length", [0, 1, 9, 10, 25, 99])
    def test_layout(self, length):
        value = "v" * length
        encoded = encode_tlv("62", value)
        assert encoded.startswith("62")
        assert encoded[2:4] == f"{length:02d}"
        assert encoded[4:] == value

    def test_value_over_99_rejected(self):
        with pytest.raises(FieldTooLong):
            encode_tlv("62", "x" * 100)

    def test_three_char_tag_rejected(self):
        with pytest.raises(PayNowError):
            encode_tlv("123", "x")

    def test_nested(self):
        nested = encode_nested_tlv([("00", "SG.SGQR"), ("01", "20091902F9D4")])
        assert nested == "0007SG.SGQR011220091902F9D4"


class TestBoundedValues:
    def test_merchant_name_clipped(self):
        assert MerchantName("A" * 40) == "A" * 25

    def test_bill_reference_short_text_kept(self):
        assert BillReference("L001 - Amy") == "L001 - Amy"

    def test_field_value_boundary(self):
        assert FieldValue("x" * 99) == "x" * 99
        with pytest.raises(FieldTooLong):
            FieldValue("x" * 100)


class TestChecksum:
    def test_append_crc_covers_own_tag_and_length(self):
        body = "000201010212"
        payload = append_crc(body)
        assert payload[:-8] == body
        assert payload[-8:-4] == "6304"
        assert payload[-4:] == calculate_crc16(body + "6304")

    def test_verify(self):
        payload = append_crc("000201010212")
        assert verify_checksum(payload)

    def test_verify_detects_corruption(self):
        payload = append_crc("000201010212")
        tampered = payload.replace("0212", "0211", 1)
        assert not verify_checksum(tampered)

    def test_verify_requires_crc_object(self):
        assert not verify_checksum("000201")
        assert not verify_checksum("")


class TestParsing:
    def test_nested_templates(self):
        account = encode_tlv("26", encode_nested_tlv([("00", "SG.PAYNOW"), ("01", "2"), ("02", "201912345A")]))
        additional = encode_tlv("62", encode_tlv("01", "L001"))
        payload = append_crc(encode_tlv("00", "01") + account + additional)

        parsed = parse_payload(payload)

        assert [o["id"] for o in parsed] == ["00", "26", "62", "63"]
        assert parsed[0]["name"] == "Payload Format Indicator"
        paynow = parsed[1]["dataObjects"]
        assert [o["name"] for o in paynow] == ["Globally Unique Identifier", "Proxy Type", "Proxy Value"]
        assert parsed[2]["dataObjects"][0]["name"] == "Bill Number"
        assert find_value(parsed, "26", "02") == "201912345A"
        assert find_value(parsed, "62", "01") == "L001"
        assert find_value(parsed, "54") is None

    def test_other_payment_system_keeps_generic_names(self):
        account = encode_tlv("27", encode_nested_tlv([("00", "com.test"), ("01", "TEST123")]))
        parsed = parse_payload(account)
        assert parsed[0]["name"] == "Merchant Account Information (27)"
        assert parsed[0]["dataObjects"][1]["name"] == "Payment System Specific Data (01)"

    def test_truncated_value(self):
        with pytest.raises(MalformedPayload):
            parse_payload("5910SHORT")

    def test_non_numeric_length(self):
        with pytest.raises(MalformedPayload):
            parse_payload("59XXabc")

    def test_dangling_bytes(self):
        with pytest.raises(MalformedPayload):
            parse_payload("000201590")


class TestUtf16CodeUnits:
    def test_length_counts_surrogate_pairs(self):
        assert encode_tlv("01", "T\U0001F37A") == "0103T\U0001F37A"

    def test_crc_over_code_units(self):
        # a surrogate pair is two units; only their low bytes (0x3C, 0x7A) reach the register
        assert calculate_crc16("\U0001F37A") == calculate_crc16("\ud83c\udf7a")
        assert calculate_crc16("\U0001F37A") == calculate_crc16("<z")

    def test_field_value_limit_in_code_units(self):
        with pytest.raises(FieldTooLong):
            FieldValue("\U0001F37A" * 50)

    def test_clip_drops_split_pair(self):
        assert BillReference("x" * 24 + "\U0001F37A") == "x" * 24
        assert BillReference("x" * 23 + "\U0001F37A") == "x" * 23 + "\U0001F37A"

    def test_parse_emoji_value(self):
        payload = append_crc(encode_tlv("62", encode_tlv("01", "T\U0001F37A")) + encode_tlv("58", "SG"))
        parsed = parse_payload(payload)
        assert find_value(parsed, "62", "01") == "T\U0001F37A"
        assert find_value(parsed, "58") == "SG"
        assert verify_checksum(payload)
