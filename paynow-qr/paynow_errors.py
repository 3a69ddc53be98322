"""Errors raised while building or reading PayNow QR payloads."""


class errmsg:
    """Error message constants."""

    AMOUNT_NOT_POSITIVE = "Amount must be > 0"
    AMOUNT_NOT_NUMERIC = "Amount must be a finite number"
    AMOUNT_TOO_LARGE = "Amount has too many digits"
    SURCHARGE_NEGATIVE = "Surcharge percentage cannot be negative"
    INVALID_MOBILE = "Invalid PayNow mobile number"
    UEN_REQUIRED = "PayNow UEN is required for UEN mode"
    UNKNOWN_MODE = "PayNow mode must be 'mobile' or 'uen'"
    FIELD_TOO_LONG = "TLV value longer than 99 code units"
    BAD_TAG = "TLV tag must be exactly 2 characters"
    TRUNCATED_PAYLOAD = "Payload ends inside a TLV field"
    BAD_LENGTH = "TLV length is not a 2-digit number"


class PayNowError(ValueError):
    """Base class for payload validation failures. Never transient."""


class InvalidAmount(PayNowError):
    """Amount is not a positive finite number."""


class InvalidProxyValue(PayNowError):
    """Proxy value (mobile number) does not normalize to a valid PayNow proxy."""


class MissingConfiguration(PayNowError):
    """A required configuration value is empty or unknown."""


class FieldTooLong(PayNowError):
    """TLV value does not fit in a 2-digit length prefix."""


class MalformedPayload(PayNowError):
    """Payload text cannot be decoded as TLV."""
