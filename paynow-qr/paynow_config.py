"""
Configuration for the PayNow QR tool.

Read from a JSON file (``Config.load``) or from the environment, with a
``.env`` file picked up if present (``Config.from_env``).
"""
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from paynow_qr import DEFAULT_MERCHANT_CITY, MODE_MOBILE, MODE_UEN
from txn_reference import REFERENCE_STYLES

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


@dataclass
class Config:
    mode: str = MODE_UEN               # 'uen' | 'mobile'
    uen: str = ""
    mobile: str = ""
    merchant_name: str = "Receiver"
    merchant_city: str = DEFAULT_MERCHANT_CITY
    surcharge_percent: float = 3.0     # added to the base amount before the QR is built
    min_amount: float = 100.0          # base amounts below this are raised to it; 0 disables
    editable: bool = False
    expiry: Optional[str] = None
    reference_style: str = "template"  # 'template' | 'random'

    def __post_init__(self):
        self.mode = (self.mode or "").strip().lower()
        if self.mode not in (MODE_UEN, MODE_MOBILE):
            raise ValueError(f"mode must be '{MODE_UEN}' or '{MODE_MOBILE}', got {self.mode!r}")
        if self.reference_style not in REFERENCE_STYLES:
            raise ValueError(f"reference_style must be one of {sorted(REFERENCE_STYLES)}, got {self.reference_style!r}")
        self.surcharge_percent = float(self.surcharge_percent)
        self.min_amount = float(self.min_amount)

    @staticmethod
    def load(path: Path) -> "Config":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return Config.from_dict(data)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Config":
        if "mode" not in data:
            raise ValueError("Missing 'mode' in config JSON")
        return Config(
            mode=data["mode"],
            uen=data.get("uen", ""),
            mobile=data.get("mobile", ""),
            merchant_name=data.get("merchant_name", "Receiver"),
            merchant_city=data.get("merchant_city", DEFAULT_MERCHANT_CITY),
            surcharge_percent=data.get("surcharge_percent", 3.0),
            min_amount=data.get("min_amount", 100.0),
            editable=_as_bool(data.get("editable", False)),
            expiry=data.get("expiry"),
            reference_style=data.get("reference_style", "template"),
        )

    @staticmethod
    def from_env(dotenv_path: Optional[str] = None) -> "Config":
        load_dotenv(dotenv_path)
        return Config(
            mode=os.getenv("PAYNOW_MODE", MODE_UEN),
            uen=os.getenv("PAYNOW_UEN", ""),
            mobile=os.getenv("PAYNOW_MOBILE", ""),
            merchant_name=os.getenv("MERCHANT_NAME", "Receiver"),
            merchant_city=os.getenv("MERCHANT_CITY", DEFAULT_MERCHANT_CITY),
            surcharge_percent=os.getenv("PAYNOW_SURCHARGE_PERCENT", "3"),
            min_amount=os.getenv("PAYNOW_MIN_AMOUNT", "100"),
            editable=_as_bool(os.getenv("PAYNOW_EDITABLE", "")),
            expiry=os.getenv("PAYNOW_EXPIRY") or None,
            reference_style=os.getenv("PAYNOW_REFERENCE_STYLE", "template"),
        )
