#!/usr/bin/env python3
"""
Transaction ids and bill references for QR sales

Ids are ``<company prefix><3-digit counter>`` (e.g. ``L007``). Counters run
1..999 per company and all of them restart together at 12:00 local time.
"""

import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import structlog

from emv_tlv import ClippedText

logger = structlog.get_logger()

COUNTER_MAX = 999
RESET_HOUR = 12

COMPANY_PREFIXES = {
    "lunar": "L",
    "wave": "W",
    "ion": "I",
    "101": "1",
}
UNKNOWN_COMPANY_PREFIX = "X"

KNOWN_COMPANIES = ("Lunar", "Wave", "Ion", "101")


class DisplayReference(ClippedText):
    """Bill reference shown to the payer, at most 25 characters."""


# ---------- Helpers ----------

def company_prefix(company: Optional[str]) -> str:
    return COMPANY_PREFIXES.get((company or "").strip().lower(), UNKNOWN_COMPANY_PREFIX)


def company_key(company: Optional[str]) -> str:
    """Counter key for a company: "lunar" and "LUNAR" both map to "Lunar"."""
    company = (company or "").strip()
    return company[:1].upper() + company[1:].lower()


def reset_key(now: datetime) -> str:
    """Date of the noon window containing ``now``.

    Before 12:00 the window started at noon on the previous day.
    """
    if now.hour < RESET_HOUR:
        now = now - timedelta(days=1)
    return f"{now:%Y-%m-%d}-noon"


def build_reference(txn_id: str, operator: str, name: str) -> DisplayReference:
    return DisplayReference(f"{txn_id} - {operator} - {name}")


# ---------- Reference strategies ----------

class TemplateReference:
    """``"<txn id> - <operator> - <name>"``, cut to 25 characters."""

    def __call__(self, txn_id: str, operator: str, name: str) -> DisplayReference:
        return build_reference(txn_id, operator, name)


class RandomTokenReference:
    """An unguessable token unrelated to the sale details."""

    def __init__(self, nbytes: int = 16):
        self.nbytes = nbytes

    def __call__(self, txn_id: str, operator: str, name: str) -> DisplayReference:
        return DisplayReference(secrets.token_urlsafe(self.nbytes))


REFERENCE_STYLES = {
    "template": TemplateReference,
    "random": RandomTokenReference,
}


# ---------- Allocator ----------

@dataclass
class TxnCounterState:
    reset_key: Optional[str] = None
    counters: Dict[str, int] = field(default_factory=dict)


class TxnReferenceAllocator:
    """
    Hands out transaction ids that are unique within one noon-to-noon window

    All reads and writes of the counter state go through one lock. ``clock``
    returns the current local time and exists so tests can move it.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._lock = threading.Lock()
        self._state = TxnCounterState()

    def reset_key(self) -> str:
        return reset_key(self._clock())

    def next_id(self, company: str) -> str:
        key = company_key(company)

        with self._lock:
            current = self.reset_key()
            if current != self._state.reset_key:
                previous = self._state.reset_key
                self._state = TxnCounterState(
                    reset_key=current,
                    counters={name: 0 for name in KNOWN_COMPANIES},
                )
                logger.info("txn_counters_reset", previous_key=previous, reset_key=current)

            counter = (self._state.counters.get(key, 0) % COUNTER_MAX) + 1
            self._state.counters[key] = counter

        return f"{company_prefix(company)}{counter:03d}"

    def snapshot(self) -> TxnCounterState:
        """Copy of the current state."""
        with self._lock:
            return TxnCounterState(self._state.reset_key, dict(self._state.counters))
