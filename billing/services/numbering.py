"""
Invoice numbering authorities.

Numbers look like INV-2503-007: prefix, two-digit year and month of issue, and
a sequence that restarts every month. Numbers are issued at finalize time only
and are never reclaimed.
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Protocol

from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r"^(?P<prefix>[A-Z0-9]+)-(?P<yymm>\d{4})-(?P<sequence>\d{3,})$")


@dataclass(frozen=True)
class InvoiceNumber:
    prefix: str
    yymm: str
    sequence: int


def format_invoice_number(prefix: str, issued_on: date, sequence: int) -> str:
    """Format an invoice number (sequence is zero-padded to three digits)."""
    return f"{prefix}-{issued_on:%y%m}-{sequence:03d}"


def parse_invoice_number(number: str) -> InvoiceNumber:
    """
    Split an invoice number into its parts.

    Raises:
        ValueError: If the number doesn't match PREFIX-YYMM-NNN
    """
    match = _NUMBER_PATTERN.match(number)
    if match is None:
        raise ValueError(f"Not an invoice number: {number!r}")
    return InvoiceNumber(
        prefix=match.group("prefix"),
        yymm=match.group("yymm"),
        sequence=int(match.group("sequence")),
    )


class NumberingAuthority(Protocol):
    """Issues unique invoice numbers."""

    def next_number(self, issued_on: date) -> str: ...


class SequenceNumberingAuthority:
    """
    In-process numbering authority.

    Unique within one process. Seed it with the numbers already issued so a
    restart continues the month's sequence instead of repeating it.
    """

    def __init__(self, prefix: str = "INV", existing: Iterable[str] = ()):
        self.prefix = prefix
        self._lock = threading.Lock()
        self._last: dict[str, int] = {}
        self.seed(existing)

    def seed(self, numbers: Iterable[str]) -> None:
        """Raise each month's counter to the highest number seen."""
        with self._lock:
            for number in numbers:
                try:
                    parsed = parse_invoice_number(number)
                except ValueError:
                    logger.warning(f"Ignoring malformed invoice number while seeding: {number}")
                    continue
                if parsed.prefix != self.prefix:
                    continue
                self._last[parsed.yymm] = max(self._last.get(parsed.yymm, 0), parsed.sequence)

    def next_number(self, issued_on: date) -> str:
        yymm = f"{issued_on:%y%m}"
        with self._lock:
            sequence = self._last.get(yymm, 0) + 1
            self._last[yymm] = sequence
        return format_invoice_number(self.prefix, issued_on, sequence)


class ValkeyNumberingAuthority:
    """
    Numbering authority backed by an atomic INCR on a per-month Valkey key.

    Safe across processes and hosts. A month's counter is only written during
    that month, so it is left to expire well after the month has closed.
    """

    def __init__(
        self,
        valkey: ValkeyClient,
        prefix: str = "INV",
        key_prefix: str = "invoice_seq",
        counter_ttl_days: int = 400,
    ):
        self.valkey = valkey
        self.prefix = prefix
        self.key_prefix = key_prefix
        self.counter_ttl_seconds = counter_ttl_days * 24 * 60 * 60

    def _key(self, issued_on: date) -> str:
        return f"{self.key_prefix}:{self.prefix}:{issued_on:%y%m}"

    def seed(self, issued_on: date, last_sequence: int) -> bool:
        """
        Start a month's counter after an existing sequence.

        Only takes effect if the month has no counter yet.
        """
        return self.valkey.set_if_absent(self._key(issued_on), last_sequence, self.counter_ttl_seconds)

    def next_number(self, issued_on: date) -> str:
        sequence = self.valkey.incr(self._key(issued_on), self.counter_ttl_seconds)
        return format_invoice_number(self.prefix, issued_on, sequence)
