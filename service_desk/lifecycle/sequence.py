"""Human readable service request numbers of the form ``SR-YYYYMM-NNNNN``.

The numeric part restarts at 1 every calendar month and is always derived from the highest
number already issued for the period. The generator itself is pure; the store calls it inside
the transaction that inserts the new request, while holding the period lock.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*$")
_PERIOD_RE = re.compile(r"^\d{6}$")


@dataclass(frozen=True, slots=True)
class SequenceNumber:
    prefix: str
    period: str
    sequence: int


class SequenceGenerator:
    """Format, parse and derive period-scoped sequence identifiers."""

    def __init__(self, prefix: str = "SR", *, width: int = 5) -> None:
        if not _PREFIX_RE.match(prefix):
            raise ValueError("prefix must be upper-case alphanumeric and start with a letter")
        if width < 1:
            raise ValueError("width must be positive")
        self.prefix = prefix
        self.width = width

    @staticmethod
    def period_for(moment: datetime) -> str:
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return f"{moment.year:04d}{moment.month:02d}"

    def period_prefix(self, period: str) -> str:
        if not _PERIOD_RE.match(period):
            raise ValueError(f"Invalid period {period!r}; expected YYYYMM")
        return f"{self.prefix}-{period}"

    def format(self, period: str, sequence: int) -> str:
        if sequence < 1:
            raise ValueError("sequence must start at 1")
        return f"{self.period_prefix(period)}-{sequence:0{self.width}d}"

    def parse(self, identifier: str) -> SequenceNumber:
        parts = identifier.split("-")
        if len(parts) != 3 or parts[0] != self.prefix or not _PERIOD_RE.match(parts[1]) or not parts[2].isdigit():
            raise ValueError(f"Malformed service request number {identifier!r}")
        return SequenceNumber(prefix=parts[0], period=parts[1], sequence=int(parts[2]))

    def next_identifier(self, period: str, latest: str | None) -> str:
        """Return the identifier following ``latest`` within ``period``.

        ``latest`` is the highest identifier already issued for the period, or ``None`` when
        the period has no requests yet.
        """

        if latest is None:
            return self.format(period, 1)
        parsed = self.parse(latest)
        if parsed.period != period:
            raise ValueError(f"{latest!r} does not belong to period {period}")
        return self.format(period, parsed.sequence + 1)
