"""Clock service shared by holds, payments and the audit log.

All timestamps are naive UTC so that SQLite (tests) and PostgreSQL
(production) round-trip the same values.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Wall clock; services take one so tests can pin time."""

    def now(self) -> datetime:
        return utcnow()


system_clock = Clock()
