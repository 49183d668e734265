"""Clock helpers; everything the service stores or compares is UTC."""
from datetime import UTC, date, datetime


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def utctoday() -> date:
    """Calendar day used to bucket the daily approval cap."""

    return utcnow().date()


def epoch_millis(moment: datetime | None = None) -> int:
    """Milliseconds since the epoch, as used in payout batch identifiers."""

    return int((moment or utcnow()).timestamp() * 1000)


__all__ = ["utcnow", "utctoday", "epoch_millis"]
