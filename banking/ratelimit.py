"""
Consent Access Frequency

PSD2 consents carry a frequencyPerDay: the number of unattended accesses the
TPP may make per account per day. Each sync call counts as one access for
its connection; the counter resets at UTC midnight.
"""

from datetime import datetime, time, timedelta, timezone

from connectors.bank_base import BankRateLimitError
from core.errors import RateLimitedError
from core.observability.logging import get_logger

from .db import BankingStore

logger = get_logger(__name__)


def next_utc_midnight(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc)
    return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)


def rate_limited_from_bank(error: BankRateLimitError, now: datetime) -> RateLimitedError:
    """Translate a bank 429 into the domain error."""
    return RateLimitedError(
        "Bank rejected the request: access frequency exceeded",
        retry_after=now + timedelta(seconds=error.retry_after),
    )


class AccessFrequencyGuard:
    """Counts sync accesses per connection per UTC day."""

    def __init__(self, store: BankingStore):
        self._store = store

    def acquire(self, connection_id: int, frequency_per_day: int, now: datetime) -> int:
        """
        Record one access, or refuse when the day's allowance is spent.

        The count and the insert are one statement, so processes sharing the
        database never exceed the allowance.

        Returns:
            Accesses remaining today after this one

        Raises:
            RateLimitedError: Allowance exhausted; retry_after is the next UTC midnight
        """
        recorded, used = self._store.try_record_access(connection_id, now, frequency_per_day)
        if not recorded:
            retry_after = next_utc_midnight(now)
            logger.warning(
                "Daily access allowance exhausted",
                extra_fields={"used": used, "frequency_per_day": frequency_per_day},
            )
            raise RateLimitedError(
                f"Connection {connection_id} reached its {frequency_per_day} accesses for today",
                retry_after=retry_after,
            )
        return max(frequency_per_day - used, 0)
