"""Net-worth history reconstruction from per-account snapshots."""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from ledgersync.models import HistoryPoint, PortfolioChange, PortfolioValue, utc_now
from ledgersync.storage import StoragePort

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


class BucketSize(str, Enum):
    """Supported bucket widths for the history series."""

    HOUR = "1h"
    DAY = "1d"
    WEEK = "1w"
    MONTH = "1m"

    @property
    def width_ms(self) -> int:
        """Fixed bucket width in milliseconds (a month is 30 days)."""
        return {
            BucketSize.HOUR: MS_PER_HOUR,
            BucketSize.DAY: MS_PER_DAY,
            BucketSize.WEEK: 7 * MS_PER_DAY,
            BucketSize.MONTH: 30 * MS_PER_DAY,
        }[self]


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch (naive values are UTC)."""
    return (as_utc(value) - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    """Aware UTC datetime for a millisecond timestamp."""
    return EPOCH + timedelta(milliseconds=value)


def bucket_key(value: datetime, bucket_size: BucketSize) -> int:
    """Start of the bucket containing ``value``, in epoch milliseconds."""
    width = bucket_size.width_ms
    return to_epoch_ms(value) // width * width


class PortfolioReconstructor:
    """Turns irregular balance snapshots into a bucketed net-worth series."""

    def __init__(self, storage: StoragePort) -> None:
        self.storage = storage

    def reconstruct(
        self,
        owner_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        bucket_size: BucketSize = BucketSize.DAY,
    ) -> list[HistoryPoint]:
        """
        Build the net-worth time series for an owner.

        Only accounts included in net worth count. Each emitted bucket holds
        the sum of every account's latest known value at the end of that
        bucket: accounts carry their last value forward, and accounts that
        have not reported yet contribute 0. Buckets without any snapshot
        are not emitted.

        Args:
            owner_id: Owner whose accounts to include
            start: Inclusive lower bound for snapshots (naive values are UTC)
            end: Inclusive upper bound for snapshots (naive values are UTC)
            bucket_size: Width of each bucket

        Returns:
            HistoryPoint list sorted by timestamp
        """
        accounts = self.storage.list_accounts(owner_id, include_in_net_worth=True)
        if not accounts:
            return []

        snapshots = self.storage.query_snapshots(
            [a.id for a in accounts if a.id],
            as_utc(start) if start else None,
            as_utc(end) if end else None,
        )

        last_known: dict[str, Decimal] = {}
        totals: dict[int, Decimal] = {}
        for snapshot in snapshots:
            # Ascending order, so a later snapshot in the same bucket wins
            last_known[snapshot.account_id] = snapshot.value
            totals[bucket_key(snapshot.timestamp, bucket_size)] = sum(
                last_known.values(), Decimal(0)
            )

        logger.debug(
            "Reconstructed %d buckets from %d snapshots for %d accounts",
            len(totals), len(snapshots), len(accounts),
        )
        return [
            HistoryPoint(timestamp=from_epoch_ms(key), value=value)
            for key, value in sorted(totals.items())
        ]

    def total_value(self, owner_id: str) -> PortfolioValue:
        """Current net worth from the stored balances."""
        accounts = self.storage.list_accounts(owner_id, include_in_net_worth=True)

        total = sum((a.balance for a in accounts if a.balance is not None), Decimal(0))
        synced = [a.last_synced_at for a in accounts if a.last_synced_at is not None]

        return PortfolioValue(
            total_value=total,
            account_count=len(accounts),
            last_synced=max(synced) if synced else None,
        )


def calculate_24h_change(
    history: Sequence[HistoryPoint],
    current_value: Decimal,
    now: datetime | None = None,
) -> PortfolioChange:
    """
    Change relative to the history point closest to 24 hours ago.

    With a single point that point is the baseline. A baseline of 0 gives a
    0% change.
    """
    if not history:
        return PortfolioChange(change_24h=Decimal(0), change_percent_24h=Decimal(0))

    target = (now or utc_now()) - timedelta(hours=24)
    baseline = min(history, key=lambda p: abs(p.timestamp - target)).value

    change = current_value - baseline
    percent = change / baseline * 100 if baseline else Decimal(0)
    return PortfolioChange(change_24h=change, change_percent_24h=percent)
