"""
Cache freshness policy and the background-refresh scheduling decision.

Both are pure: they look at timestamps and return answers. Submitting the
actual background job and remembering when it was last submitted are up to
the host.
"""
import datetime
from dataclasses import dataclass
from typing import Optional

DEFAULT_STALE_AFTER = datetime.timedelta(hours=6)
DEFAULT_MINIMUM_INTERVAL = datetime.timedelta(hours=2)


@dataclass(frozen=True)
class CachePolicy:
    """How long cached TLE data counts as fresh."""
    stale_after: datetime.timedelta = DEFAULT_STALE_AFTER

    def is_stale(self, fetched_at: datetime.datetime, now: datetime.datetime) -> bool:
        return now - fetched_at > self.stale_after


@dataclass(frozen=True)
class SchedulingDecision:
    should_schedule: bool
    earliest_time: Optional[datetime.datetime] = None


@dataclass(frozen=True)
class RefreshScheduler:
    """Decides whether a background refresh should be requested.

    Staleness is the trigger; minimum_interval keeps repeated lifecycle
    events from queueing a refresh every time they fire.
    """
    minimum_interval: datetime.timedelta = DEFAULT_MINIMUM_INTERVAL

    def decision(
        self,
        fetched_at: Optional[datetime.datetime],
        last_scheduled_at: Optional[datetime.datetime],
        now: datetime.datetime,
        policy: CachePolicy,
    ) -> SchedulingDecision:
        stale = fetched_at is None or policy.is_stale(fetched_at, now)
        if not stale:
            return SchedulingDecision(False)

        if last_scheduled_at is not None and now - last_scheduled_at < self.minimum_interval:
            return SchedulingDecision(False)

        return SchedulingDecision(True, now)
