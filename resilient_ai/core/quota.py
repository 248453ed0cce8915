"""
Per-provider quota tracking.

Counts requests in calendar-day and calendar-month windows and enforces a
minimum interval between consecutive requests to the same provider.
Windows roll over lazily: a stored record from an earlier day or month is
read as zero usage, and the next recorded request rewrites it.

Thread-safe. State is persisted under ``usage:<provider_id>`` as part of the
same critical section that mutates it.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, Iterable, Optional

from loguru import logger

from .events import ChangeNotifier
from ..config.loader import ProviderConfig
from ..storage.models import UsageRecord
from ..storage.repository import KeyValueStore

USAGE_PREFIX = "usage:"


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check. Does not consume quota."""
    allowed: bool
    wait_ms: int = 0
    reason: str = "ok"


@dataclass(frozen=True)
class RemainingQuota:
    """Requests left in the current day and month windows."""
    daily: int
    monthly: int


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class QuotaTracker:
    """Daily/monthly counters and throttling for a set of providers.

    Usage:
        tracker = QuotaTracker(providers, store)

        decision = tracker.acquire("gemini")
        if decision.allowed:
            try:
                result = call_api()
            except ApiError:
                tracker.release("gemini")
                raise
            tracker.commit("gemini")
    """

    QUOTA_ALERT_PCT = 0.80  # Warn once per day when usage crosses this fraction

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        store: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self._providers: Dict[str, ProviderConfig] = {p.id: p for p in providers}
        self._store = store
        self._clock = clock or datetime.now
        self._notifier = notifier or ChangeNotifier()
        self._lock = Lock()
        self._alerted: Dict[str, str] = {}  # provider -> day the alert was sent
        self._in_flight: Dict[str, int] = {}  # provider -> reserved, uncounted slots

    def _provider(self, provider_id: str) -> ProviderConfig:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise KeyError(f"Unknown provider: {provider_id}") from None

    def _load(self, provider_id: str, now: datetime) -> UsageRecord:
        """Read the stored record. Caller must hold lock."""
        raw = self._store.get(f"{USAGE_PREFIX}{provider_id}")
        if raw:
            try:
                return UsageRecord.from_dict(provider_id, json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Discarding unreadable usage record for '{provider_id}': {e}")
        return UsageRecord(provider_id=provider_id, date=now.date().isoformat())

    def _current(self, record: UsageRecord, now: datetime) -> UsageRecord:
        """Apply day/month rollover to a record without persisting it."""
        today = now.date().isoformat()
        if record.date == today:
            return record
        monthly = record.monthly_count if record.month == today[:7] else 0
        return UsageRecord(
            provider_id=record.provider_id,
            date=today,
            daily_count=0,
            monthly_count=monthly,
            last_request_at=record.last_request_at,
        )

    def usage(self, provider_id: str) -> UsageRecord:
        """Effective usage for the current windows."""
        self._provider(provider_id)
        with self._lock:
            now = self._clock()
            return self._current(self._load(provider_id, now), now)

    def _decide(self, provider: ProviderConfig, record: UsageRecord, now: datetime) -> QuotaDecision:
        """Quota decision counting in-flight reservations. Caller must hold lock."""
        in_flight = self._in_flight.get(provider.id, 0)
        daily = record.daily_count + in_flight
        monthly = record.monthly_count + in_flight
        if daily >= provider.daily_limit:
            return QuotaDecision(
                False, reason=f"daily quota exhausted ({daily}/{provider.daily_limit})"
            )
        if monthly >= provider.monthly_limit:
            return QuotaDecision(
                False, reason=f"monthly quota exhausted ({monthly}/{provider.monthly_limit})"
            )

        wait_ms = 0
        if record.last_request_at is not None:
            elapsed = _epoch_ms(now) - record.last_request_at
            # clamp so a clock set backwards never asks for more than one interval
            wait_ms = min(provider.min_interval_ms, max(0, provider.min_interval_ms - elapsed))
        return QuotaDecision(True, wait_ms=wait_ms)

    def can_request(self, provider_id: str) -> QuotaDecision:
        """Check whether the provider may be called now.

        Returns a denial when either window is exhausted, otherwise the
        number of milliseconds to wait for the minimum interval to pass.
        Slots reserved by :meth:`acquire` count as used.
        """
        provider = self._provider(provider_id)
        with self._lock:
            now = self._clock()
            return self._decide(provider, self._current(self._load(provider_id, now), now), now)

    def acquire(self, provider_id: str) -> QuotaDecision:
        """Check quota and reserve one slot in the same critical section.

        An allowed decision holds the slot until :meth:`commit` counts it or
        :meth:`release` gives it back, so concurrent callers can never push
        a window past its limit.
        """
        provider = self._provider(provider_id)
        with self._lock:
            now = self._clock()
            decision = self._decide(provider, self._current(self._load(provider_id, now), now), now)
            if decision.allowed:
                self._in_flight[provider_id] = self._in_flight.get(provider_id, 0) + 1
        return decision

    def release(self, provider_id: str) -> None:
        """Give back a slot reserved by :meth:`acquire` without counting it."""
        self._provider(provider_id)
        with self._lock:
            self._unreserve(provider_id)

    def commit(self, provider_id: str) -> UsageRecord:
        """Turn a reserved slot into a counted request."""
        provider = self._provider(provider_id)
        with self._lock:
            self._unreserve(provider_id)
            record = self._record(provider)
        self._after_record(provider, record)
        return record

    def record_request(self, provider_id: str) -> UsageRecord:
        """Count one request against both windows and persist the result."""
        provider = self._provider(provider_id)
        with self._lock:
            record = self._record(provider)
        self._after_record(provider, record)
        return record

    def _unreserve(self, provider_id: str) -> None:
        """Caller must hold lock."""
        count = self._in_flight.get(provider_id, 0)
        if count <= 1:
            self._in_flight.pop(provider_id, None)
        else:
            self._in_flight[provider_id] = count - 1

    def _record(self, provider: ProviderConfig) -> UsageRecord:
        """Increment and persist both windows. Caller must hold lock."""
        now = self._clock()
        current = self._current(self._load(provider.id, now), now)
        record = UsageRecord(
            provider_id=provider.id,
            date=current.date,
            daily_count=current.daily_count + 1,
            monthly_count=current.monthly_count + 1,
            last_request_at=_epoch_ms(now),
        )
        self._store.set(f"{USAGE_PREFIX}{provider.id}", json.dumps(record.to_dict()))
        self._maybe_alert(provider, record)
        return record

    def _after_record(self, provider: ProviderConfig, record: UsageRecord) -> None:
        logger.debug(
            f"Recorded request for '{provider.id}': "
            f"day={record.daily_count}/{provider.daily_limit} "
            f"month={record.monthly_count}/{provider.monthly_limit}"
        )
        self._notifier.notify("usage", record)

    def _maybe_alert(self, provider: ProviderConfig, record: UsageRecord) -> None:
        """Warn once per day at the alert threshold. Caller must hold lock."""
        if not provider.daily_limit or self._alerted.get(provider.id) == record.date:
            return
        if record.daily_count >= int(provider.daily_limit * self.QUOTA_ALERT_PCT):
            self._alerted[provider.id] = record.date
            pct = record.daily_count / provider.daily_limit * 100
            logger.warning(
                f"API QUOTA WARNING: {provider.id} at {pct:.0f}% "
                f"({record.daily_count}/{provider.daily_limit})"
            )

    def remaining(self, provider_id: str) -> RemainingQuota:
        """Requests left today and this month. Pure read."""
        provider = self._provider(provider_id)
        record = self.usage(provider_id)
        return RemainingQuota(
            daily=max(0, provider.daily_limit - record.daily_count),
            monthly=max(0, provider.monthly_limit - record.monthly_count),
        )

    def subscribe(self, listener):
        return self._notifier.subscribe(listener)
