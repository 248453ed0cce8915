"""
Resilient request orchestrator.

Single entry point for callers: validates the request, serves it from cache
when possible, otherwise dispatches to providers and falls back locally.
Every valid request succeeds; only malformed input is reported as failure.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger

from ..config.loader import (
    OrchestratorConfig,
    OrchestratorSettings,
    ProviderConfig,
    load_orchestrator_config,
)
from ..core.cache import ResponseCache
from ..core.credentials import CredentialVault
from ..core.dispatcher import AttemptRecord, ProviderDispatcher
from ..core.errors import ErrorKind, InvalidInputError
from ..core.events import ChangeNotifier
from ..core.fallback import LocalFallbackEngine
from ..core.quota import QuotaTracker, RemainingQuota
from ..core.tasks import RequestPayload, validate_payload
from ..storage.repository import KeyValueStore, SQLiteKeyValueStore
from .transport import ProviderTransport

CACHE_SOURCE = "cache"
OFFLINE_MODE = "offline"


@dataclass(frozen=True)
class RequestOptions:
    """Per-call options."""
    no_cache: bool = False
    ttl_ms: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.no_cache, bool):
            raise InvalidInputError("no_cache must be a boolean")
        if self.ttl_ms is not None and (
                isinstance(self.ttl_ms, bool) or not isinstance(self.ttl_ms, int) or self.ttl_ms <= 0):
            raise InvalidInputError("ttl_ms must be a positive integer")


@dataclass
class OrchestrationResult:
    """Uniform result returned for every request."""
    success: bool
    data: Optional[Dict[str, Any]]
    source: Optional[str]
    latency_ms: float
    error: Optional[str] = None
    error_detail: Optional[str] = None
    attempts: List[AttemptRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Orchestrator:
    """Facade composing vault, quota tracker, cache, dispatcher and fallback.

    Usage:
        orchestrator = Orchestrator.from_config("providers.yaml")
        result = orchestrator.request(
            RequestPayload("recipe", {"ingredients": ["chicken", "rice"]})
        )
        print(result.source, result.data["title"])
    """

    def __init__(
        self,
        providers: List[ProviderConfig],
        store: KeyValueStore,
        settings: Optional[OrchestratorSettings] = None,
        transport: Optional[Callable[..., Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or OrchestratorSettings()
        self.providers = sorted(providers, key=lambda p: p.priority)
        self._monotonic = monotonic
        self._notifier = ChangeNotifier()

        self.vault = CredentialVault(store, notifier=self._notifier)
        self.tracker = QuotaTracker(self.providers, store, clock=clock, notifier=self._notifier)
        self.cache = ResponseCache(
            default_ttl_ms=self.settings.cache_ttl_ms,
            capacity=self.settings.cache_capacity,
            clock=monotonic,
        )
        self.fallback = LocalFallbackEngine()
        self.dispatcher = ProviderDispatcher(
            self.providers,
            self.vault,
            self.tracker,
            transport or ProviderTransport(),
            fallback=self.fallback,
            request_timeout_ms=self.settings.request_timeout_ms,
            max_wait_ms=self.settings.max_wait_ms,
            sleep=sleep,
            monotonic=monotonic,
        )

    @classmethod
    def from_config(cls, path: str, store: Optional[KeyValueStore] = None,
                    **kwargs: Any) -> "Orchestrator":
        """Build an orchestrator from a YAML config file.

        The store defaults to SQLite at the configured ``db_path``.
        """
        config: OrchestratorConfig = load_orchestrator_config(path)
        store = store or SQLiteKeyValueStore(config.settings.db_path)
        return cls(list(config.providers), store, settings=config.settings, **kwargs)

    def request(
        self,
        payload: Union[RequestPayload, Mapping[str, Any]],
        options: Optional[Union[RequestOptions, Mapping[str, Any]]] = None,
    ) -> OrchestrationResult:
        """Serve one request.

        Args:
            payload: Task and parameters, or a ``{"task": ..., ...}`` mapping
            options: ``no_cache`` and ``ttl_ms`` overrides

        Returns:
            OrchestrationResult; ``success`` is False only for invalid input
        """
        started = self._monotonic()

        try:
            if not isinstance(payload, RequestPayload):
                payload = RequestPayload.from_dict(payload)
            if options is None:
                options = RequestOptions()
            elif not isinstance(options, RequestOptions):
                options = RequestOptions(**dict(options))
            payload = validate_payload(payload)
        except (TypeError, ValueError) as e:
            logger.info(f"Rejected invalid request: {e}")
            return OrchestrationResult(
                success=False,
                data=None,
                source=None,
                latency_ms=self._elapsed_ms(started),
                error=ErrorKind.INVALID_INPUT.value,
                error_detail=str(e),
            )

        key = payload.fingerprint()
        if not options.no_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for '{payload.task}' ({key[:12]})")
                return OrchestrationResult(
                    success=True, data=cached, source=CACHE_SOURCE,
                    latency_ms=self._elapsed_ms(started),
                )

        deadline = started + self.settings.deadline_ms / 1000.0
        try:
            outcome = self.dispatcher.dispatch(payload, deadline=deadline)
        except Exception as e:
            # only reachable if the local fallback itself breaks
            logger.exception(f"Orchestration of '{payload.task}' failed: {e}")
            return OrchestrationResult(
                success=False, data=None, source=None,
                latency_ms=self._elapsed_ms(started),
                error=ErrorKind.INTERNAL_ERROR.value,
                error_detail=str(e),
            )

        # fallback answers are not memoized so providers get another chance next time
        if outcome.from_provider and not options.no_cache:
            self.cache.put(key, outcome.data, ttl_ms=options.ttl_ms)

        return OrchestrationResult(
            success=True,
            data=outcome.data,
            source=outcome.source,
            latency_ms=self._elapsed_ms(started),
            attempts=outcome.attempts,
        )

    def _elapsed_ms(self, started: float) -> float:
        return round((self._monotonic() - started) * 1000, 3)

    def remaining_quota(self, provider_id: str) -> RemainingQuota:
        """Requests left today and this month for one provider.

        Raises:
            KeyError: If the provider is not configured
        """
        return self.tracker.remaining(provider_id)

    def _usable(self, provider: ProviderConfig) -> bool:
        if provider.needs_credential and not self.vault.has(provider.id):
            return False
        remaining = self.tracker.remaining(provider.id)
        return remaining.daily > 0 and remaining.monthly > 0

    def current_mode(self) -> str:
        """Tier of the first usable provider, or ``"offline"``.

        A provider is usable when it has a valid credential (mock providers
        need none) and quota left in both windows.
        """
        for provider in self.providers:
            if self._usable(provider):
                return provider.tier.value
        return OFFLINE_MODE

    def status(self) -> Dict[str, Any]:
        """Read-only snapshot for status displays."""
        providers = []
        for provider in self.providers:
            remaining = self.tracker.remaining(provider.id)
            usage = self.tracker.usage(provider.id)
            providers.append({
                "id": provider.id,
                "priority": provider.priority,
                "tier": provider.tier.value,
                "has_credential": (not provider.needs_credential) or self.vault.has(provider.id),
                "daily_used": usage.daily_count,
                "daily_limit": provider.daily_limit,
                "monthly_used": usage.monthly_count,
                "monthly_limit": provider.monthly_limit,
                "remaining_daily": remaining.daily,
                "remaining_monthly": remaining.monthly,
            })
        return {
            "mode": self.current_mode(),
            "providers": providers,
            "cache": self.cache.stats(),
        }

    def subscribe(self, listener: Callable[[str, Any], None]) -> Callable[[], None]:
        """Be told synchronously about usage and credential changes.

        Listeners receive ``("usage", UsageRecord)`` after each counted
        request and ``("credential", provider_id_or_None)`` after key
        changes. Returns an unsubscribe function.
        """
        return self._notifier.subscribe(listener)


__all__ = [
    "Orchestrator",
    "OrchestrationResult",
    "RequestOptions",
    "RequestPayload",
]
