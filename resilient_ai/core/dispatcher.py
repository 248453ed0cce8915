"""
Provider dispatch loop.

Tries configured providers one at a time in priority order. A provider is
skipped when it has no credential, when its quota is exhausted, or when its
minimum interval would make the caller wait longer than the configured
ceiling. A failed attempt is recorded and the loop moves on; the same
provider is never retried within one call. When nothing succeeds, the local
fallback engine answers.

Providers are never called in parallel: quota is charged to exactly the
provider that produced the answer.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from .credentials import CredentialVault
from .errors import ErrorKind, ProviderError, ProviderShapeError
from .extraction import extract_json_object
from .fallback import LocalFallbackEngine
from .quota import QuotaTracker
from .tasks import RequestPayload, TaskSpec, get_task
from ..config.loader import ProviderConfig

LOCAL_FALLBACK_SOURCE = "local-fallback"


def provider_source(provider_id: str) -> str:
    return f"provider:{provider_id}"


@dataclass(frozen=True)
class AttemptRecord:
    """What happened to one provider during one dispatch."""
    provider_id: str
    outcome: str  # "success" or an ErrorKind value
    detail: str = ""
    latency_ms: float = 0.0


@dataclass
class DispatchOutcome:
    """Result of the dispatch loop, before caching."""
    data: Dict[str, Any]
    source: str
    attempts: List[AttemptRecord] = field(default_factory=list)

    @property
    def from_provider(self) -> bool:
        return self.source != LOCAL_FALLBACK_SOURCE


class ProviderDispatcher:
    """Sequential attempt loop over providers with quota gating.

    The transport is any callable with the signature of
    :class:`resilient_ai.sdk.transport.ProviderTransport`; tests pass fakes.
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        vault: CredentialVault,
        tracker: QuotaTracker,
        transport: Callable[..., Any],
        fallback: Optional[LocalFallbackEngine] = None,
        request_timeout_ms: int = 12000,
        max_wait_ms: int = 1500,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._providers = sorted(providers, key=lambda p: p.priority)
        self._vault = vault
        self._tracker = tracker
        self._transport = transport
        self._fallback = fallback or LocalFallbackEngine()
        self._request_timeout_s = request_timeout_ms / 1000.0
        self._max_wait_ms = max_wait_ms
        self._sleep = sleep
        self._monotonic = monotonic

    def dispatch(self, payload: RequestPayload, deadline: Optional[float] = None) -> DispatchOutcome:
        """Answer a validated payload from the first provider that succeeds.

        Args:
            payload: Validated request
            deadline: ``monotonic()`` value after which no further provider
                is tried

        Returns:
            DispatchOutcome; falls back locally instead of raising
        """
        task_spec = get_task(payload.task)
        messages = task_spec.build_messages(payload.params)
        attempts: List[AttemptRecord] = []

        for provider in self._providers:
            remaining_s = None
            if deadline is not None:
                remaining_s = deadline - self._monotonic()
                if remaining_s <= 0:
                    attempts.append(self._skip(provider, "orchestration deadline reached"))
                    continue

            api_key = None
            if provider.needs_credential:
                api_key = self._vault.get(provider.id)
                if api_key is None:
                    attempts.append(self._skip(provider, "no credential"))
                    continue

            # reserves a slot; every path below either commits or releases it
            decision = self._tracker.acquire(provider.id)
            if not decision.allowed:
                attempts.append(self._skip(provider, decision.reason))
                continue
            if decision.wait_ms > 0:
                if decision.wait_ms > self._max_wait_ms or (
                        remaining_s is not None and decision.wait_ms / 1000.0 >= remaining_s):
                    self._tracker.release(provider.id)
                    attempts.append(self._skip(provider, f"throttled for {decision.wait_ms}ms"))
                    continue
                self._sleep(decision.wait_ms / 1000.0)
                if remaining_s is not None:
                    remaining_s -= decision.wait_ms / 1000.0

            timeout_s = (provider.timeout_ms / 1000.0) if provider.timeout_ms else self._request_timeout_s
            if remaining_s is not None:
                timeout_s = min(timeout_s, remaining_s)

            started = self._monotonic()
            try:
                response = self._transport(
                    provider, api_key, messages, timeout_s,
                    task=payload.task, params=payload.params,
                )
                data = self._parse(provider, task_spec, response.text, payload)
            except ProviderError as e:
                self._tracker.release(provider.id)
                elapsed = (self._monotonic() - started) * 1000
                logger.warning(f"Provider '{provider.id}' failed ({e.kind.value}): {e}")
                attempts.append(AttemptRecord(provider.id, e.kind.value, str(e), elapsed))
                continue
            except Exception as e:
                # unclassified client errors still only cost this provider
                self._tracker.release(provider.id)
                elapsed = (self._monotonic() - started) * 1000
                logger.exception(f"Provider '{provider.id}' raised unexpectedly: {e}")
                attempts.append(AttemptRecord(
                    provider.id, ErrorKind.PROVIDER_TRANSPORT_ERROR.value,
                    f"{type(e).__name__}: {e}", elapsed,
                ))
                continue

            elapsed = (self._monotonic() - started) * 1000
            self._tracker.commit(provider.id)
            attempts.append(AttemptRecord(provider.id, "success", "", elapsed))
            logger.info(f"Provider '{provider.id}' answered '{payload.task}' in {elapsed:.0f}ms")
            return DispatchOutcome(data=data, source=provider_source(provider.id), attempts=attempts)

        logger.warning(
            f"No provider could answer '{payload.task}' "
            f"({len(attempts)} tried or skipped), using local fallback"
        )
        data = self._fallback.synthesize(payload)
        return DispatchOutcome(data=data, source=LOCAL_FALLBACK_SOURCE, attempts=attempts)

    def _skip(self, provider: ProviderConfig, reason: str) -> AttemptRecord:
        logger.debug(f"Skipping provider '{provider.id}': {reason}")
        return AttemptRecord(provider.id, ErrorKind.PROVIDER_UNAVAILABLE.value, reason)

    def _parse(self, provider: ProviderConfig, task_spec: TaskSpec, text: str,
               payload: RequestPayload) -> Dict[str, Any]:
        """Extract and repair the JSON answer.

        Raises:
            ProviderShapeError: If no usable object is found
        """
        parsed = extract_json_object(text)
        if parsed is None:
            raise ProviderShapeError(provider.id, "no balanced JSON object in response")
        try:
            data = task_spec.repair_response(parsed, payload.params)
        except ValueError as e:
            raise ProviderShapeError(provider.id, str(e)) from None
        data["id"] = f"{provider.id}-{payload.fingerprint()[:12]}"
        return data
