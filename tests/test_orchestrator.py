"""
Unit tests for the orchestrator facade.

Tests caching, quota exhaustion, fallback and input validation end to end
with a fake transport.
"""

import os
import shutil
import tempfile
from datetime import datetime
from unittest.mock import Mock

import pytest
import yaml

from resilient_ai.config.loader import (
    OrchestratorSettings,
    ProviderConfig,
    ProviderTier,
    ResponseShape,
)
from resilient_ai.core.errors import ErrorKind
from resilient_ai.core.tasks import RequestPayload
from resilient_ai.sdk import Orchestrator, RequestOptions
from resilient_ai.sdk.transport import ProviderResponse
from resilient_ai.storage.repository import InMemoryKeyValueStore, SQLiteKeyValueStore

GEMINI_KEY = "AIza" + "x" * 35
RECIPE_TEXT = (
    'Here is your recipe:\n{"title": "Chicken Fried Rice", '
    '"instructions": ["Cook the rice", "Fry the chicken", "Combine"], "servings": 2}'
)
REQUIRED_RECIPE_FIELDS = (
    "id", "title", "description", "ingredients", "instructions",
    "ready_in_minutes", "servings", "difficulty", "tags", "nutrition",
)


def gemini(daily=10, monthly=100, tier=ProviderTier.FREE):
    return ProviderConfig(
        id="gemini",
        priority=1,
        daily_limit=daily,
        monthly_limit=monthly,
        min_interval_ms=0,
        endpoint="https://example.invalid/v1/",
        response_shape=ResponseShape.CHAT,
        tier=tier,
    )


class FakeMonotonic:
    def __init__(self):
        self.now = 50.0

    def __call__(self):
        return self.now


class TestOrchestrator:
    """Test Orchestrator.request and friends."""

    def setup_method(self):
        """Set up test environment."""
        self.store = InMemoryKeyValueStore()
        self.monotonic = FakeMonotonic()
        self.wall = datetime(2024, 6, 1, 9, 0, 0)
        self.transport = Mock(return_value=ProviderResponse(ResponseShape.CHAT, RECIPE_TEXT))

    def build(self, providers=None, with_key=True, settings=None):
        orchestrator = Orchestrator(
            providers if providers is not None else [gemini()],
            self.store,
            settings=settings or OrchestratorSettings(cache_ttl_ms=60000),
            transport=self.transport,
            clock=lambda: self.wall,
            sleep=lambda seconds: None,
            monotonic=self.monotonic,
        )
        if with_key:
            orchestrator.vault.put("gemini", GEMINI_KEY)
        return orchestrator

    def test_end_to_end_quota_exhaustion(self):
        orchestrator = self.build([gemini(daily=1)])

        first = orchestrator.request({"task": "recipe", "ingredients": ["chicken", "rice"]})
        assert first.success
        assert first.source == "provider:gemini"
        assert orchestrator.tracker.usage("gemini").daily_count == 1

        second = orchestrator.request({"task": "recipe", "ingredients": ["beef", "onion"]})
        assert second.success
        assert second.source == "local-fallback"
        assert second.error is None
        for field_name in REQUIRED_RECIPE_FIELDS:
            assert field_name in second.data
        assert second.data["title"]
        assert second.data["instructions"]
        assert self.transport.call_count == 1

    def test_cache_idempotence(self):
        orchestrator = self.build()
        payload = RequestPayload("recipe", {"ingredients": ["chicken", "rice"]})

        first = orchestrator.request(payload)
        second = orchestrator.request(payload)

        assert first.source == "provider:gemini"
        assert second.source == "cache"
        assert second.data == first.data
        assert self.transport.call_count == 1
        assert orchestrator.tracker.usage("gemini").daily_count == 1

    def test_equivalent_requests_share_cache_entry(self):
        orchestrator = self.build()
        orchestrator.request({"task": "recipe", "ingredients": ["Chicken", "rice"], "timestamp": 1})
        result = orchestrator.request({"task": "recipe", "ingredients": ["rice", " chicken "]})
        assert result.source == "cache"

    def test_code_differing_in_case_and_indentation_is_not_a_cache_hit(self):
        self.transport.return_value = ProviderResponse(
            ResponseShape.CHAT, '{"summary": "Looks fine", "issues": []}'
        )
        orchestrator = self.build()

        first = orchestrator.request({"task": "code_review", "code": "if x:\n    y = 1\n    z = 2"})
        second = orchestrator.request({"task": "code_review", "code": "if X:\n    y = 1\nz = 2"})

        assert first.source == "provider:gemini"
        assert second.source == "provider:gemini"
        assert self.transport.call_count == 2

    def test_identical_code_is_a_cache_hit(self):
        self.transport.return_value = ProviderResponse(
            ResponseShape.CHAT, '{"summary": "Looks fine", "issues": []}'
        )
        orchestrator = self.build()
        payload = {"task": "code_review", "code": "def f():\n    return 1\n", "language": "Python"}

        orchestrator.request(payload)
        result = orchestrator.request(dict(payload, language="python"))

        assert result.source == "cache"
        assert self.transport.call_count == 1

    def test_cache_expires(self):
        orchestrator = self.build()
        payload = {"task": "recipe", "ingredients": ["chicken"]}
        orchestrator.request(payload)
        self.monotonic.now += 61
        assert orchestrator.request(payload).source == "provider:gemini"
        assert self.transport.call_count == 2

    def test_per_request_ttl(self):
        orchestrator = self.build()
        payload = {"task": "recipe", "ingredients": ["chicken"]}
        orchestrator.request(payload, {"ttl_ms": 1000})
        self.monotonic.now += 2
        assert orchestrator.request(payload).source == "provider:gemini"

    def test_no_cache_bypasses_read_and_write(self):
        orchestrator = self.build()
        payload = {"task": "recipe", "ingredients": ["chicken"]}

        orchestrator.request(payload, RequestOptions(no_cache=True))
        result = orchestrator.request(payload)

        assert result.source == "provider:gemini"
        assert self.transport.call_count == 2

    def test_fallback_results_are_not_cached(self):
        orchestrator = self.build([gemini(daily=0)])
        payload = {"task": "palette", "keyword": "ocean"}

        first = orchestrator.request(payload)
        second = orchestrator.request(payload)

        assert first.source == second.source == "local-fallback"
        assert first.data["id"] != second.data["id"]
        assert len(orchestrator.cache) == 0

    def test_missing_key_falls_back(self):
        orchestrator = self.build(with_key=False)
        result = orchestrator.request({"task": "recipe", "ingredients": ["egg"]})
        assert result.source == "local-fallback"
        self.transport.assert_not_called()

    def test_provider_failure_falls_back(self):
        self.transport.return_value = ProviderResponse(ResponseShape.CHAT, '{"title": "Half')
        orchestrator = self.build()

        result = orchestrator.request({"task": "code_review", "code": "x = eval(input())"})

        assert result.success
        assert result.source == "local-fallback"
        assert result.attempts[0].outcome == ErrorKind.PROVIDER_SHAPE_ERROR.value
        assert orchestrator.tracker.usage("gemini").daily_count == 0

    @pytest.mark.parametrize("payload", [
        {"task": "recipe", "ingredients": []},
        {"task": "recipe"},
        {"task": "poetry", "topic": "sea"},
        {"ingredients": ["rice"]},
        "recipe please",
    ])
    def test_invalid_input(self, payload):
        orchestrator = self.build()

        result = orchestrator.request(payload)

        assert not result.success
        assert result.error == "invalid_input"
        assert result.source is None
        assert result.data is None
        self.transport.assert_not_called()
        assert orchestrator.cache.stats()["misses"] == 0

    def test_invalid_options(self):
        orchestrator = self.build()
        result = orchestrator.request(
            {"task": "recipe", "ingredients": ["rice"]}, {"ttl_ms": -5}
        )
        assert result.error == "invalid_input"

    def test_unknown_option(self):
        orchestrator = self.build()
        result = orchestrator.request(
            {"task": "recipe", "ingredients": ["rice"]}, {"refresh": True}
        )
        assert result.error == "invalid_input"

    def test_broken_fallback_reports_internal_error(self):
        orchestrator = self.build([gemini(daily=0)])
        orchestrator.fallback.synthesize = Mock(side_effect=RuntimeError("boom"))

        result = orchestrator.request({"task": "recipe", "ingredients": ["rice"]})

        assert not result.success
        assert result.error == "internal_error"

    def test_latency_measured(self):
        def slow_transport(*args, **kwargs):
            self.monotonic.now += 0.25
            return ProviderResponse(ResponseShape.CHAT, RECIPE_TEXT)

        self.transport = slow_transport
        orchestrator = self.build()
        result = orchestrator.request({"task": "recipe", "ingredients": ["rice"]})
        assert result.latency_ms == pytest.approx(250.0)

    def test_to_dict(self):
        orchestrator = self.build()
        result = orchestrator.request({"task": "recipe", "ingredients": ["rice"]}).to_dict()
        assert result["success"] is True
        assert result["source"] == "provider:gemini"
        assert result["attempts"][0]["outcome"] == "success"


class TestOrchestratorStatus:
    """Test mode and quota reporting."""

    def setup_method(self):
        self.store = InMemoryKeyValueStore()

    def build(self, providers):
        return Orchestrator(providers, self.store, transport=Mock())

    def test_offline_without_keys(self):
        assert self.build([gemini()]).current_mode() == "offline"

    def test_mode_follows_first_usable_provider(self):
        custom = ProviderConfig(
            id="mine", priority=0, daily_limit=5, monthly_limit=5, min_interval_ms=0,
            endpoint="https://mine.invalid", response_shape=ResponseShape.COMPLETION,
            tier=ProviderTier.CUSTOM,
        )
        orchestrator = self.build([gemini(), custom])
        orchestrator.vault.put("gemini", GEMINI_KEY)
        assert orchestrator.current_mode() == "free"

        orchestrator.vault.put("mine", "m" * 30)
        assert orchestrator.current_mode() == "custom"

    def test_exhausted_provider_is_not_usable(self):
        orchestrator = self.build([gemini(daily=0)])
        orchestrator.vault.put("gemini", GEMINI_KEY)
        assert orchestrator.current_mode() == "offline"

    def test_mock_provider_mode(self):
        demo = ProviderConfig(
            id="demo", priority=5, daily_limit=5, monthly_limit=5, min_interval_ms=0,
            endpoint="", response_shape=ResponseShape.MOCK, tier=ProviderTier.MOCK,
        )
        assert self.build([gemini(), demo]).current_mode() == "mock"

    def test_remaining_quota(self):
        orchestrator = self.build([gemini(daily=7, monthly=70)])
        remaining = orchestrator.remaining_quota("gemini")
        assert (remaining.daily, remaining.monthly) == (7, 70)
        with pytest.raises(KeyError):
            orchestrator.remaining_quota("nobody")

    def test_status_snapshot(self):
        orchestrator = self.build([gemini()])
        orchestrator.vault.put("gemini", GEMINI_KEY)
        status = orchestrator.status()
        assert status["mode"] == "free"
        assert status["providers"][0]["has_credential"] is True
        assert status["providers"][0]["remaining_daily"] == 10
        assert status["cache"]["entries"] == 0

    def test_subscribe_sees_usage_and_credentials(self):
        transport = Mock(return_value=ProviderResponse(ResponseShape.CHAT, RECIPE_TEXT))
        orchestrator = Orchestrator([gemini()], self.store, transport=transport)
        topics = []
        orchestrator.subscribe(lambda topic, payload: topics.append(topic))

        orchestrator.vault.put("gemini", GEMINI_KEY)
        orchestrator.request({"task": "recipe", "ingredients": ["rice"]})

        assert topics == ["credential", "usage"]


class TestOrchestratorFromConfig:
    """Test construction from YAML."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_from_config_uses_sqlite_store(self):
        db_path = os.path.join(self.temp_dir, "state.db")
        config_path = os.path.join(self.temp_dir, "providers.yaml")
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({
                "settings": {"db_path": db_path},
                "providers": [{
                    "id": "demo", "priority": 1, "daily_limit": 2, "monthly_limit": 10,
                    "min_interval_ms": 0, "response_shape": "mock",
                }],
            }, f)

        orchestrator = Orchestrator.from_config(config_path)
        result = orchestrator.request({"task": "palette", "keyword": "forest"})

        assert result.source == "provider:demo"
        assert all(c["contrast"] >= 4.5 for c in result.data["colors"])
        reopened = SQLiteKeyValueStore(db_path)
        assert reopened.get("usage:demo") is not None
