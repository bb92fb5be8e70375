#!/usr/bin/env python3
"""
Unit tests for the discovery engine
"""

import unittest
import sys
import os
import threading
import time
from unittest.mock import Mock

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cloud_iac_generator.config import DiscoveryEngineConfig
from cloud_iac_generator.discovery import DiscoveryEngine, ProviderConnector, UnifiedDiscoveryBackend
from cloud_iac_generator.errors import ConfigError, ConnectorError, DiscoveryTimeoutError, InvalidOptionsError
from cloud_iac_generator.models import CloudProvider, DiscoveryOptions, Filter, Resource


def make_resource(provider, resource_id, **tags):
    return Resource(id=resource_id, type=f"{provider.value}_thing", provider=provider,
                    region="r1", name=resource_id, tags=dict(tags))


class FakeConnector(ProviderConnector):
    """In-memory connector with scripted behavior"""

    def __init__(self, provider, resources=None, failures=0, delay=0.0, block=False,
                 credentials_error=None, tracker=None):
        self._provider = provider
        self.resources = resources if resources is not None else [make_resource(provider, f"{provider.value}-1")]
        self.failures = failures
        self.delay = delay
        self.block = block
        self.credentials_error = credentials_error
        self.tracker = tracker
        self.calls = 0
        self.received_options = None

    @property
    def provider(self):
        return self._provider

    def validate_credentials(self, cancel_event=None):
        if self.credentials_error:
            raise self.credentials_error

    def get_regions(self):
        return ["r1", "r2"]

    def get_resource_types(self):
        return [f"{self._provider.value}_thing"]

    def discover(self, options, cancel_event=None):
        self.calls += 1
        self.received_options = options
        if self.tracker:
            self.tracker.enter()
        try:
            if self.block:
                cancel_event.wait(5)
                raise ConnectorError("cancelled")
            if self.delay:
                time.sleep(self.delay)
            if self.calls <= self.failures:
                raise ConnectorError(f"API failure {self.calls}")
            return list(self.resources)
        finally:
            if self.tracker:
                self.tracker.leave()


class ConcurrencyTracker:
    """Records the highest number of connectors running at once"""

    def __init__(self):
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def leave(self):
        with self._lock:
            self.current -= 1


FOUR_PROVIDERS = [CloudProvider.AWS, CloudProvider.AZURE, CloudProvider.GCP, CloudProvider.KVM]


class TestDiscoveryEngineOptions(unittest.TestCase):
    """Test option validation and engine introspection"""

    def setUp(self):
        self.engine = DiscoveryEngine(DiscoveryEngineConfig(retry_delay=0))
        self.engine.register_connector(FakeConnector(CloudProvider.AWS))

    def test_no_providers(self):
        with self.assertRaises(InvalidOptionsError):
            self.engine.discover(DiscoveryOptions())

    def test_provider_without_connector(self):
        with self.assertRaises(InvalidOptionsError) as cm:
            self.engine.discover(DiscoveryOptions(providers=[CloudProvider.GCP]))
        self.assertIn("gcp", str(cm.exception))

    def test_unknown_provider_name(self):
        with self.assertRaises(InvalidOptionsError):
            self.engine.discover(DiscoveryOptions(providers=["oracle"]))

    def test_unknown_filter_operator_rejected_up_front(self):
        options = DiscoveryOptions(providers=[CloudProvider.AWS], filters=[Filter("name", "like", "x")])
        with self.assertRaises(InvalidOptionsError) as cm:
            self.engine.discover(options)
        self.assertIn("like", str(cm.exception))

    def test_invalid_concurrency_and_timeout(self):
        with self.assertRaises(InvalidOptionsError):
            self.engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS], max_concurrency=0))
        with self.assertRaises(InvalidOptionsError):
            self.engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS], timeout=0))

    def test_invalid_engine_config(self):
        with self.assertRaises(ConfigError):
            DiscoveryEngineConfig(max_concurrency=0)
        with self.assertRaises(ConfigError):
            DiscoveryEngineConfig(retry_attempts=0)

    def test_introspection(self):
        self.assertEqual(self.engine.list_providers(), [CloudProvider.AWS])
        self.assertEqual(self.engine.get_provider_regions("aws"), ["r1", "r2"])
        self.assertEqual(self.engine.get_resource_types(CloudProvider.AWS), ["aws_thing"])
        with self.assertRaises(InvalidOptionsError):
            self.engine.get_provider_regions(CloudProvider.GCP)

    def test_validate_credentials_names_provider(self):
        self.engine.register_connector(FakeConnector(CloudProvider.GCP, credentials_error=RuntimeError("expired")))
        with self.assertRaises(ConnectorError) as cm:
            self.engine.validate_credentials([CloudProvider.AWS, CloudProvider.GCP])
        self.assertIn("gcp", str(cm.exception))
        self.assertIn("expired", str(cm.exception))


class TestDiscoveryEngineRun(unittest.TestCase):
    """Test fan-out, retries, timeouts and result assembly"""

    def _engine(self, connectors, **config):
        config.setdefault('retry_delay', 0)
        engine = DiscoveryEngine(DiscoveryEngineConfig(**config))
        for connector in connectors:
            engine.register_connector(connector)
        return engine

    def test_aggregates_all_providers(self):
        engine = self._engine([FakeConnector(p) for p in FOUR_PROVIDERS])
        result = engine.discover(DiscoveryOptions(providers=FOUR_PROVIDERS))

        self.assertEqual(len(result.resources), 4)
        self.assertEqual(result.errors, [])
        self.assertEqual(result.metadata.resource_count, 4)
        self.assertEqual(result.metadata.provider_stats, {"aws": 1, "azure": 1, "gcp": 1, "kvm": 1})
        self.assertGreaterEqual(result.metadata.duration, 0)

    def test_concurrency_bound(self):
        tracker = ConcurrencyTracker()
        engine = self._engine([FakeConnector(p, delay=0.1, tracker=tracker) for p in FOUR_PROVIDERS])
        engine.discover(DiscoveryOptions(providers=FOUR_PROVIDERS, max_concurrency=2))
        self.assertLessEqual(tracker.peak, 2)

    def test_max_concurrency_one_serializes(self):
        tracker = ConcurrencyTracker()
        providers = FOUR_PROVIDERS[:3]
        engine = self._engine([FakeConnector(p, delay=0.05, tracker=tracker) for p in providers])

        started = time.monotonic()
        result = engine.discover(DiscoveryOptions(providers=providers, max_concurrency=1))

        self.assertEqual(tracker.peak, 1)
        self.assertGreaterEqual(time.monotonic() - started, 0.15)
        self.assertEqual(len(result.resources), 3)

    def test_retries_then_records_error(self):
        failing = FakeConnector(CloudProvider.AWS, failures=10)
        engine = self._engine([failing], retry_attempts=3)
        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS]))

        self.assertEqual(failing.calls, 3)
        self.assertEqual(result.resources, [])
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].provider, CloudProvider.AWS)
        self.assertIn("after 3 attempts", result.errors[0].message)
        self.assertFalse(result.errors[0].timed_out)

    def test_retry_recovers(self):
        flaky = FakeConnector(CloudProvider.AWS, failures=2)
        engine = self._engine([flaky], retry_attempts=3)
        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS]))

        self.assertEqual(flaky.calls, 3)
        self.assertEqual(len(result.resources), 1)
        self.assertEqual(result.errors, [])

    def test_failing_provider_does_not_affect_siblings(self):
        engine = self._engine([
            FakeConnector(CloudProvider.AWS),
            FakeConnector(CloudProvider.AZURE, failures=10),
            FakeConnector(CloudProvider.GCP, credentials_error=RuntimeError("no token")),
        ])
        result = engine.discover(DiscoveryOptions(
            providers=[CloudProvider.AWS, CloudProvider.AZURE, CloudProvider.GCP]))

        self.assertEqual([r.id for r in result.resources], ["aws-1"])
        by_provider = {e.provider: e for e in result.errors}
        self.assertEqual(set(by_provider), {CloudProvider.AZURE, CloudProvider.GCP})
        self.assertIn("Credential validation failed", by_provider[CloudProvider.GCP].message)

    def test_credential_failure_skips_discover(self):
        connector = FakeConnector(CloudProvider.AWS, credentials_error=RuntimeError("denied"))
        engine = self._engine([connector])
        engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS]))
        self.assertEqual(connector.calls, 0)

    def test_timeout_returns_partial_results(self):
        engine = self._engine([
            FakeConnector(CloudProvider.AWS),
            FakeConnector(CloudProvider.AZURE, block=True),
        ], retry_attempts=1)
        result = engine.discover(DiscoveryOptions(
            providers=[CloudProvider.AWS, CloudProvider.AZURE], timeout=0.5))

        self.assertEqual([r.id for r in result.resources], ["aws-1"])
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].provider, CloudProvider.AZURE)
        self.assertTrue(result.errors[0].timed_out)

    def test_timeout_before_any_result_raises(self):
        engine = self._engine([FakeConnector(CloudProvider.AWS, block=True)], retry_attempts=1)
        with self.assertRaises(DiscoveryTimeoutError) as cm:
            engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS], timeout=0.3))
        self.assertIsNotNone(cm.exception.result)
        self.assertTrue(cm.exception.result.errors[0].timed_out)

    def test_filters_and_tag_selection(self):
        aws = FakeConnector(CloudProvider.AWS, resources=[
            make_resource(CloudProvider.AWS, "keep", env="prod", team="a"),
            make_resource(CloudProvider.AWS, "wrong-env", env="dev", team="a"),
            make_resource(CloudProvider.AWS, "excluded", env="prod", team="a", scratch="1"),
            make_resource(CloudProvider.AWS, "untagged", env="prod"),
        ])
        engine = self._engine([aws])
        filters = [Filter("tags.env", "eq", "prod")]
        result = engine.discover(DiscoveryOptions(
            providers=[CloudProvider.AWS], filters=filters,
            include_tags=["team"], exclude_tags=["scratch"]))

        self.assertEqual([r.id for r in result.resources], ["keep"])
        self.assertEqual(result.metadata.filters, filters)

    def test_connector_receives_region_and_type_scope(self):
        connector = FakeConnector(CloudProvider.AWS)
        engine = self._engine([connector])
        engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS], regions=["us-east-1"],
                                         resource_types=["aws_vpc"]))
        self.assertEqual(connector.received_options.regions, ["us-east-1"])
        self.assertEqual(connector.received_options.resource_types, ["aws_vpc"])

    def test_duplicate_providers_discovered_once(self):
        connector = FakeConnector(CloudProvider.AWS)
        engine = self._engine([connector])
        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS, "aws"]))
        self.assertEqual(connector.calls, 1)
        self.assertEqual(len(result.resources), 1)


class TestUnifiedBackend(unittest.TestCase):
    """Test the unified multi-provider discovery path"""

    def _backend(self, resources=None, error=None):
        backend = Mock(spec=UnifiedDiscoveryBackend)
        if error:
            backend.discover_resources.side_effect = error
        else:
            backend.discover_resources.return_value = resources or []
        return backend

    def test_used_for_multiple_providers(self):
        backend = self._backend([make_resource(CloudProvider.AWS, "a"), make_resource(CloudProvider.GCP, "g")])
        engine = DiscoveryEngine(DiscoveryEngineConfig(use_unified_backend=True), unified_backend=backend)

        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS, CloudProvider.GCP]))

        self.assertEqual(len(result.resources), 2)
        backend.connect.assert_called_once()
        backend.disconnect.assert_called_once()

    def test_failure_is_recorded_without_provider(self):
        backend = self._backend(error=RuntimeError("backend down"))
        engine = DiscoveryEngine(DiscoveryEngineConfig(use_unified_backend=True), unified_backend=backend)

        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS, CloudProvider.GCP]))

        self.assertEqual(result.resources, [])
        self.assertIsNone(result.errors[0].provider)
        self.assertIn("backend down", result.errors[0].message)
        backend.disconnect.assert_called_once()

    def test_single_provider_uses_connector(self):
        backend = self._backend()
        engine = DiscoveryEngine(DiscoveryEngineConfig(use_unified_backend=True), unified_backend=backend)
        engine.register_connector(FakeConnector(CloudProvider.AWS))

        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS]))

        self.assertEqual(len(result.resources), 1)
        backend.discover_resources.assert_not_called()

    def test_single_provider_without_connector_is_recorded(self):
        backend = self._backend()
        engine = DiscoveryEngine(DiscoveryEngineConfig(use_unified_backend=True), unified_backend=backend)

        result = engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS]))

        self.assertEqual(result.resources, [])
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].provider, CloudProvider.AWS)
        self.assertIn("No connector available for provider: aws", result.errors[0].message)
        backend.discover_resources.assert_not_called()

    def test_disabled_backend_is_ignored(self):
        backend = self._backend()
        engine = DiscoveryEngine(DiscoveryEngineConfig(use_unified_backend=False), unified_backend=backend)
        with self.assertRaises(InvalidOptionsError):
            engine.discover(DiscoveryOptions(providers=[CloudProvider.AWS, CloudProvider.GCP]))


if __name__ == '__main__':
    unittest.main()
