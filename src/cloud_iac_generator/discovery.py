#!/usr/bin/env python3
"""
Discovery Engine

This module fans discovery out across registered provider connectors. Each
requested provider gets one task on a thread pool sized by max_concurrency;
each task validates the provider's credentials, calls the connector and retries
failures with a fixed delay. Results are collected once every task has finished
(or the deadline passes), filters are applied and run metadata is computed.

A failing provider never blocks its siblings: its failure is recorded as a
DiscoveryError on the result. Only invalid options and a deadline that expires
before any provider returns are raised.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .config import DiscoveryEngineConfig
from .errors import ConnectorError, DiscoveryTimeoutError, InvalidOptionsError
from .filters import FilterEvaluator, apply_tag_selection, unknown_operators
from .models import (
    CloudProvider,
    DiscoveryError,
    DiscoveryMetadata,
    DiscoveryOptions,
    DiscoveryResult,
    ProviderDiscoveryOptions,
    Resource,
    parse_provider,
)

logger = logging.getLogger(__name__)


class ProviderConnector(ABC):
    """Discovery for one cloud provider"""

    @property
    @abstractmethod
    def provider(self) -> CloudProvider:
        """The provider this connector serves"""

    @abstractmethod
    def validate_credentials(self, cancel_event: Optional[threading.Event] = None):
        """Raise ConnectorError if the configured credentials are unusable"""

    @abstractmethod
    def get_regions(self) -> List[str]:
        """Regions the provider exposes"""

    @abstractmethod
    def get_resource_types(self) -> List[str]:
        """Resource types this connector can discover"""

    @abstractmethod
    def discover(self, options: ProviderDiscoveryOptions,
                 cancel_event: Optional[threading.Event] = None) -> List[Resource]:
        """
        Discover resources for the given regions and types

        Implementations should check cancel_event between API calls and stop
        early when it is set.
        """


class UnifiedDiscoveryBackend(ABC):
    """A single backend able to query several providers at once"""

    @abstractmethod
    def connect(self):
        pass

    @abstractmethod
    def disconnect(self):
        pass

    @abstractmethod
    def discover_resources(self, providers: List[CloudProvider], resource_types: List[str],
                           cancel_event: Optional[threading.Event] = None) -> List[Resource]:
        pass


@dataclass
class _ProviderOutcome:
    provider: CloudProvider
    resources: List[Resource]
    error: Optional[DiscoveryError] = None


class DiscoveryEngine:
    """
    Multi-provider resource discovery engine

    Connectors must be registered before discover() is called; registration
    while a discovery run is in flight is rejected.
    """

    def __init__(self,
                 config: Optional[DiscoveryEngineConfig] = None,
                 unified_backend: Optional[UnifiedDiscoveryBackend] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config or DiscoveryEngineConfig()
        self.unified_backend = unified_backend
        self.logger = logger or logging.getLogger(__name__)
        self.filter_evaluator = FilterEvaluator(self.logger)

        self._connectors: Dict[CloudProvider, ProviderConnector] = {}
        self._lock = threading.Lock()
        self._active_runs = 0

    def register_connector(self, connector: ProviderConnector):
        with self._lock:
            if self._active_runs:
                raise RuntimeError("Cannot register a connector while discovery is running")
            self._connectors[connector.provider] = connector
        self.logger.info(f"Registered connector for provider: {connector.provider.value}")

    def list_providers(self) -> List[CloudProvider]:
        return sorted(self._connectors, key=lambda p: p.value)

    def _connector_for(self, provider) -> ProviderConnector:
        provider = parse_provider(provider)
        connector = self._connectors.get(provider)
        if connector is None:
            raise InvalidOptionsError(f"No connector registered for provider: {provider.value}")
        return connector

    def get_provider_regions(self, provider) -> List[str]:
        return self._connector_for(provider).get_regions()

    def get_resource_types(self, provider) -> List[str]:
        return self._connector_for(provider).get_resource_types()

    def validate_credentials(self, providers: List[CloudProvider]):
        """Validate credentials for each provider, raising on the first failure"""
        for provider in providers:
            connector = self._connector_for(provider)
            try:
                connector.validate_credentials()
            except Exception as e:
                raise ConnectorError(
                    f"Credential validation failed for {connector.provider.value}: {str(e)}",
                    provider=connector.provider.value
                ) from e

    def _unified_enabled(self) -> bool:
        return self.unified_backend is not None and self.config.use_unified_backend

    def _validate_options(self, options: DiscoveryOptions) -> List[CloudProvider]:
        if not options.providers:
            raise InvalidOptionsError("At least one provider must be specified")

        try:
            providers = [parse_provider(p) for p in options.providers]
        except ValueError as e:
            raise InvalidOptionsError(str(e)) from e

        if not self._unified_enabled():
            for provider in providers:
                if provider not in self._connectors:
                    raise InvalidOptionsError(f"No connector registered for provider: {provider.value}")

        bad = unknown_operators(options.filters)
        if bad:
            raise InvalidOptionsError(f"Unknown filter operator(s): {', '.join(bad)}")

        if options.max_concurrency is not None and options.max_concurrency < 1:
            raise InvalidOptionsError(f"max_concurrency must be at least 1, got {options.max_concurrency}")

        if options.timeout is not None and options.timeout <= 0:
            raise InvalidOptionsError(f"timeout must be positive, got {options.timeout}")

        # de-duplicate, keeping request order
        return list(dict.fromkeys(providers))

    def discover(self, options: DiscoveryOptions) -> DiscoveryResult:
        """
        Discover resources across the requested providers

        Returns:
            DiscoveryResult with the filtered resources, per-provider errors and metadata

        Raises:
            InvalidOptionsError: options rejected before any work started
            DiscoveryTimeoutError: the deadline passed before any provider returned
        """
        providers = self._validate_options(options)
        start_time = datetime.now(timezone.utc)
        started = time.monotonic()

        timeout = options.timeout if options.timeout is not None else self.config.timeout
        max_concurrency = options.max_concurrency or self.config.max_concurrency

        self.logger.info(f"Starting discovery for providers: {', '.join(p.value for p in providers)}")

        with self._lock:
            self._active_runs += 1
        try:
            if self._unified_enabled() and len(providers) > 1:
                resources, errors, timed_out = self._discover_unified(providers, options, timeout)
            else:
                resources, errors, timed_out = self._discover_concurrent(
                    providers, options, timeout, max_concurrency)
        finally:
            with self._lock:
                self._active_runs -= 1

        resources = self.filter_evaluator.apply(resources, options.filters)
        resources = apply_tag_selection(resources, options.include_tags, options.exclude_tags)

        result = self._finalize(resources, errors, options, start_time, started)

        if timed_out and not resources and all(e.timed_out for e in errors):
            raise DiscoveryTimeoutError(
                f"Discovery timed out after {timeout}s before any provider returned",
                result=result
            )

        self.logger.info(f"Discovery completed: {result.metadata.resource_count} resources, "
                         f"{result.metadata.error_count} errors in {result.metadata.duration:.2f}s")
        return result

    def _discover_concurrent(self, providers: List[CloudProvider], options: DiscoveryOptions,
                             timeout: float, max_concurrency: int
                             ) -> Tuple[List[Resource], List[DiscoveryError], bool]:
        provider_options = ProviderDiscoveryOptions(
            regions=list(options.regions),
            resource_types=list(options.resource_types),
            filters=list(options.filters),
        )
        cancel_event = threading.Event()
        resources: List[Resource] = []
        errors: List[DiscoveryError] = []
        collected = set()
        timed_out = False

        workers = min(max_concurrency, len(providers))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="discovery")
        try:
            futures = {
                executor.submit(self._discover_provider, provider, provider_options, cancel_event): provider
                for provider in providers
            }

            def collect(future):
                outcome = future.result()
                collected.add(outcome.provider)
                resources.extend(outcome.resources)
                if outcome.error:
                    errors.append(outcome.error)

            try:
                for future in as_completed(futures, timeout=timeout):
                    collect(future)
            except FuturesTimeoutError:
                timed_out = True
                cancel_event.set()
                self.logger.warning(f"Discovery deadline of {timeout}s exceeded, cancelling in-flight providers")
                for future, provider in futures.items():
                    if provider in collected:
                        continue
                    if future.done() and not future.cancelled():
                        collect(future)
                        continue
                    future.cancel()
                    errors.append(DiscoveryError(
                        provider=provider,
                        message=f"Discovery timed out after {timeout}s",
                        timed_out=True
                    ))
        finally:
            executor.shutdown(wait=not timed_out, cancel_futures=True)

        return resources, errors, timed_out

    def _discover_provider(self, provider: CloudProvider, options: ProviderDiscoveryOptions,
                           cancel_event: threading.Event) -> _ProviderOutcome:
        connector = self._connectors.get(provider)
        if connector is None:
            self.logger.error(f"No connector available for provider: {provider.value}")
            return _ProviderOutcome(provider, [], DiscoveryError(
                provider=provider,
                message=f"No connector available for provider: {provider.value}"
            ))
        self.logger.debug(f"Discovering provider {provider.value}")

        try:
            connector.validate_credentials(cancel_event)
        except Exception as e:
            self.logger.error(f"Credential validation failed for {provider.value}: {str(e)}")
            return _ProviderOutcome(provider, [], DiscoveryError(
                provider=provider,
                message=f"Credential validation failed: {str(e)}",
                cause=e
            ))

        attempts = self.config.retry_attempts
        last_error: Optional[Exception] = None
        made = 0
        for attempt in range(attempts):
            if cancel_event.is_set():
                break
            made += 1
            try:
                found = list(connector.discover(options, cancel_event))
                self.logger.info(f"Discovered {len(found)} resources from {provider.value}")
                return _ProviderOutcome(provider, found)
            except Exception as e:
                last_error = e
                self.logger.warning(f"Discovery attempt {attempt + 1}/{attempts} failed for "
                                    f"{provider.value}: {str(e)}")
                if attempt < attempts - 1:
                    # wait() returns True as soon as the run is cancelled
                    if cancel_event.wait(self.config.retry_delay):
                        break

        if last_error is None:
            message = "Discovery cancelled"
        else:
            message = f"Discovery failed after {made} attempts: {str(last_error)}"
        self.logger.error(f"{provider.value}: {message}")
        return _ProviderOutcome(provider, [], DiscoveryError(
            provider=provider,
            message=message,
            timed_out=cancel_event.is_set(),
            cause=last_error
        ))

    def _discover_unified(self, providers: List[CloudProvider], options: DiscoveryOptions,
                          timeout: float) -> Tuple[List[Resource], List[DiscoveryError], bool]:
        self.logger.info("Using unified discovery backend")
        cancel_event = threading.Event()
        backend = self.unified_backend

        def run() -> List[Resource]:
            backend.connect()
            try:
                return list(backend.discover_resources(providers, list(options.resource_types), cancel_event))
            finally:
                try:
                    backend.disconnect()
                except Exception as e:
                    self.logger.warning(f"Failed to disconnect unified backend: {str(e)}")

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="unified-discovery")
        future = executor.submit(run)
        try:
            return future.result(timeout=timeout), [], False
        except FuturesTimeoutError:
            cancel_event.set()
            return [], [DiscoveryError(
                provider=None,
                message=f"Unified discovery timed out after {timeout}s",
                timed_out=True
            )], True
        except Exception as e:
            self.logger.error(f"Unified discovery failed: {str(e)}")
            return [], [DiscoveryError(
                provider=None,
                message=f"Unified discovery failed: {str(e)}",
                cause=e
            )], False
        finally:
            executor.shutdown(wait=False)

    def _finalize(self, resources: List[Resource], errors: List[DiscoveryError],
                  options: DiscoveryOptions, start_time: datetime, started: float) -> DiscoveryResult:
        provider_stats: Dict[str, int] = {}
        for resource in resources:
            provider_stats[resource.provider.value] = provider_stats.get(resource.provider.value, 0) + 1

        metadata = DiscoveryMetadata(
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            duration=time.monotonic() - started,
            resource_count=len(resources),
            provider_stats=provider_stats,
            error_count=len(errors),
            filters=list(options.filters),
        )
        return DiscoveryResult(resources=list(resources), errors=list(errors), metadata=metadata)
