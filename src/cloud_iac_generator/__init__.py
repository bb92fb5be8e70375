"""
Cloud IaC Generator

Discovers infrastructure resources from cloud providers and generates
Terraform configurations that describe them.
"""

__version__ = "1.0.0"

from .models import CloudProvider, Resource, Filter, DiscoveryOptions, DiscoveryResult
from .discovery import DiscoveryEngine, ProviderConnector, UnifiedDiscoveryBackend
from .mapping import ResourceMapper, MappedResource
from .generation import GenerationEngine, GenerationOptions, GenerationResult
from .orchestrator import Orchestrator

__all__ = [
    "CloudProvider",
    "Resource",
    "Filter",
    "DiscoveryOptions",
    "DiscoveryResult",
    "DiscoveryEngine",
    "ProviderConnector",
    "UnifiedDiscoveryBackend",
    "ResourceMapper",
    "MappedResource",
    "GenerationEngine",
    "GenerationOptions",
    "GenerationResult",
    "Orchestrator"
]
