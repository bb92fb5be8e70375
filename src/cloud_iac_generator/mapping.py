#!/usr/bin/env python3
"""
Resource Mapper Contract

A mapper turns one discovered Resource into a MappedResource: the target
resource type, a sanitized resource name, its configuration, the references it
depends on, and the variables and outputs it declares.

Mappers are built from a registry of small per-type strategies rather than one
large dispatch; the supported type list is read off the registry.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import MappingError, UnsupportedResourceTypeError
from .models import CloudProvider, Resource

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r'^[a-z_][a-z0-9_]*$')
_INVALID_CHARS = re.compile(r'[^a-zA-Z0-9_]')


@dataclass(frozen=True)
class Variable:
    """An input variable declared by a mapped resource"""
    type: str = "string"
    description: str = ""
    default: Any = None
    required: bool = False
    sensitive: bool = False


@dataclass(frozen=True)
class Output:
    """An output value declared by a mapped resource"""
    value: str
    description: str = ""
    sensitive: bool = False


@dataclass(frozen=True)
class ProviderConfig:
    """Provider block and required_providers entry for one provider/region"""
    name: str
    source: str
    version: str = ""
    region: str = ""
    alias: str = ""
    configuration: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MappedResource:
    """A Resource translated into a target IaC resource"""
    original_resource: Resource
    resource_type: str
    resource_name: str
    configuration: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    variables: Dict[str, Variable] = field(default_factory=dict)
    outputs: Dict[str, Output] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.resource_name}"

    @property
    def provider(self) -> CloudProvider:
        return self.original_resource.provider


def clean_identifier(value: str) -> str:
    """
    Reduce a string to a Terraform-safe identifier

    Invalid characters become underscores, leading/trailing underscores are
    trimmed, a leading digit gets a ``resource_`` prefix and the result is
    lower-cased. May return an empty string.
    """
    cleaned = _INVALID_CHARS.sub('_', value or '').strip('_')
    if cleaned and not cleaned[0].isalpha():
        cleaned = f"resource_{cleaned}"
    return cleaned.lower()


def sanitize_name(name: str, resource_id: str, resource_type: str) -> str:
    """Deterministic identifier for a resource from its name, falling back to its id"""
    cleaned = clean_identifier(name or resource_id)
    if cleaned:
        return cleaned

    short_type = resource_type.split('_', 1)[1] if '_' in resource_type else resource_type
    return (clean_identifier(f"{short_type}_{resource_id[-8:]}")
            or clean_identifier(short_type)
            or "resource")


def is_valid_identifier(name: str) -> bool:
    return bool(IDENTIFIER_PATTERN.match(name or ''))


class ResourceMapper(ABC):
    """Per-provider mapping contract"""

    @property
    @abstractmethod
    def provider(self) -> CloudProvider:
        pass

    @abstractmethod
    def get_supported_types(self) -> List[str]:
        pass

    @abstractmethod
    def map_resource(self, resource: Resource,
                     resources: Optional[Sequence[Resource]] = None) -> MappedResource:
        """
        Map one resource

        Args:
            resource: The resource to map
            resources: The full batch, used to resolve references to other resources

        Raises:
            UnsupportedResourceTypeError: no strategy for resource.type
            MappingError: the strategy could not map the resource
        """

    @abstractmethod
    def get_provider_config(self, resources: Sequence[Resource]) -> ProviderConfig:
        pass

    @abstractmethod
    def get_dependencies(self, resource: Resource, all_resources: Sequence[Resource]) -> List[str]:
        pass

    @abstractmethod
    def validate_mapping(self, original: Resource, mapped: MappedResource):
        """Raise MappingError if the mapped resource is inconsistent with the original"""


class MappingContext:
    """Batch view handed to mapping strategies for reference resolution"""

    def __init__(self, mapper: 'RegistryMapper', resources: Optional[Sequence[Resource]] = None):
        self.mapper = mapper
        self._by_id: Dict[str, Resource] = {}
        for resource in resources or []:
            if resource.provider == mapper.provider:
                self._by_id.setdefault(resource.id, resource)
        self._names = self._unique_names()

    def _unique_names(self) -> Dict[str, str]:
        """
        Resource id -> generated name, unique per target type within the batch

        Resources whose names sanitize to the same identifier all get their
        sanitized id appended, so the outcome does not depend on batch order.
        """
        claimed: Dict[Tuple[str, str], List[Resource]] = {}
        for resource in self._by_id.values():
            if resource.type not in self.mapper.strategies:
                continue
            key = (self.mapper.target_type(resource.type), self.mapper.resource_name(resource))
            claimed.setdefault(key, []).append(resource)

        names = {}
        for (_, base), members in claimed.items():
            for resource in members:
                if len(members) == 1:
                    names[resource.id] = base
                else:
                    names[resource.id] = clean_identifier(f"{base}_{resource.id}") or base
        return names

    def lookup(self, resource_id: str) -> Optional[Resource]:
        return self._by_id.get(resource_id)

    def resource_name(self, resource: Resource) -> str:
        return self._names.get(resource.id) or self.mapper.resource_name(resource)

    def reference(self, resource_id: str, target_type: str) -> str:
        """
        ``<type>.<name>`` address for a referenced resource

        Uses the referenced resource's own generated name when it is in the
        batch, otherwise the sanitized raw id.
        """
        target = self._by_id.get(resource_id)
        if target is not None and target.type in self.mapper.strategies:
            return f"{self.mapper.target_type(target.type)}.{self.resource_name(target)}"
        return f"{target_type}.{clean_identifier(resource_id) or 'unknown'}"

    def interpolate(self, resource_id: str, target_type: str, attribute: str = "id") -> str:
        return "${" + f"{self.reference(resource_id, target_type)}.{attribute}" + "}"


MappingFunc = Callable[[Resource, MappingContext], MappedResource]


@dataclass(frozen=True)
class MappingStrategy:
    target_type: str
    func: MappingFunc
    required_fields: Sequence[str] = ()


class RegistryMapper(ResourceMapper):
    """
    Mapper dispatching on resource type through a strategy registry

    Subclasses register strategies in __init__ and define the provider prefix,
    the reference fields used for dependency discovery and provider defaults.
    """

    prefix = ""
    # metadata key -> target type of the referenced resource
    reference_fields: Dict[str, str] = {}

    def __init__(self):
        self.strategies: Dict[str, MappingStrategy] = {}

    def register(self, resource_type: str, func: MappingFunc, target_type: Optional[str] = None,
                 required_fields: Sequence[str] = ()):
        self.strategies[resource_type] = MappingStrategy(
            target_type=target_type or resource_type,
            func=func,
            required_fields=tuple(required_fields),
        )

    def get_supported_types(self) -> List[str]:
        return sorted(self.strategies)

    def target_type(self, resource_type: str) -> str:
        strategy = self.strategies.get(resource_type)
        return strategy.target_type if strategy else resource_type

    def resource_name(self, resource: Resource) -> str:
        return sanitize_name(resource.name, resource.id, resource.type)

    def map_resource(self, resource: Resource,
                     resources: Optional[Sequence[Resource]] = None) -> MappedResource:
        if resource.provider != self.provider:
            raise MappingError(
                f"Resource {resource.id} belongs to provider {resource.provider.value}, "
                f"not {self.provider.value}",
                resource_id=resource.id, resource_type=resource.type
            )

        strategy = self.strategies.get(resource.type)
        if strategy is None:
            raise UnsupportedResourceTypeError(
                f"Unsupported resource type: {resource.type}",
                resource_id=resource.id, resource_type=resource.type
            )

        context = MappingContext(self, resources)
        mapped = strategy.func(resource, context)
        logger.debug(f"Mapped {resource.id} to {mapped.address}")
        return mapped

    def require(self, resource: Resource, *keys: str) -> Dict[str, str]:
        """Fetch required string metadata, raising MappingError when any is missing"""
        values = {}
        for key in keys:
            value = resource.get_str(key)
            if not value:
                raise MappingError(
                    f"{resource.type} {resource.id} is missing required field: {key}",
                    resource_id=resource.id, resource_type=resource.type
                )
            values[key] = value
        return values

    def get_dependencies(self, resource: Resource, all_resources: Sequence[Resource]) -> List[str]:
        context = MappingContext(self, all_resources)
        dependencies = []
        for key, target_type in self.reference_fields.items():
            for ref_id in resource.get_list(key):
                if context.lookup(ref_id) is None:
                    continue
                address = context.reference(ref_id, target_type)
                if address not in dependencies:
                    dependencies.append(address)
        return dependencies

    def validate_mapping(self, original: Resource, mapped: MappedResource):
        if mapped.original_resource.id != original.id:
            raise MappingError(
                f"Mapped resource refers to {mapped.original_resource.id}, expected {original.id}",
                resource_id=original.id, resource_type=original.type
            )
        if original.provider != self.provider:
            raise MappingError(
                f"Provider mismatch: {original.provider.value} != {self.provider.value}",
                resource_id=original.id, resource_type=original.type
            )
        if self.prefix and not mapped.resource_type.startswith(self.prefix):
            raise MappingError(
                f"Resource type {mapped.resource_type} does not start with {self.prefix}",
                resource_id=original.id, resource_type=original.type
            )
        if not is_valid_identifier(mapped.resource_name):
            raise MappingError(
                f"Invalid resource name: {mapped.resource_name!r}",
                resource_id=original.id, resource_type=original.type
            )

        strategy = self.strategies.get(original.type)
        for key in (strategy.required_fields if strategy else ()):
            if key not in mapped.configuration:
                raise MappingError(
                    f"Required field {key} missing from {mapped.address}",
                    resource_id=original.id, resource_type=original.type
                )
