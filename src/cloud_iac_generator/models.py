#!/usr/bin/env python3
"""
Resource Model

Provider-agnostic records that flow through the whole pipeline: the discovered
Resource, the filter predicate, discovery options and the discovery result, plus
the JSON/YAML interchange used between discovery and generation.
"""

import json
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)


class CloudProvider(str, Enum):
    """Cloud providers a Resource can come from"""
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    VMWARE = "vmware"
    KVM = "kvm"
    KUBERNETES = "kubernetes"

    def __str__(self) -> str:
        return self.value


def parse_provider(value: Union[str, CloudProvider]) -> CloudProvider:
    """Parse a provider name, case-insensitively"""
    if isinstance(value, CloudProvider):
        return value
    try:
        return CloudProvider(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(p.value for p in CloudProvider)
        raise ValueError(f"Unknown cloud provider: {value} (valid: {valid})")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Resource:
    """A discovered infrastructure object"""
    id: str
    type: str
    provider: CloudProvider
    name: str = ""
    region: str = ""
    zone: str = ""
    project: str = ""
    resource_group: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Typed metadata access. Mapper code goes through these instead of
    # poking at the raw dict so a wrong-typed value falls back to the default.

    def has(self, key: str) -> bool:
        return key in self.metadata

    def get_str(self, key: str, default: str = "") -> str:
        value = self.metadata.get(key)
        if value is None:
            return default
        if isinstance(value, (list, dict)):
            return default
        return str(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.metadata.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.metadata.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return default
        return default

    def get_list(self, key: str) -> List[str]:
        value = self.metadata.get(key)
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None and item != ""]
        if isinstance(value, str) and value:
            return [value]
        return []

    @property
    def key(self) -> str:
        """Identity of the resource within one discovery run"""
        return f"{self.provider.value}/{self.region}/{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'provider': self.provider.value,
            'metadata': dict(self.metadata),
        }
        for attr in ('region', 'zone', 'resource_group', 'project'):
            value = getattr(self, attr)
            if value:
                data[attr] = value
        if self.tags:
            data['tags'] = dict(self.tags)
        if self.created_at:
            data['created_at'] = _format_timestamp(self.created_at)
        if self.updated_at:
            data['updated_at'] = _format_timestamp(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Resource':
        if not isinstance(data, dict):
            raise ValueError(f"Resource entry must be an object, got {type(data).__name__}")
        for required in ('id', 'type', 'provider'):
            if not data.get(required):
                raise ValueError(f"Resource entry missing required field: {required}")

        return cls(
            id=str(data['id']),
            type=str(data['type']),
            provider=parse_provider(data['provider']),
            name=data.get('name') or "",
            region=data.get('region') or "",
            zone=data.get('zone') or "",
            project=data.get('project') or "",
            resource_group=data.get('resource_group') or data.get('resourceGroup') or "",
            metadata=dict(data.get('metadata') or {}),
            tags={str(k): str(v) for k, v in (data.get('tags') or {}).items()},
            created_at=_parse_timestamp(data.get('created_at') or data.get('createdAt')),
            updated_at=_parse_timestamp(data.get('updated_at') or data.get('updatedAt')),
        )


_INTEGER_LITERAL = re.compile(r'^-?\d+$')


def _coerce_literal(raw: Optional[str]) -> Any:
    """Turn CLI text into bool or int where it spells one; anything else stays a string"""
    if raw is None:
        return None
    if raw.lower() in ('true', 'false'):
        return raw.lower() == 'true'
    if _INTEGER_LITERAL.match(raw):
        return int(raw)
    return raw


FILTER_OPERATORS = ('eq', 'ne', 'contains', 'in', 'exists')
FILTER_OPERATOR_ALIASES = {'=': 'eq', '==': 'eq', '!=': 'ne'}


@dataclass(frozen=True)
class Filter:
    """Predicate over a Resource field: name/type/provider/region/zone, metadata or tags"""
    field: str
    operator: str
    value: Any = None

    @property
    def canonical_operator(self) -> Optional[str]:
        op = FILTER_OPERATOR_ALIASES.get(self.operator, self.operator)
        return op if op in FILTER_OPERATORS else None

    def to_dict(self) -> Dict[str, Any]:
        return {'field': self.field, 'operator': self.operator, 'value': self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Filter':
        return cls(field=data['field'], operator=data['operator'], value=data.get('value'))

    @classmethod
    def parse(cls, expression: str) -> 'Filter':
        """
        Parse the CLI form ``field:operator:value``

        The value may be comma-separated for ``in``. ``true``/``false`` and
        integer literals become bool and int so they match typed metadata.
        """
        parts = expression.split(':', 2)
        if len(parts) < 2:
            raise ValueError(f"Invalid filter expression: {expression} (expected field:operator[:value])")
        field_name, operator = parts[0], parts[1]
        raw = parts[2] if len(parts) == 3 else None

        value: Any = _coerce_literal(raw)
        if operator == 'in' and raw is not None:
            value = [_coerce_literal(item) for item in raw.split(',') if item]
        elif operator == 'exists':
            value = True if raw is None else raw.lower() != 'false'
        return cls(field=field_name, operator=operator, value=value)


@dataclass
class DiscoveryOptions:
    """What to discover and how"""
    providers: List[CloudProvider] = field(default_factory=list)
    regions: List[str] = field(default_factory=list)
    resource_types: List[str] = field(default_factory=list)
    include_tags: List[str] = field(default_factory=list)
    exclude_tags: List[str] = field(default_factory=list)
    max_concurrency: Optional[int] = None
    timeout: Optional[float] = None  # seconds
    filters: List[Filter] = field(default_factory=list)


@dataclass
class ProviderDiscoveryOptions:
    """Per-provider slice of DiscoveryOptions handed to a connector"""
    regions: List[str] = field(default_factory=list)
    resource_types: List[str] = field(default_factory=list)
    filters: List[Filter] = field(default_factory=list)


@dataclass(frozen=True)
class DiscoveryError:
    """A per-provider discovery failure"""
    provider: Optional[CloudProvider]
    message: str
    region: str = ""
    resource_type: str = ""
    timed_out: bool = False
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'provider': self.provider.value if self.provider else None,
            'message': self.message,
        }
        if self.region:
            data['region'] = self.region
        if self.resource_type:
            data['resource_type'] = self.resource_type
        if self.timed_out:
            data['timed_out'] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscoveryError':
        provider = data.get('provider')
        return cls(
            provider=parse_provider(provider) if provider else None,
            message=data.get('message', ''),
            region=data.get('region', ''),
            resource_type=data.get('resource_type', ''),
            timed_out=bool(data.get('timed_out', False)),
        )


@dataclass(frozen=True)
class DiscoveryMetadata:
    """Run metadata computed once discovery finishes"""
    start_time: datetime
    end_time: datetime
    duration: float  # seconds
    resource_count: int
    provider_stats: Dict[str, int] = field(default_factory=dict)
    error_count: int = 0
    filters: List[Filter] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start_time': _format_timestamp(self.start_time),
            'end_time': _format_timestamp(self.end_time),
            'duration': self.duration,
            'resource_count': self.resource_count,
            'provider_stats': dict(self.provider_stats),
            'error_count': self.error_count,
            'filters_applied': [f.to_dict() for f in self.filters],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscoveryMetadata':
        now = datetime.now(timezone.utc)
        return cls(
            start_time=_parse_timestamp(data.get('start_time')) or now,
            end_time=_parse_timestamp(data.get('end_time')) or now,
            duration=float(data.get('duration') or 0.0),
            resource_count=int(data.get('resource_count') or 0),
            provider_stats=dict(data.get('provider_stats') or {}),
            error_count=int(data.get('error_count') or 0),
            filters=[Filter.from_dict(f) for f in data.get('filters_applied') or []],
        )


@dataclass(frozen=True)
class DiscoveryResult:
    """Resources, per-provider errors and run metadata of one discover call"""
    resources: List[Resource]
    errors: List[DiscoveryError]
    metadata: DiscoveryMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resources': [r.to_dict() for r in self.resources],
            'metadata': self.metadata.to_dict(),
            'errors': [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscoveryResult':
        return cls(
            resources=[Resource.from_dict(r) for r in data.get('resources') or []],
            errors=[DiscoveryError.from_dict(e) for e in data.get('errors') or []],
            metadata=DiscoveryMetadata.from_dict(data.get('metadata') or {}),
        )

    def export(self, output_file: Union[str, Path], export_format: str = 'json'):
        """Write the result in the interchange shape read back by load_resources"""
        logger.info(f"Exporting discovery results to {output_file}")
        data = self.to_dict()

        with open(output_file, 'w') as f:
            if export_format == 'yaml':
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            elif export_format == 'json':
                json.dump(data, f, indent=2, default=str)
            else:
                raise ValueError(f"Unsupported export format: {export_format}")


def resources_from_data(data: Any) -> List[Resource]:
    """Accept either the discovery result shape or a bare resource array"""
    if isinstance(data, dict):
        if 'resources' not in data:
            raise ValueError("Input object has no 'resources' key")
        entries = data['resources'] or []
    elif isinstance(data, list):
        entries = data
    else:
        raise ValueError(f"Unsupported resource input: {type(data).__name__}")

    return [Resource.from_dict(entry) for entry in entries]


def load_resources(source: Union[str, Path]) -> List[Resource]:
    """Load resources from a JSON or YAML file"""
    path = Path(source).expanduser()
    with open(path, 'r') as f:
        if path.suffix.lower() in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    resources = resources_from_data(data)
    logger.info(f"Loaded {len(resources)} resources from {path}")
    return resources
