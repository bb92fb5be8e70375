#!/usr/bin/env python3
"""
File Organizer

Groups mapped resources into output files by an organization pattern. The
assignment depends only on the resources' provider, region and type, so the
same batch always yields the same file names; within a file, resources keep
the order they arrived in.
"""

import logging
import re
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from .errors import InvalidOptionsError
from .mapping import MappedResource

logger = logging.getLogger(__name__)

FLAT = 'flat'
BY_PROVIDER = 'by_provider'
BY_SERVICE = 'by_service'
BY_REGION = 'by_region'
BY_RESOURCE_TYPE = 'by_resource_type'

PATTERNS = (FLAT, BY_PROVIDER, BY_SERVICE, BY_REGION, BY_RESOURCE_TYPE)

# Names the generator writes itself; groups never take them over
RESERVED_GROUPS = ('main', 'variables', 'outputs', 'versions', 'providers')

# Target resource type (without provider prefix) -> service family
SERVICE_FAMILIES = {
    'aws': {
        'vpc': 'vpc',
        'subnet': 'vpc',
        'security_group': 'vpc',
        'internet_gateway': 'vpc',
        'route_table': 'vpc',
        'nat_gateway': 'vpc',
        'network_acl': 'vpc',
        'instance': 'ec2',
        'eip': 'ec2',
    },
}

_SEPARATORS = re.compile(r'[.\-\s/]+')


def normalize_name(value: str) -> str:
    """Lower-case, with dots, dashes, slashes and whitespace turned into underscores"""
    normalized = _SEPARATORS.sub('_', (value or '').strip().lower())
    return normalized.strip('_')


def _strip_prefix(resource_type: str, provider: str) -> str:
    prefix = f"{provider}_"
    if resource_type.startswith(prefix):
        return resource_type[len(prefix):]
    return resource_type


class FileOrganizer:
    """Assigns mapped resources to file groups"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def group_name(self, resource: MappedResource, pattern: str) -> str:
        provider = resource.provider.value
        if pattern == FLAT:
            return 'main'
        if pattern == BY_PROVIDER:
            group = provider
        elif pattern == BY_REGION:
            group = normalize_name(resource.original_resource.region) or 'global'
        elif pattern == BY_RESOURCE_TYPE:
            group = normalize_name(_strip_prefix(resource.resource_type, provider))
        elif pattern == BY_SERVICE:
            short_type = _strip_prefix(resource.resource_type, provider)
            families = SERVICE_FAMILIES.get(provider, {})
            group = families.get(short_type) or short_type.split('_', 1)[0]
            group = normalize_name(group)
        else:
            raise InvalidOptionsError(f"Unknown organization pattern: {pattern}")

        group = group or 'resources'
        if group in RESERVED_GROUPS:
            group = f"resources_{group}"
        return group

    def organize(self, resources: Sequence[MappedResource], pattern: str) -> Dict[str, List[MappedResource]]:
        """
        Group resources by pattern

        Returns:
            Ordered mapping of group name to resources; groups sorted by name,
            resources in input order
        """
        if pattern not in PATTERNS:
            raise InvalidOptionsError(f"Unknown organization pattern: {pattern}")

        groups: Dict[str, List[MappedResource]] = {}
        for resource in resources:
            groups.setdefault(self.group_name(resource, pattern), []).append(resource)

        ordered = OrderedDict((name, groups[name]) for name in sorted(groups))
        self.logger.debug(f"Organized {len(resources)} resources into {len(ordered)} groups by {pattern}")
        return ordered

    def organize_files(self, resources: Sequence[MappedResource], pattern: str,
                       extension: str = '.tf') -> Dict[str, List[MappedResource]]:
        """Group resources into file paths such as ``main.tf`` or ``aws.tf``"""
        return OrderedDict(
            (f"{group}{extension}", members)
            for group, members in self.organize(resources, pattern).items()
        )
