#!/usr/bin/env python3
"""
Dependency Resolver

Derives dependency edges between resources from their original metadata (a
``vpc_id`` pointing at another resource's id, and so on), independently of
what a mapper declared. Dangling references and cycles are reported, never
silently accepted.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import DependencyError
from .models import Resource

logger = logging.getLogger(__name__)

# Metadata keys that always denote a reference to another resource
REFERENCE_KEYS = (
    'vpc_id',
    'subnet_id',
    'subnet_ids',
    'allocation_id',
    'instance_id',
    'vpc_security_group_ids',
    'security_group_ids',
    'route_table_id',
    'network_acl_id',
    'internet_gateway_id',
    'nat_gateway_id',
)


@dataclass(frozen=True)
class DanglingReference:
    resource_id: str
    field: str
    target_id: str


@dataclass
class DependencyGraph:
    nodes: List[str] = field(default_factory=list)
    edges: List[Tuple[str, str]] = field(default_factory=list)  # (dependent, dependency)

    def to_dict(self) -> Dict[str, List]:
        return {
            'nodes': list(self.nodes),
            'edges': [{'from': a, 'to': b} for a, b in self.edges],
        }


def _reference_values(resource: Resource, key: str) -> List[str]:
    return resource.get_list(key)


def _candidate_keys(resource: Resource) -> List[str]:
    keys = [k for k in REFERENCE_KEYS if k in resource.metadata]
    keys.extend(
        k for k in sorted(resource.metadata)
        if k not in REFERENCE_KEYS and (k.endswith('_id') or k.endswith('_ids'))
    )
    return keys


class DependencyResolver:
    """Resolves and checks dependency edges between resources in one batch"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def analyze_dependencies(self, resources: Sequence[Resource]) -> Dict[str, List[str]]:
        """Map each resource id to the ids of batch resources it references"""
        known = {r.id for r in resources}
        dependencies: Dict[str, List[str]] = {}

        for resource in resources:
            edges = dependencies.setdefault(resource.id, [])
            for key in _candidate_keys(resource):
                for target in _reference_values(resource, key):
                    if target == resource.id or target not in known:
                        continue
                    if target not in edges:
                        edges.append(target)

        edge_count = sum(len(v) for v in dependencies.values())
        self.logger.debug(f"Resolved {edge_count} dependency edges across {len(resources)} resources")
        return dependencies

    def find_dangling(self, resources: Sequence[Resource]) -> List[DanglingReference]:
        """References through known reference keys to resources outside the batch"""
        known = {r.id for r in resources}
        dangling = []
        for resource in resources:
            for key in REFERENCE_KEYS:
                for target in _reference_values(resource, key):
                    if target not in known:
                        dangling.append(DanglingReference(resource.id, key, target))
        return dangling

    def get_dependency_graph(self, resources: Sequence[Resource]) -> DependencyGraph:
        dependencies = self.analyze_dependencies(resources)
        graph = DependencyGraph(nodes=[r.id for r in resources])
        for source, targets in dependencies.items():
            for target in targets:
                graph.edges.append((source, target))
        return graph

    def find_cycles(self, dependencies: Dict[str, List[str]]) -> List[List[str]]:
        """
        Find dependency cycles with a depth-first search

        Each cycle is reported once, rotated to start at its smallest id.
        """
        WHITE, GREY, BLACK = 0, 1, 2
        color = {node: WHITE for node in dependencies}
        stack: List[str] = []
        seen = set()
        cycles: List[List[str]] = []

        def visit(node: str):
            color[node] = GREY
            stack.append(node)
            for target in dependencies.get(node, []):
                state = color.get(target, WHITE)
                if state == GREY:
                    cycle = stack[stack.index(target):]
                    pivot = cycle.index(min(cycle))
                    normalized = tuple(cycle[pivot:] + cycle[:pivot])
                    if normalized not in seen:
                        seen.add(normalized)
                        cycles.append(list(normalized))
                elif state == WHITE and target in dependencies:
                    visit(target)
            stack.pop()
            color[node] = BLACK

        for node in sorted(dependencies):
            if color[node] == WHITE:
                visit(node)
        return cycles

    def validate_dependencies(self, dependencies: Dict[str, List[str]]):
        """Raise DependencyError for edges to unknown nodes or for cycles"""
        problems = []
        for source, targets in dependencies.items():
            for target in targets:
                if target not in dependencies:
                    problems.append(f"{source} depends on unknown resource {target}")

        for cycle in self.find_cycles(dependencies):
            problems.append(f"dependency cycle: {' -> '.join(cycle + [cycle[0]])}")

        if problems:
            raise DependencyError("; ".join(problems))
