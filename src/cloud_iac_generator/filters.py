#!/usr/bin/env python3
"""
Filter Predicate Evaluator

Evaluates field/operator/value predicates against a Resource. Field resolution
order is: fixed fields (name, type, provider, region, zone), then an exact
metadata key, then an exact tag key, then the dotted ``tags.<key>`` and
``metadata.<key>`` forms. An unresolved field never matches, except for
``exists`` with an expected value of false.

Unknown operators fail closed: the filter does not match and a warning is logged.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple

from .models import FILTER_OPERATOR_ALIASES, FILTER_OPERATORS, Filter, Resource

logger = logging.getLogger(__name__)

FIXED_FIELDS = ('name', 'type', 'provider', 'region', 'zone')

_MISSING = object()


def _resolve_field(resource: Resource, field_name: str) -> Tuple[bool, Any]:
    """Return (found, value) for a filter field"""
    if field_name in FIXED_FIELDS:
        value = getattr(resource, field_name)
        if field_name == 'provider':
            value = value.value
        return True, value

    if field_name in resource.metadata:
        return True, resource.metadata[field_name]

    if field_name in resource.tags:
        return True, resource.tags[field_name]

    if field_name.startswith('tags.'):
        key = field_name[len('tags.'):]
        if key in resource.tags:
            return True, resource.tags[key]
        return False, _MISSING

    if field_name.startswith('metadata.'):
        key = field_name[len('metadata.'):]
        if key in resource.metadata:
            return True, resource.metadata[key]
        return False, _MISSING

    return False, _MISSING


def _literal_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def values_equal(actual: Any, expected: Any) -> bool:
    """
    Equality for filter values

    A bool or int parsed from the command line still matches a string field
    (tags are always strings) holding the same text. Bools never equal ints.
    """
    if isinstance(actual, str) and isinstance(expected, (bool, int)):
        return actual == _literal_text(expected)
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _expected_presence(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() not in ('false', '0', 'no', '')
    if value is None:
        return True
    return bool(value)


class FilterEvaluator:
    """Evaluates Filters against Resources"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def matches(self, resource: Resource, flt: Filter) -> bool:
        operator = FILTER_OPERATOR_ALIASES.get(flt.operator, flt.operator)
        found, actual = _resolve_field(resource, flt.field)

        if operator == 'exists':
            return found == _expected_presence(flt.value)

        if operator not in FILTER_OPERATORS:
            self.logger.warning(f"Unknown filter operator '{flt.operator}' on field '{flt.field}', treating as no match")
            return False

        if not found:
            return False

        if operator == 'eq':
            return values_equal(actual, flt.value)
        if operator == 'ne':
            return not values_equal(actual, flt.value)
        if operator == 'contains':
            if isinstance(actual, str) and isinstance(flt.value, (str, bool, int)):
                return _literal_text(flt.value) in actual
            return False
        if operator == 'in':
            if isinstance(flt.value, (list, tuple, set, frozenset)):
                return any(values_equal(actual, item) for item in flt.value)
            return False

        return False

    def matches_all(self, resource: Resource, filters: Sequence[Filter]) -> bool:
        """AND across the filter list; an empty list matches everything"""
        for flt in filters:
            if not self.matches(resource, flt):
                return False
        return True

    def apply(self, resources: List[Resource], filters: Sequence[Filter]) -> List[Resource]:
        if not filters:
            return list(resources)
        kept = [r for r in resources if self.matches_all(r, filters)]
        self.logger.debug(f"Filters kept {len(kept)} of {len(resources)} resources")
        return kept


def unknown_operators(filters: Sequence[Filter]) -> List[str]:
    """Operators in the list that the evaluator does not understand"""
    return [f.operator for f in filters if f.canonical_operator is None]


def apply_tag_selection(resources: List[Resource],
                        include_tags: Sequence[str],
                        exclude_tags: Sequence[str]) -> List[Resource]:
    """Keep resources carrying any include tag key and none of the exclude tag keys"""
    selected = []
    for resource in resources:
        if exclude_tags and any(key in resource.tags for key in exclude_tags):
            continue
        if include_tags and not any(key in resource.tags for key in include_tags):
            continue
        selected.append(resource)
    return selected


_default_evaluator = FilterEvaluator()


def matches(resource: Resource, flt: Filter) -> bool:
    return _default_evaluator.matches(resource, flt)


def matches_all(resource: Resource, filters: Sequence[Filter]) -> bool:
    return _default_evaluator.matches_all(resource, filters)
