#!/usr/bin/env python3
"""
Unit tests for the dependency resolver
"""

import unittest
import sys
import os

# Add src and fixtures directories to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../fixtures'))

from cloud_iac_generator.dependencies import DanglingReference, DependencyResolver
from cloud_iac_generator.errors import DependencyError
from cloud_iac_generator.models import CloudProvider, Resource
import sample_resources as samples


class TestDependencyResolver(unittest.TestCase):
    """Test edge derivation, dangling references and cycle detection"""

    def setUp(self):
        self.resolver = DependencyResolver()

    def test_analyze_network_stack(self):
        dependencies = self.resolver.analyze_dependencies(samples.network_stack())

        self.assertEqual(dependencies["vpc-1"], [])
        self.assertEqual(dependencies["subnet-1"], ["vpc-1"])
        self.assertEqual(dependencies["sg-1"], ["vpc-1"])
        self.assertEqual(dependencies["i-0abc1234"], ["subnet-1", "sg-1"])

    def test_generic_id_keys_are_followed(self):
        peering = Resource(id="pcx-1", type="aws_vpc_peering_connection", provider=CloudProvider.AWS,
                           metadata={"peer_vpc_id": "vpc-1", "owner_id": "123456789012"})
        dependencies = self.resolver.analyze_dependencies([samples.vpc(), peering])
        self.assertEqual(dependencies["pcx-1"], ["vpc-1"])

    def test_self_reference_ignored(self):
        odd = Resource(id="vpc-1", type="aws_vpc", provider=CloudProvider.AWS, metadata={"vpc_id": "vpc-1"})
        self.assertEqual(self.resolver.analyze_dependencies([odd]), {"vpc-1": []})

    def test_find_dangling(self):
        dangling = self.resolver.find_dangling([samples.subnet(vpc_id="vpc-elsewhere")])
        self.assertEqual(dangling, [DanglingReference("subnet-1", "vpc_id", "vpc-elsewhere")])

    def test_dependency_graph(self):
        graph = self.resolver.get_dependency_graph([samples.vpc(), samples.subnet()])
        self.assertEqual(graph.nodes, ["vpc-1", "subnet-1"])
        self.assertEqual(graph.edges, [("subnet-1", "vpc-1")])
        self.assertEqual(graph.to_dict()["edges"], [{"from": "subnet-1", "to": "vpc-1"}])

    def test_find_cycles_reports_each_once(self):
        cycles = self.resolver.find_cycles({"b": ["c"], "c": ["a"], "a": ["b"], "d": ["a"]})
        self.assertEqual(cycles, [["a", "b", "c"]])

    def test_no_cycles(self):
        self.assertEqual(self.resolver.find_cycles({"a": ["b"], "b": [], "c": ["a", "b"]}), [])

    def test_validate_dependencies(self):
        self.resolver.validate_dependencies({"a": ["b"], "b": []})

        with self.assertRaises(DependencyError) as cm:
            self.resolver.validate_dependencies({"a": ["missing"]})
        self.assertIn("missing", str(cm.exception))

        with self.assertRaises(DependencyError) as cm:
            self.resolver.validate_dependencies({"a": ["b"], "b": ["a"]})
        self.assertIn("cycle", str(cm.exception))


if __name__ == '__main__':
    unittest.main()
