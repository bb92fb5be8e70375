#!/usr/bin/env python3
"""
Unit tests for the resource model and JSON interchange
"""

import unittest
import sys
import os
import json
import tempfile
import shutil
from datetime import datetime, timezone
from pathlib import Path

# Add src and fixtures directories to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../fixtures'))

from cloud_iac_generator.models import (
    CloudProvider, Resource, Filter, DiscoveryError, DiscoveryMetadata, DiscoveryResult,
    parse_provider, resources_from_data, load_resources
)
import sample_resources as samples


class TestCloudProvider(unittest.TestCase):
    """Test provider parsing"""

    def test_parse_is_case_insensitive(self):
        self.assertEqual(parse_provider("AWS"), CloudProvider.AWS)
        self.assertEqual(parse_provider(" gcp "), CloudProvider.GCP)
        self.assertIs(parse_provider(CloudProvider.KVM), CloudProvider.KVM)

    def test_unknown_provider(self):
        with self.assertRaises(ValueError):
            parse_provider("oracle")

    def test_str_is_value(self):
        self.assertEqual(str(CloudProvider.KUBERNETES), "kubernetes")


class TestResource(unittest.TestCase):
    """Test the Resource record and its typed accessors"""

    def setUp(self):
        self.resource = Resource(
            id="i-1",
            type="aws_instance",
            provider=CloudProvider.AWS,
            metadata={
                "instance_type": "t3.micro",
                "ebs_optimized": "true",
                "cpu_count": 2.0,
                "ports": "80",
                "security_groups": ["sg-1", "", None, "sg-2"],
                "nested": {"a": 1},
            },
        )

    def test_get_str(self):
        self.assertEqual(self.resource.get_str("instance_type"), "t3.micro")
        self.assertEqual(self.resource.get_str("missing", "x"), "x")
        self.assertEqual(self.resource.get_str("nested", "fallback"), "fallback")

    def test_get_bool_parses_strings(self):
        self.assertTrue(self.resource.get_bool("ebs_optimized"))
        self.assertFalse(self.resource.get_bool("instance_type"))
        self.assertTrue(self.resource.get_bool("missing", True))

    def test_get_int(self):
        self.assertEqual(self.resource.get_int("cpu_count"), 2)
        self.assertEqual(self.resource.get_int("ports"), 80)
        self.assertEqual(self.resource.get_int("instance_type", -1), -1)

    def test_get_list_drops_empty_entries(self):
        self.assertEqual(self.resource.get_list("security_groups"), ["sg-1", "sg-2"])
        self.assertEqual(self.resource.get_list("instance_type"), ["t3.micro"])
        self.assertEqual(self.resource.get_list("missing"), [])

    def test_unused_placement_fields_are_empty(self):
        self.assertEqual(self.resource.region, "")
        self.assertEqual(self.resource.zone, "")
        self.assertEqual(self.resource.resource_group, "")
        self.assertEqual(self.resource.key, "aws//i-1")

    def test_from_dict_accepts_camel_case_aliases(self):
        resource = Resource.from_dict({
            "id": "rg-vm",
            "type": "azurerm_linux_virtual_machine",
            "provider": "Azure",
            "resourceGroup": "prod-rg",
            "createdAt": "2024-01-15T10:30:00Z",
        })
        self.assertEqual(resource.provider, CloudProvider.AZURE)
        self.assertEqual(resource.resource_group, "prod-rg")
        self.assertEqual(resource.created_at, datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))

    def test_from_dict_requires_identity(self):
        with self.assertRaises(ValueError):
            Resource.from_dict({"id": "x", "provider": "aws"})

    def test_to_dict_omits_empty_placement(self):
        data = samples.vpc().to_dict()
        self.assertEqual(data["region"], "us-east-1")
        self.assertNotIn("zone", data)
        self.assertEqual(data["created_at"], "2024-01-15T10:30:00+00:00")


class TestFilterParse(unittest.TestCase):
    """Test the field:operator:value filter form"""

    def test_parse_eq(self):
        self.assertEqual(Filter.parse("tags.env:eq:prod"), Filter("tags.env", "eq", "prod"))

    def test_parse_in_splits_values(self):
        self.assertEqual(Filter.parse("region:in:us-east-1,eu-west-1").value, ["us-east-1", "eu-west-1"])

    def test_parse_exists(self):
        self.assertTrue(Filter.parse("tags.owner:exists").value)
        self.assertFalse(Filter.parse("tags.owner:exists:false").value)

    def test_parse_coerces_literals(self):
        self.assertIs(Filter.parse("is_default:eq:True").value, True)
        self.assertEqual(Filter.parse("route_count:eq:-3").value, -3)
        self.assertEqual(Filter.parse("route_count:in:1,x").value, [1, "x"])
        self.assertEqual(Filter.parse("name:eq:10.0").value, "10.0")

    def test_value_may_contain_colons(self):
        self.assertEqual(Filter.parse("metadata.arn:eq:arn:aws:iam::1").value, "arn:aws:iam::1")

    def test_invalid_expression(self):
        with self.assertRaises(ValueError):
            Filter.parse("region")

    def test_canonical_operator(self):
        self.assertEqual(Filter("name", "==", "x").canonical_operator, "eq")
        self.assertEqual(Filter("name", "!=", "x").canonical_operator, "ne")
        self.assertIsNone(Filter("name", "startswith", "x").canonical_operator)


class TestInterchange(unittest.TestCase):
    """Test discovery result export and resource loading"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _result(self):
        now = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        return DiscoveryResult(
            resources=[samples.vpc(), samples.subnet()],
            errors=[DiscoveryError(provider=CloudProvider.GCP, message="credentials expired")],
            metadata=DiscoveryMetadata(
                start_time=now,
                end_time=now,
                duration=0.5,
                resource_count=2,
                provider_stats={"aws": 2},
                error_count=1,
                filters=[Filter("region", "eq", "us-east-1")],
            ),
        )

    def test_to_dict_shape(self):
        data = self._result().to_dict()
        self.assertEqual(set(data), {"resources", "metadata", "errors"})
        self.assertEqual(data["metadata"]["filters_applied"],
                         [{"field": "region", "operator": "eq", "value": "us-east-1"}])
        self.assertEqual(data["errors"], [{"provider": "gcp", "message": "credentials expired"}])

    def test_export_json_and_load(self):
        path = Path(self.temp_dir) / "discovery.json"
        self._result().export(path, "json")

        with open(path) as f:
            self.assertIn("resources", json.load(f))

        resources = load_resources(path)
        self.assertEqual([r.id for r in resources], ["vpc-1", "subnet-1"])
        self.assertEqual(resources[1].metadata["vpc_id"], "vpc-1")

    def test_export_yaml_and_load(self):
        path = Path(self.temp_dir) / "discovery.yaml"
        self._result().export(path, "yaml")
        resources = load_resources(path)
        self.assertEqual(resources[0].created_at, samples.CREATED_AT)

    def test_export_rejects_unknown_format(self):
        with self.assertRaises(ValueError):
            self._result().export(Path(self.temp_dir) / "x.xml", "xml")

    def test_bare_array_is_accepted(self):
        resources = resources_from_data(samples.DISCOVERY_DOCUMENT["resources"])
        self.assertEqual(len(resources), 2)

    def test_object_without_resources_key(self):
        with self.assertRaises(ValueError):
            resources_from_data({"items": []})

    def test_from_dict_round_trip_of_errors(self):
        result = DiscoveryResult.from_dict(self._result().to_dict())
        self.assertEqual(result.errors[0].provider, CloudProvider.GCP)
        self.assertEqual(result.metadata.provider_stats, {"aws": 2})


if __name__ == '__main__':
    unittest.main()
