#!/usr/bin/env python3
"""
Sample discovered resources for testing
"""

from datetime import datetime, timezone

from cloud_iac_generator.discovery import ProviderConnector
from cloud_iac_generator.errors import ConnectorError
from cloud_iac_generator.models import CloudProvider, Resource

CREATED_AT = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def vpc(resource_id="vpc-1", name="vpc-1", region="us-east-1", cidr="10.0.0.0/16", **tags):
    return Resource(
        id=resource_id,
        name=name,
        type="aws_vpc",
        provider=CloudProvider.AWS,
        region=region,
        metadata={"cidr_block": cidr, "state": "available", "is_default": False},
        tags=dict(tags),
        created_at=CREATED_AT,
    )


def subnet(resource_id="subnet-1", name="subnet-1", vpc_id="vpc-1", region="us-east-1",
           cidr="10.0.1.0/24", zone="us-east-1a", **tags):
    return Resource(
        id=resource_id,
        name=name,
        type="aws_subnet",
        provider=CloudProvider.AWS,
        region=region,
        zone=zone,
        metadata={"vpc_id": vpc_id, "cidr_block": cidr, "map_public_ip_on_launch": True},
        tags=dict(tags),
    )


def security_group(resource_id="sg-1", name="web", vpc_id="vpc-1", region="us-east-1"):
    return Resource(
        id=resource_id,
        name=name,
        type="aws_security_group",
        provider=CloudProvider.AWS,
        region=region,
        metadata={"group_name": name, "vpc_id": vpc_id, "description": "web tier"},
    )


def instance(resource_id="i-0abc1234", name="web-1", subnet_id="subnet-1", region="us-east-1",
             image_id="ami-12345678", security_groups=("sg-1",), **extra):
    metadata = {
        "instance_type": "t3.micro",
        "subnet_id": subnet_id,
        "vpc_security_group_ids": list(security_groups),
        "private_ip": "10.0.1.10",
    }
    if image_id:
        metadata["image_id"] = image_id
    metadata.update(extra)
    return Resource(
        id=resource_id,
        name=name,
        type="aws_instance",
        provider=CloudProvider.AWS,
        region=region,
        zone="us-east-1a",
        metadata=metadata,
    )


def unsupported(resource_id="widget-1"):
    return Resource(
        id=resource_id,
        name="widget",
        type="aws_unknown_widget",
        provider=CloudProvider.AWS,
        region="us-east-1",
    )


def network_stack():
    """VPC, subnet, security group and instance that reference each other"""
    return [vpc(), subnet(), security_group(), instance()]


DISCOVERY_DOCUMENT = {
    "resources": [
        {
            "id": "vpc-1",
            "name": "main",
            "type": "aws_vpc",
            "provider": "aws",
            "region": "us-east-1",
            "metadata": {"cidr_block": "10.0.0.0/16"},
            "tags": {"Environment": "prod"},
            "createdAt": "2024-01-15T10:30:00Z",
        },
        {
            "id": "subnet-1",
            "name": "public",
            "type": "aws_subnet",
            "provider": "aws",
            "region": "us-east-1",
            "zone": "us-east-1a",
            "metadata": {"vpc_id": "vpc-1", "cidr_block": "10.0.1.0/24"},
        },
    ],
    "metadata": {"resource_count": 2},
    "errors": [],
}


class StaticConnector(ProviderConnector):
    """Connector that returns a fixed inventory, or fails every call"""

    def __init__(self, resources=None, provider=CloudProvider.AWS, error=None):
        self._provider = provider
        self.resources = network_stack() if resources is None else resources
        self.error = error
        self.calls = 0

    @property
    def provider(self):
        return self._provider

    def validate_credentials(self, cancel_event=None):
        pass

    def get_regions(self):
        return ["us-east-1"]

    def get_resource_types(self):
        return sorted({r.type for r in self.resources})

    def discover(self, options, cancel_event=None):
        self.calls += 1
        if self.error:
            raise ConnectorError(self.error)
        return list(self.resources)
