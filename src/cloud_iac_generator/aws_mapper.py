#!/usr/bin/env python3
"""
AWS Resource Mapper

Maps discovered AWS networking and compute resources to Terraform AWS provider
resources. Each supported type is one small strategy registered in
AWSMapper.__init__.
"""

import logging
from typing import Any, Dict, List, Sequence

from .mapping import MappedResource, MappingContext, Output, ProviderConfig, RegistryMapper, Variable
from .models import CloudProvider, Resource

logger = logging.getLogger(__name__)

MANAGED_BY = "cloud-iac-generator"
DEFAULT_REGION = "us-east-1"
PROVIDER_SOURCE = "hashicorp/aws"
PROVIDER_VERSION = "~> 5.0"


class AWSMapper(RegistryMapper):
    """Maps AWS resources to Terraform"""

    prefix = "aws_"
    reference_fields = {
        'vpc_id': 'aws_vpc',
        'subnet_id': 'aws_subnet',
        'vpc_security_group_ids': 'aws_security_group',
        'allocation_id': 'aws_eip',
        'instance_id': 'aws_instance',
    }

    def __init__(self):
        super().__init__()
        self.register('aws_vpc', self._map_vpc, required_fields=['cidr_block'])
        self.register('aws_subnet', self._map_subnet, required_fields=['vpc_id', 'cidr_block'])
        self.register('aws_security_group', self._map_security_group)
        self.register('aws_instance', self._map_instance, required_fields=['instance_type', 'ami'])
        self.register('aws_internet_gateway', self._map_internet_gateway)
        self.register('aws_route_table', self._map_route_table)
        self.register('aws_nat_gateway', self._map_nat_gateway)
        self.register('aws_elastic_ip', self._map_elastic_ip, target_type='aws_eip')
        self.register('aws_network_acl', self._map_network_acl)

    @property
    def provider(self) -> CloudProvider:
        return CloudProvider.AWS

    def get_provider_config(self, resources: Sequence[Resource]) -> ProviderConfig:
        region = DEFAULT_REGION
        if resources and resources[0].region:
            region = resources[0].region

        return ProviderConfig(
            name="aws",
            source=PROVIDER_SOURCE,
            version=PROVIDER_VERSION,
            region=region,
            configuration={'region': region},
        )

    # Helpers shared by the strategies

    def _tags(self, resource: Resource) -> Dict[str, str]:
        tags = dict(resource.tags)
        tags.update({
            'Name': resource.name or self.resource_name(resource),
            'OriginalId': resource.id,
            'ManagedBy': MANAGED_BY,
        })
        return tags

    def _build(self, resource: Resource, ctx: MappingContext, config: Dict[str, Any],
               dependencies: List[str], outputs: Dict[str, str],
               variables: Dict[str, Variable] = None) -> MappedResource:
        resource_type = self.target_type(resource.type)
        name = ctx.resource_name(resource)
        address = f"{resource_type}.{name}"

        config['tags'] = self._tags(resource)
        declared_outputs = {
            f"{name}_{attribute}": Output(
                value="${" + f"{address}.{attribute}" + "}",
                description=description,
            )
            for attribute, description in outputs.items()
        }

        unique_deps = []
        for dep in dependencies:
            if dep not in unique_deps:
                unique_deps.append(dep)

        return MappedResource(
            original_resource=resource,
            resource_type=resource_type,
            resource_name=name,
            configuration=config,
            dependencies=unique_deps,
            variables=variables or {},
            outputs=declared_outputs,
        )

    def _link(self, resource: Resource, ctx: MappingContext, config: Dict[str, Any],
              dependencies: List[str], key: str, target_type: str, config_key: str = None):
        """Turn a metadata reference into an interpolation plus a dependency"""
        ref_id = resource.get_str(key)
        if not ref_id:
            return
        config[config_key or key] = ctx.interpolate(ref_id, target_type)
        dependencies.append(ctx.reference(ref_id, target_type))

    # Strategies

    def _map_vpc(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        required = self.require(resource, 'cidr_block')
        config = {'cidr_block': required['cidr_block']}
        for flag in ('enable_dns_hostnames', 'enable_dns_support'):
            if resource.has(flag):
                config[flag] = resource.get_bool(flag)

        return self._build(resource, ctx, config, [], {
            'id': f"ID of VPC {resource.id}",
            'cidr_block': f"CIDR block of VPC {resource.id}",
        })

    def _map_subnet(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        required = self.require(resource, 'vpc_id', 'cidr_block')
        config: Dict[str, Any] = {}
        dependencies: List[str] = []

        self._link(resource, ctx, config, dependencies, 'vpc_id', 'aws_vpc')
        config['cidr_block'] = required['cidr_block']
        if resource.zone:
            config['availability_zone'] = resource.zone
        if resource.has('map_public_ip_on_launch'):
            config['map_public_ip_on_launch'] = resource.get_bool('map_public_ip_on_launch')

        return self._build(resource, ctx, config, dependencies, {
            'id': f"ID of subnet {resource.id}",
        })

    def _map_security_group(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        config: Dict[str, Any] = {'name': resource.get_str('group_name') or resource.name or resource.id}
        dependencies: List[str] = []

        description = resource.get_str('description')
        if description:
            config['description'] = description
        self._link(resource, ctx, config, dependencies, 'vpc_id', 'aws_vpc')

        return self._build(resource, ctx, config, dependencies, {
            'id': f"ID of security group {resource.id}",
        })

    def _map_instance(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        required = self.require(resource, 'instance_type')
        config: Dict[str, Any] = {}
        dependencies: List[str] = []
        variables: Dict[str, Variable] = {}

        image_id = resource.get_str('image_id')
        if image_id:
            config['ami'] = image_id
        else:
            # AMIs are region specific, so ask for one
            variables['ami_id'] = Variable(
                type="string",
                description=f"AMI ID for instance {resource.name or resource.id}",
                required=True,
            )
            config['ami'] = "${var.ami_id}"
        config['instance_type'] = required['instance_type']

        self._link(resource, ctx, config, dependencies, 'subnet_id', 'aws_subnet')

        group_ids = resource.get_list('vpc_security_group_ids')
        if group_ids:
            config['vpc_security_group_ids'] = [ctx.interpolate(gid, 'aws_security_group') for gid in group_ids]
            dependencies.extend(ctx.reference(gid, 'aws_security_group') for gid in group_ids)

        key_name = resource.get_str('key_name')
        if key_name:
            config['key_name'] = key_name

        outputs = {
            'id': f"ID of instance {resource.id}",
            'private_ip': f"Private IP of instance {resource.id}",
        }
        if resource.get_str('public_ip'):
            outputs['public_ip'] = f"Public IP of instance {resource.id}"

        return self._build(resource, ctx, config, dependencies, outputs, variables)

    def _map_internet_gateway(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        config: Dict[str, Any] = {}
        dependencies: List[str] = []
        self._link(resource, ctx, config, dependencies, 'vpc_id', 'aws_vpc')
        return self._build(resource, ctx, config, dependencies, {
            'id': f"ID of internet gateway {resource.id}",
        })

    def _map_route_table(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        config: Dict[str, Any] = {}
        dependencies: List[str] = []
        self._link(resource, ctx, config, dependencies, 'vpc_id', 'aws_vpc')
        return self._build(resource, ctx, config, dependencies, {
            'id': f"ID of route table {resource.id}",
        })

    def _map_nat_gateway(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        config: Dict[str, Any] = {}
        dependencies: List[str] = []
        self._link(resource, ctx, config, dependencies, 'allocation_id', 'aws_eip')
        self._link(resource, ctx, config, dependencies, 'subnet_id', 'aws_subnet')
        return self._build(resource, ctx, config, dependencies, {
            'id': f"ID of NAT gateway {resource.id}",
        })

    def _map_elastic_ip(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        config: Dict[str, Any] = {'domain': 'vpc'}
        dependencies: List[str] = []
        self._link(resource, ctx, config, dependencies, 'instance_id', 'aws_instance', config_key='instance')
        return self._build(resource, ctx, config, dependencies, {
            'id': f"Allocation ID of elastic IP {resource.id}",
            'public_ip': f"Public IP of elastic IP {resource.id}",
        })

    def _map_network_acl(self, resource: Resource, ctx: MappingContext) -> MappedResource:
        config: Dict[str, Any] = {}
        dependencies: List[str] = []
        self._link(resource, ctx, config, dependencies, 'vpc_id', 'aws_vpc')
        return self._build(resource, ctx, config, dependencies, {
            'id': f"ID of network ACL {resource.id}",
        })
