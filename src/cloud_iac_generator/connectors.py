#!/usr/bin/env python3
"""
AWS Provider Connector

Discovers EC2 networking and compute resources with boto3 and converts them
into provider-agnostic Resources.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .discovery import ProviderConnector
from .errors import ConnectorError
from .models import CloudProvider, ProviderDiscoveryOptions, Resource

logger = logging.getLogger(__name__)

DEFAULT_REGION = 'us-east-1'


def _tags(aws_tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    return {tag['Key']: tag['Value'] for tag in aws_tags or []}


def _name(tags: Dict[str, str]) -> str:
    return tags.get('Name', '')


def _compact(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the API left unset"""
    return {k: v for k, v in metadata.items() if v is not None and v != ''}


class AWSConnector(ProviderConnector):
    """
    AWS discovery connector

    Uses a boto3 Session (optionally for a named profile) and scans every
    requested region for the requested resource types.
    """

    def __init__(self,
                 profile: Optional[str] = None,
                 regions: Optional[List[str]] = None,
                 session: Optional[boto3.Session] = None):
        self.profile = profile
        self.default_regions = list(regions or [])
        self.session = session or (boto3.Session(profile_name=profile) if profile else boto3.Session())

        self._discoverers: Dict[str, Callable[[Any, str], List[Resource]]] = {
            'aws_vpc': self._discover_vpcs,
            'aws_subnet': self._discover_subnets,
            'aws_security_group': self._discover_security_groups,
            'aws_instance': self._discover_instances,
            'aws_internet_gateway': self._discover_internet_gateways,
            'aws_route_table': self._discover_route_tables,
            'aws_nat_gateway': self._discover_nat_gateways,
            'aws_elastic_ip': self._discover_elastic_ips,
        }

    @property
    def provider(self) -> CloudProvider:
        return CloudProvider.AWS

    def _home_region(self) -> str:
        return self.session.region_name or DEFAULT_REGION

    def validate_credentials(self, cancel_event: Optional[threading.Event] = None):
        try:
            identity = self.session.client('sts').get_caller_identity()
        except NoCredentialsError:
            raise ConnectorError("AWS credentials not found", provider='aws')
        except (ClientError, BotoCoreError) as e:
            raise ConnectorError(f"AWS credential validation failed: {str(e)}", provider='aws')

        logger.info(f"Authenticated to AWS account {identity.get('Account')} as {identity.get('Arn')}")

    def get_regions(self) -> List[str]:
        try:
            response = self.session.client('ec2', region_name=self._home_region()).describe_regions()
        except (ClientError, BotoCoreError) as e:
            raise ConnectorError(f"Failed to list AWS regions: {str(e)}", provider='aws')
        return sorted(region['RegionName'] for region in response.get('Regions', []))

    def get_resource_types(self) -> List[str]:
        return list(self._discoverers)

    def _normalize_type(self, resource_type: str) -> str:
        return resource_type if resource_type.startswith('aws_') else f"aws_{resource_type}"

    def discover(self, options: ProviderDiscoveryOptions,
                 cancel_event: Optional[threading.Event] = None) -> List[Resource]:
        cancel_event = cancel_event or threading.Event()

        regions = options.regions or self.default_regions or self.get_regions()
        resource_types = []
        for requested in options.resource_types or self.get_resource_types():
            resource_type = self._normalize_type(requested)
            if resource_type not in self._discoverers:
                logger.warning(f"Unsupported AWS resource type: {requested}")
                continue
            resource_types.append(resource_type)

        resources: List[Resource] = []
        attempted = 0
        failures: List[str] = []

        for region in regions:
            if cancel_event.is_set():
                logger.info("AWS discovery cancelled")
                break
            logger.info(f"Discovering AWS resources in region: {region}")
            ec2_client = self.session.client('ec2', region_name=region)

            for resource_type in resource_types:
                if cancel_event.is_set():
                    break
                attempted += 1
                try:
                    found = self._discoverers[resource_type](ec2_client, region)
                    logger.debug(f"Found {len(found)} {resource_type} in {region}")
                    resources.extend(found)
                except (ClientError, BotoCoreError) as e:
                    logger.warning(f"Failed to discover {resource_type} in {region}: {str(e)}")
                    failures.append(f"{resource_type}@{region}: {str(e)}")

        if attempted and len(failures) == attempted:
            raise ConnectorError(f"All AWS discovery calls failed; first error: {failures[0]}", provider='aws')

        return resources

    def _discover_vpcs(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_vpcs')
        for page in paginator.paginate():
            for vpc in page['Vpcs']:
                tags = _tags(vpc.get('Tags'))
                resources.append(Resource(
                    id=vpc['VpcId'],
                    name=_name(tags),
                    type='aws_vpc',
                    provider=CloudProvider.AWS,
                    region=region,
                    metadata=_compact({
                        'cidr_block': vpc.get('CidrBlock'),
                        'state': vpc.get('State'),
                        'is_default': vpc.get('IsDefault', False),
                        'instance_tenancy': vpc.get('InstanceTenancy'),
                        'dhcp_options_id': vpc.get('DhcpOptionsId'),
                    }),
                    tags=tags,
                ))
        return resources

    def _discover_subnets(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_subnets')
        for page in paginator.paginate():
            for subnet in page['Subnets']:
                tags = _tags(subnet.get('Tags'))
                resources.append(Resource(
                    id=subnet['SubnetId'],
                    name=_name(tags),
                    type='aws_subnet',
                    provider=CloudProvider.AWS,
                    region=region,
                    zone=subnet.get('AvailabilityZone', ''),
                    metadata=_compact({
                        'vpc_id': subnet.get('VpcId'),
                        'cidr_block': subnet.get('CidrBlock'),
                        'state': subnet.get('State'),
                        'map_public_ip_on_launch': subnet.get('MapPublicIpOnLaunch', False),
                        'available_ip_address_count': subnet.get('AvailableIpAddressCount'),
                    }),
                    tags=tags,
                ))
        return resources

    def _discover_security_groups(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_security_groups')
        for page in paginator.paginate():
            for group in page['SecurityGroups']:
                tags = _tags(group.get('Tags'))
                resources.append(Resource(
                    id=group['GroupId'],
                    name=group.get('GroupName', ''),
                    type='aws_security_group',
                    provider=CloudProvider.AWS,
                    region=region,
                    metadata=_compact({
                        'group_name': group.get('GroupName'),
                        'vpc_id': group.get('VpcId'),
                        'description': group.get('Description'),
                        'owner_id': group.get('OwnerId'),
                        'ingress_rules': len(group.get('IpPermissions', [])),
                        'egress_rules': len(group.get('IpPermissionsEgress', [])),
                    }),
                    tags=tags,
                ))
        return resources

    def _discover_instances(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_instances')
        for page in paginator.paginate():
            for reservation in page['Reservations']:
                for instance in reservation['Instances']:
                    tags = _tags(instance.get('Tags'))
                    resources.append(Resource(
                        id=instance['InstanceId'],
                        name=_name(tags),
                        type='aws_instance',
                        provider=CloudProvider.AWS,
                        region=region,
                        zone=instance.get('Placement', {}).get('AvailabilityZone', ''),
                        metadata=_compact({
                            'instance_type': instance.get('InstanceType'),
                            'state': instance.get('State', {}).get('Name'),
                            'image_id': instance.get('ImageId'),
                            'vpc_id': instance.get('VpcId'),
                            'subnet_id': instance.get('SubnetId'),
                            'private_ip': instance.get('PrivateIpAddress'),
                            'public_ip': instance.get('PublicIpAddress'),
                            'key_name': instance.get('KeyName'),
                            'vpc_security_group_ids': [g['GroupId'] for g in instance.get('SecurityGroups', [])],
                        }),
                        tags=tags,
                        created_at=instance.get('LaunchTime'),
                    ))
        return resources

    def _discover_internet_gateways(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_internet_gateways')
        for page in paginator.paginate():
            for gateway in page['InternetGateways']:
                tags = _tags(gateway.get('Tags'))
                attachments = gateway.get('Attachments', [])
                resources.append(Resource(
                    id=gateway['InternetGatewayId'],
                    name=_name(tags),
                    type='aws_internet_gateway',
                    provider=CloudProvider.AWS,
                    region=region,
                    metadata=_compact({
                        'vpc_id': attachments[0].get('VpcId') if attachments else None,
                        'owner_id': gateway.get('OwnerId'),
                    }),
                    tags=tags,
                ))
        return resources

    def _discover_route_tables(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_route_tables')
        for page in paginator.paginate():
            for table in page['RouteTables']:
                tags = _tags(table.get('Tags'))
                associations = table.get('Associations', [])
                resources.append(Resource(
                    id=table['RouteTableId'],
                    name=_name(tags),
                    type='aws_route_table',
                    provider=CloudProvider.AWS,
                    region=region,
                    metadata=_compact({
                        'vpc_id': table.get('VpcId'),
                        'main': any(a.get('Main', False) for a in associations),
                        'route_count': len(table.get('Routes', [])),
                    }),
                    tags=tags,
                ))
        return resources

    def _discover_nat_gateways(self, ec2_client, region: str) -> List[Resource]:
        resources = []
        paginator = ec2_client.get_paginator('describe_nat_gateways')
        for page in paginator.paginate():
            for gateway in page['NatGateways']:
                tags = _tags(gateway.get('Tags'))
                addresses = gateway.get('NatGatewayAddresses', [])
                resources.append(Resource(
                    id=gateway['NatGatewayId'],
                    name=_name(tags),
                    type='aws_nat_gateway',
                    provider=CloudProvider.AWS,
                    region=region,
                    metadata=_compact({
                        'vpc_id': gateway.get('VpcId'),
                        'subnet_id': gateway.get('SubnetId'),
                        'state': gateway.get('State'),
                        'allocation_id': addresses[0].get('AllocationId') if addresses else None,
                    }),
                    tags=tags,
                    created_at=gateway.get('CreateTime'),
                ))
        return resources

    def _discover_elastic_ips(self, ec2_client, region: str) -> List[Resource]:
        # describe_addresses has no paginator
        response = ec2_client.describe_addresses()
        resources = []
        for address in response.get('Addresses', []):
            tags = _tags(address.get('Tags'))
            resources.append(Resource(
                id=address.get('AllocationId') or address['PublicIp'],
                name=_name(tags),
                type='aws_elastic_ip',
                provider=CloudProvider.AWS,
                region=region,
                metadata=_compact({
                    'public_ip': address.get('PublicIp'),
                    'domain': address.get('Domain'),
                    'instance_id': address.get('InstanceId'),
                    'association_id': address.get('AssociationId'),
                }),
                tags=tags,
            ))
        return resources
