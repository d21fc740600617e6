"""boto3 implementation of the cloud provisioning backend.

Create calls are single round trips. Describe calls are retried on
ClientError since they are safe to repeat.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping, Sequence
from functools import cached_property
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import ClientError
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cirrus.constants import ASG_GROUP_NAME_TAG, CirrusTag
from cirrus.types import GroupDescriptor, InstanceDescriptor, KeyPair, SecurityGroup

from .config import AWS

if TYPE_CHECKING:
    from mypy_boto3_autoscaling import AutoScalingClient
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="aws")

_describe_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(ClientError),
    reraise=True,
)


def _managed_tags(name: str) -> list[dict[str, str]]:
    return [
        {"Key": "Name", "Value": name},
        {"Key": CirrusTag.MANAGED, "Value": "true"},
    ]


class AWSProvisioningBackend:
    """Creates security groups, key pairs, launch templates and autoscaling groups."""

    def __init__(self, config: AWS, session: boto3.Session | None = None) -> None:
        self.config = config
        self.session = session or boto3.Session(
            profile_name=config.profile, region_name=config.region
        )

    @cached_property
    def _ec2(self) -> EC2Client:
        return self.session.client("ec2", region_name=self.config.region)

    @cached_property
    def _autoscaling(self) -> AutoScalingClient:
        return self.session.client("autoscaling", region_name=self.config.region)

    # -------------------------------------------------------------------------
    # Networking
    # -------------------------------------------------------------------------

    @cached_property
    def _vpc_id(self) -> str:
        if self.config.subnet_ids:
            subnets = self._ec2.describe_subnets(SubnetIds=[self.config.subnet_ids[0]])
            return subnets["Subnets"][0]["VpcId"]

        vpcs = self._ec2.describe_vpcs(Filters=[{"Name": "is-default", "Values": ["true"]}])
        if not vpcs["Vpcs"]:
            raise RuntimeError("No default VPC found. Please create one or configure subnet_ids.")
        return vpcs["Vpcs"][0]["VpcId"]

    @cached_property
    def _subnet_ids(self) -> tuple[str, ...]:
        if self.config.subnet_ids:
            return self.config.subnet_ids

        subnets = self._ec2.describe_subnets(
            Filters=[{"Name": "vpc-id", "Values": [self._vpc_id]}]
        )
        if not subnets["Subnets"]:
            raise RuntimeError("No subnets found in default VPC.")
        return tuple(s["SubnetId"] for s in subnets["Subnets"])

    def create_security_group(self, name: str, description: str) -> SecurityGroup:
        response = self._ec2.create_security_group(
            GroupName=name,
            Description=description,
            VpcId=self._vpc_id,
            TagSpecifications=[{"ResourceType": "security-group", "Tags": _managed_tags(name)}],
        )
        log.info("Created security group {name} ({id})", name=name, id=response["GroupId"])
        return SecurityGroup(name=name, id=response["GroupId"])

    def add_ingress_rule(
        self,
        group: SecurityGroup,
        cidr: str,
        protocol: str,
        from_port: int,
        to_port: int,
    ) -> None:
        self._ec2.authorize_security_group_ingress(
            GroupId=group.id,
            IpPermissions=[
                {
                    "IpProtocol": protocol,
                    "FromPort": from_port,
                    "ToPort": to_port,
                    "IpRanges": [{"CidrIp": cidr}],
                }
            ],
        )

    def create_key_pair(self, name: str) -> KeyPair:
        response = self._ec2.create_key_pair(
            KeyName=name,
            TagSpecifications=[{"ResourceType": "key-pair", "Tags": _managed_tags(name)}],
        )
        return KeyPair(name=name, material=response["KeyMaterial"])

    # -------------------------------------------------------------------------
    # Launch templates and groups
    # -------------------------------------------------------------------------

    def create_launch_template(
        self,
        name: str,
        *,
        ami_id: str,
        instance_type: str,
        key_name: str,
        security_group: SecurityGroup,
        user_data: str,
    ) -> str:
        template_data: dict[str, Any] = {
            "ImageId": ami_id,
            "InstanceType": instance_type,
            "KeyName": key_name,
            "SecurityGroupIds": [security_group.id],
            "UserData": base64.b64encode(user_data.encode()).decode(),
            "TagSpecifications": [{"ResourceType": "instance", "Tags": _managed_tags(name)}],
        }
        response = self._ec2.create_launch_template(
            LaunchTemplateName=name,
            LaunchTemplateData=template_data,
        )
        return response["LaunchTemplate"]["LaunchTemplateId"]

    def create_autoscaling_group(
        self,
        name: str,
        *,
        launch_template: str,
        min_size: int,
        max_size: int,
        desired_capacity: int,
        tags: Mapping[str, str],
    ) -> None:
        self._autoscaling.create_auto_scaling_group(
            AutoScalingGroupName=name,
            LaunchTemplate={"LaunchTemplateName": launch_template, "Version": "$Latest"},
            MinSize=min_size,
            MaxSize=max_size,
            DesiredCapacity=desired_capacity,
            VPCZoneIdentifier=",".join(self._subnet_ids),
            Tags=[
                {
                    "ResourceId": name,
                    "ResourceType": "auto-scaling-group",
                    "Key": key,
                    "Value": value,
                    "PropagateAtLaunch": True,
                }
                for key, value in tags.items()
            ],
        )
        log.info(
            "Created autoscaling group {name} (min={min}, max={max}, desired={desired})",
            name=name,
            min=min_size,
            max=max_size,
            desired=desired_capacity,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @_describe_retry
    def list_instances(self, group_name: str, state: str | None = None) -> Sequence[InstanceDescriptor]:
        filters = [{"Name": f"tag:{ASG_GROUP_NAME_TAG}", "Values": [group_name]}]
        if state is not None:
            filters.append({"Name": "instance-state-name", "Values": [state]})

        instances: list[InstanceDescriptor] = []
        paginator = self._ec2.get_paginator("describe_instances")
        for page in paginator.paginate(Filters=filters):
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    instances.append(
                        InstanceDescriptor(
                            id=instance["InstanceId"],
                            public_address=instance.get("PublicIpAddress"),
                            state=instance["State"]["Name"],
                        )
                    )
        return instances

    @_describe_retry
    def find_groups(self, tags: Mapping[str, str]) -> Sequence[GroupDescriptor]:
        filters = [{"Name": f"tag:{key}", "Values": [value]} for key, value in tags.items()]

        groups: list[GroupDescriptor] = []
        paginator = self._autoscaling.get_paginator("describe_auto_scaling_groups")
        for page in paginator.paginate(Filters=filters):
            for group in page.get("AutoScalingGroups", []):
                groups.append(
                    GroupDescriptor(
                        name=group["AutoScalingGroupName"],
                        tags={t["Key"]: t["Value"] for t in group.get("Tags", [])},
                    )
                )
        return groups
