#!/usr/bin/env python3
import aws_cdk as cdk
from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    CfnOutput,
)
from constructs import Construct

from config.base import InfraConfig, export_name


class NetworkStack(Stack):
    def __init__(
        self, scope: Construct, construct_id: str, config: InfraConfig, **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Three-tier VPC: ALB in public, compute in private, database isolated
        self.vpc = ec2.Vpc(
            self,
            "ApplicationVpc",
            ip_addresses=ec2.IpAddresses.cidr(config.vpc_cidr),
            max_azs=config.max_azs,
            nat_gateways=config.nat_gateways,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                ),
                ec2.SubnetConfiguration(
                    name="PrivateWithEgress",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=24,
                ),
                ec2.SubnetConfiguration(
                    name="Isolated",
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=24,
                ),
            ],
        )

        self.public_subnets = self.vpc.select_subnets(
            subnet_type=ec2.SubnetType.PUBLIC
        )
        self.private_subnets = self.vpc.select_subnets(
            subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
        )
        self.isolated_subnets = self.vpc.select_subnets(
            subnet_type=ec2.SubnetType.PRIVATE_ISOLATED
        )

        # Outputs
        CfnOutput(
            self,
            "VpcId",
            value=self.vpc.vpc_id,
            description="Provisioned VPC identifier",
            export_name=export_name(self, "VpcId"),
        )

        CfnOutput(
            self,
            "VpcCidr",
            value=self.vpc.vpc_cidr_block,
            description="CIDR block of the VPC",
            export_name=export_name(self, "VpcCidr"),
        )

        CfnOutput(
            self,
            "PublicSubnetIds",
            value=cdk.Fn.join(",", self.public_subnets.subnet_ids),
            description="Public subnet identifiers",
        )

        CfnOutput(
            self,
            "PrivateSubnetIds",
            value=cdk.Fn.join(",", self.private_subnets.subnet_ids),
            description="Private subnet identifiers",
        )

        CfnOutput(
            self,
            "IsolatedSubnetIds",
            value=cdk.Fn.join(",", self.isolated_subnets.subnet_ids),
            description="Isolated subnet identifiers",
        )
