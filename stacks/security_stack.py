#!/usr/bin/env python3
from typing import Optional

from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_secretsmanager as secretsmanager,
    CfnOutput,
)
from constructs import Construct

from config.base import InfraConfig, export_name


class SecurityStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        config: InfraConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # ALB Security Group
        self.load_balancer_security_group = ec2.SecurityGroup(
            self,
            "AlbSecurityGroup",
            vpc=vpc,
            allow_all_outbound=True,
            description="Security group for the public Application Load Balancer",
        )
        self.load_balancer_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(80), "Allow inbound HTTP"
        )
        self.load_balancer_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "Allow inbound HTTPS"
        )

        # Application Security Group (EC2 instance or Fargate tasks)
        self.application_security_group = ec2.SecurityGroup(
            self,
            "ApplicationSecurityGroup",
            vpc=vpc,
            allow_all_outbound=True,
            description="Security group for the application compute",
        )
        self.application_security_group.add_ingress_rule(
            self.load_balancer_security_group,
            ec2.Port.tcp(config.app_port),
            "Allow ALB to reach the application",
        )

        # Application role, trusted by the compute service
        if config.is_fargate:
            principal = "ecs-tasks.amazonaws.com"
            managed_policies = [
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "CloudWatchAgentServerPolicy"
                ),
            ]
        else:
            principal = "ec2.amazonaws.com"
            managed_policies = [
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AmazonSSMManagedInstanceCore"
                ),
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "CloudWatchAgentServerPolicy"
                ),
            ]

        self.application_role = iam.Role(
            self,
            "ApplicationRole",
            assumed_by=iam.ServicePrincipal(principal),
            description="Application role permitting Session Manager access and logging",
            managed_policies=managed_policies,
        )

        # ec2-user password for serial console access
        self.ec2_user_password_secret: Optional[secretsmanager.Secret] = None
        if not config.is_fargate:
            self.ec2_user_password_secret = secretsmanager.Secret(
                self,
                "Ec2UserPasswordSecret",
                description="Password for ec2-user account for serial console access",
                generate_secret_string=secretsmanager.SecretStringGenerator(
                    secret_string_template="{}",
                    generate_string_key="password",
                    exclude_characters=" \"'\\/@",
                    include_space=False,
                    password_length=16,
                ),
            )

        # Outputs
        CfnOutput(
            self,
            "AlbSecurityGroupId",
            value=self.load_balancer_security_group.security_group_id,
            description="Security group for the ALB",
            export_name=export_name(self, "AlbSecurityGroupId"),
        )

        CfnOutput(
            self,
            "ApplicationSecurityGroupId",
            value=self.application_security_group.security_group_id,
            description="Security group for the application compute",
            export_name=export_name(self, "ApplicationSecurityGroupId"),
        )

        CfnOutput(
            self,
            "ApplicationRoleArn",
            value=self.application_role.role_arn,
            description="ARN of the application IAM role",
        )
