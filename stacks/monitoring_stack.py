#!/usr/bin/env python3
from aws_cdk import (
    Stack,
    aws_logs as logs,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
    RemovalPolicy,
    CfnOutput,
)
from constructs import Construct

from config.base import InfraConfig, export_name


class MonitoringStack(Stack):
    def __init__(
        self, scope: Construct, construct_id: str, config: InfraConfig, **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        retention = config.log_retention_days
        removal_policy = (
            RemovalPolicy.RETAIN if config.retain_logs else RemovalPolicy.DESTROY
        )

        # Log groups shipped to by the CloudWatch agent / awslogs driver
        self.application_log_group = logs.LogGroup(
            self,
            "ApplicationLogGroup",
            log_group_name=f"/{config.resource_prefix}/app/tomcat",
            retention=retention,
            removal_policy=removal_policy,
        )

        self.system_log_group = logs.LogGroup(
            self,
            "SystemLogGroup",
            log_group_name=f"/{config.resource_prefix}/system",
            retention=retention,
            removal_policy=removal_policy,
        )

        # SNS Topic for alarms raised by the compute stacks
        self.alerts_topic = sns.Topic(
            self,
            "AlertsTopic",
            topic_name=f"{config.resource_prefix}-alerts",
            display_name="Gaibu Application Alerts",
        )
        if config.alarm_email:
            self.alerts_topic.add_subscription(
                subscriptions.EmailSubscription(config.alarm_email)
            )

        # Outputs
        CfnOutput(
            self,
            "ApplicationLogGroupName",
            value=self.application_log_group.log_group_name,
            description="CloudWatch Logs group for Tomcat logs",
            export_name=export_name(self, "ApplicationLogGroupName"),
        )

        CfnOutput(
            self,
            "SystemLogGroupName",
            value=self.system_log_group.log_group_name,
            description="CloudWatch Logs group for system logs",
            export_name=export_name(self, "SystemLogGroupName"),
        )

        CfnOutput(
            self,
            "AlertsTopicArn",
            value=self.alerts_topic.topic_arn,
            description="SNS Topic ARN for alerts",
        )
