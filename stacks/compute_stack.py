#!/usr/bin/env python3
import logging

from aws_cdk import (
    Stack,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cw_actions,
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    aws_elasticloadbalancingv2_targets as targets,
    aws_iam as iam,
    aws_ssm as ssm,
    Duration,
    CfnOutput,
)
from constructs import Construct

from config.base import InfraConfig
from stacks.agent_config import (
    METRICS_NAMESPACE,
    agent_parameter_name,
    render_agent_config,
)
from stacks.database_stack import DatabaseStack
from stacks.monitoring_stack import MonitoringStack
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack

logger = logging.getLogger(__name__)


class ComputeStack(Stack):
    """EC2 application instance behind a public Application Load Balancer."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        security: SecurityStack,
        database: DatabaseStack,
        monitoring: MonitoringStack,
        config: InfraConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        vpc = network.vpc
        role = security.application_role

        # EC2 instance
        self.instance = ec2.Instance(
            self,
            "ApplicationInstance",
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
            role=role,
            security_group=security.application_security_group,
            require_imdsv2=True,
            machine_image=ec2.MachineImage.latest_amazon_linux2023(
                cpu_type=ec2.AmazonLinuxCpuType.X86_64,
            ),
            instance_type=ec2.InstanceType(config.instance_type),
            detailed_monitoring=True,
        )

        # Secret access, owned here so the security stack keeps no reference back
        readable_secrets = [database.secret.secret_arn]
        if security.ec2_user_password_secret is not None:
            readable_secrets.append(security.ec2_user_password_secret.secret_arn)
        iam.Policy(
            self,
            "ApplicationSecretsPolicy",
            roles=[role],
            statements=[
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "secretsmanager:GetSecretValue",
                        "secretsmanager:DescribeSecret",
                    ],
                    resources=readable_secrets,
                )
            ],
        )

        # CloudWatch agent: config in Parameter Store, installed by State Manager
        self.agent_config_parameter = ssm.StringParameter(
            self,
            "CloudWatchAgentConfig",
            parameter_name=agent_parameter_name(config.resource_prefix),
            description="CloudWatch agent configuration for the application instance",
            string_value=render_agent_config(
                monitoring.application_log_group.log_group_name,
                monitoring.system_log_group.log_group_name,
            ),
        )

        instance_targets = [
            ssm.CfnAssociation.TargetProperty(
                key="InstanceIds", values=[self.instance.instance_id]
            )
        ]
        install_agent = ssm.CfnAssociation(
            self,
            "InstallCloudWatchAgent",
            name="AWS-ConfigureAWSPackage",
            targets=instance_targets,
            parameters={
                "action": ["Install"],
                "name": ["AmazonCloudWatchAgent"],
            },
        )
        configure_agent = ssm.CfnAssociation(
            self,
            "ConfigureCloudWatchAgent",
            name="AmazonCloudWatch-ManageAgent",
            targets=instance_targets,
            parameters={
                "action": ["configure"],
                "mode": ["ec2"],
                "optionalConfigurationSource": ["ssm"],
                "optionalConfigurationLocation": [
                    self.agent_config_parameter.parameter_name
                ],
                "optionalRestart": ["yes"],
            },
        )
        configure_agent.add_dependency(install_agent)

        # Application Load Balancer
        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "ApplicationAlb",
            vpc=vpc,
            internet_facing=True,
            security_group=security.load_balancer_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )

        self.target_group = elbv2.ApplicationTargetGroup(
            self,
            "Ec2TargetGroup",
            vpc=vpc,
            port=config.app_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[targets.InstanceTarget(self.instance, config.app_port)],
            health_check=elbv2.HealthCheck(
                path=config.health_check_path,
                healthy_http_codes="200-399",
                interval=Duration.seconds(30),
                timeout=Duration.seconds(10),
                healthy_threshold_count=2,
                unhealthy_threshold_count=3,
            ),
        )

        # Listeners stay closed: 80/443 ingress already lives on the ALB security group
        if config.alb_certificate_arn:
            logger.info("HTTPS listener enabled, HTTP redirects to 443")
            self.load_balancer.add_listener(
                "HttpsListener",
                port=443,
                open=False,
                certificates=[
                    elbv2.ListenerCertificate.from_arn(config.alb_certificate_arn)
                ],
                default_target_groups=[self.target_group],
            )
            self.load_balancer.add_listener(
                "HttpListener",
                port=80,
                open=False,
                default_action=elbv2.ListenerAction.redirect(
                    protocol="HTTPS", port="443", permanent=True
                ),
            )
        else:
            self.load_balancer.add_listener(
                "HttpListener",
                port=80,
                open=False,
                default_target_groups=[self.target_group],
            )

        # Alarms
        cpu_metric = cloudwatch.Metric(
            namespace="AWS/EC2",
            metric_name="CPUUtilization",
            dimensions_map={"InstanceId": self.instance.instance_id},
            statistic="Average",
            period=Duration.minutes(5),
        )

        cpu_alarm = cloudwatch.Alarm(
            self,
            "Ec2HighCpu",
            alarm_description="Application instance CPU above 80%",
            metric=cpu_metric,
            threshold=80,
            evaluation_periods=3,
            datapoints_to_alarm=2,
            comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )

        alb_5xx_metric = self.load_balancer.metrics.http_code_elb(
            elbv2.HttpCodeElb.ELB_5XX_COUNT,
            statistic="Sum",
            period=Duration.minutes(5),
        )

        alb_5xx_alarm = cloudwatch.Alarm(
            self,
            "Alb5xxAlarm",
            alarm_description="Load balancer returned more than 5 5xx responses",
            metric=alb_5xx_metric,
            threshold=5,
            evaluation_periods=1,
            comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )

        cpu_alarm.add_alarm_action(cw_actions.SnsAction(monitoring.alerts_topic))
        alb_5xx_alarm.add_alarm_action(cw_actions.SnsAction(monitoring.alerts_topic))

        # CloudWatch Dashboard
        self.dashboard = cloudwatch.Dashboard(
            self,
            "ApplicationDashboard",
            dashboard_name=f"{config.resource_prefix}-application",
        )
        self.dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="EC2 CPU Utilization",
                left=[cpu_metric],
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Application Memory and Disk",
                left=[
                    cloudwatch.Metric(
                        namespace=METRICS_NAMESPACE,
                        metric_name="mem_used_percent",
                        dimensions_map={"InstanceId": self.instance.instance_id},
                        statistic="Average",
                        period=Duration.minutes(5),
                    ),
                ],
                width=12,
                height=6,
            ),
        )
        self.dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="Load Balancer Traffic",
                left=[
                    self.load_balancer.metrics.request_count(
                        statistic="Sum", period=Duration.minutes(5)
                    ),
                    alb_5xx_metric,
                ],
                right=[
                    self.load_balancer.metrics.target_response_time(
                        statistic="Average", period=Duration.minutes(5)
                    ),
                ],
                width=24,
                height=6,
            ),
        )

        # Outputs
        CfnOutput(
            self,
            "AlbDnsName",
            value=self.load_balancer.load_balancer_dns_name,
            description="DNS name of the Application Load Balancer",
        )

        CfnOutput(
            self,
            "InstanceId",
            value=self.instance.instance_id,
            description="EC2 instance identifier",
        )

        CfnOutput(
            self,
            "DashboardUrl",
            value=f"https://{self.region}.console.aws.amazon.com/cloudwatch/home?region={self.region}#dashboards:name={self.dashboard.dashboard_name}",
            description="CloudWatch Dashboard URL",
        )
