#!/usr/bin/env python3
import logging

from aws_cdk import (
    Stack,
    aws_certificatemanager as acm,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cw_actions,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_ecs_patterns as ecs_patterns,
    aws_elasticloadbalancingv2 as elbv2,
    Duration,
    CfnOutput,
)
from constructs import Construct

from config.base import InfraConfig
from stacks.database_stack import DatabaseStack
from stacks.monitoring_stack import MonitoringStack
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack

logger = logging.getLogger(__name__)


def jdbc_url(host: str, port: str, database_name: str) -> str:
    return f"jdbc:postgresql://{host}:{port}/{database_name}"


class FargateComputeStack(Stack):
    """Containerised application on ECS Fargate behind a public ALB."""

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

        # ECS Cluster
        self.cluster = ecs.Cluster(
            self,
            "EcsCluster",
            vpc=vpc,
            container_insights_v2=ecs.ContainerInsights.ENABLED,
        )

        # Load balancer shares the security stack's ALB security group
        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "ApplicationAlb",
            vpc=vpc,
            internet_facing=True,
            security_group=security.load_balancer_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )

        if config.ecr_repository_name:
            image = ecs.ContainerImage.from_ecr_repository(
                ecr.Repository.from_repository_name(
                    self, "ApplicationRepository", config.ecr_repository_name
                ),
                config.image_tag,
            )
        else:
            image = ecs.ContainerImage.from_registry(config.container_image)

        listener_options = {}
        if config.alb_certificate_arn:
            logger.info("HTTPS listener enabled, HTTP redirects to 443")
            listener_options = dict(
                protocol=elbv2.ApplicationProtocol.HTTPS,
                certificate=acm.Certificate.from_certificate_arn(
                    self, "AlbCertificate", config.alb_certificate_arn
                ),
                redirect_http=True,
            )

        # Fargate service
        self.service = ecs_patterns.ApplicationLoadBalancedFargateService(
            self,
            "ApplicationService",
            cluster=self.cluster,
            load_balancer=self.load_balancer,
            cpu=config.task_cpu,
            memory_limit_mib=config.task_memory_mib,
            desired_count=config.desired_count,
            task_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
            security_groups=[security.application_security_group],
            task_image_options=ecs_patterns.ApplicationLoadBalancedTaskImageOptions(
                image=image,
                container_port=config.app_port,
                task_role=security.application_role,
                environment={
                    "DB_HOST": database.endpoint_hostname,
                    "DB_PORT": database.endpoint_port,
                    "DB_NAME": database.database_name,
                    "DB_READER_HOST": database.reader_endpoint_hostname,
                    "SPRING_DATASOURCE_URL": jdbc_url(
                        database.endpoint_hostname,
                        database.endpoint_port,
                        database.database_name,
                    ),
                    "SPRING_DATASOURCE_READONLY_URL": jdbc_url(
                        database.reader_endpoint_hostname,
                        database.endpoint_port,
                        database.database_name,
                    ),
                },
                secrets={
                    "DB_USERNAME": ecs.Secret.from_secrets_manager(
                        database.secret, "username"
                    ),
                    "DB_PASSWORD": ecs.Secret.from_secrets_manager(
                        database.secret, "password"
                    ),
                },
                log_driver=ecs.LogDrivers.aws_logs(
                    stream_prefix=config.resource_prefix,
                    log_group=monitoring.application_log_group,
                ),
            ),
            health_check_grace_period=Duration.seconds(60),
            min_healthy_percent=100,
            max_healthy_percent=200,
            circuit_breaker=ecs.DeploymentCircuitBreaker(rollback=True),
            # 80/443 ingress already lives on the ALB security group
            open_listener=False,
            **listener_options,
        )

        # Target Group tuning
        self.service.target_group.set_attribute(
            "deregistration_delay.timeout_seconds", "10"
        )
        self.service.target_group.configure_health_check(
            path=config.health_check_path,
            healthy_http_codes="200-399",
            healthy_threshold_count=2,
            unhealthy_threshold_count=5,
            interval=Duration.seconds(30),
            timeout=Duration.seconds(10),
        )

        # Auto scaling on CPU and memory
        scalable_target = self.service.service.auto_scale_task_count(
            min_capacity=config.min_tasks,
            max_capacity=config.max_tasks,
        )
        scalable_target.scale_on_cpu_utilization(
            "CpuScaling",
            target_utilization_percent=70,
            scale_in_cooldown=Duration.seconds(60),
            scale_out_cooldown=Duration.seconds(60),
        )
        scalable_target.scale_on_memory_utilization(
            "MemoryScaling",
            target_utilization_percent=70,
            scale_in_cooldown=Duration.seconds(60),
            scale_out_cooldown=Duration.seconds(60),
        )

        # Alarms
        cpu_metric = self.service.service.metric_cpu_utilization(
            statistic="Average", period=Duration.minutes(5)
        )
        cpu_alarm = cloudwatch.Alarm(
            self,
            "ServiceHighCpu",
            alarm_description="Fargate service CPU above 80%",
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
                title="Fargate Service Utilization",
                left=[
                    cpu_metric,
                    self.service.service.metric_memory_utilization(
                        statistic="Average", period=Duration.minutes(5)
                    ),
                ],
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Load Balancer Traffic",
                left=[
                    self.load_balancer.metrics.request_count(
                        statistic="Sum", period=Duration.minutes(5)
                    ),
                    alb_5xx_metric,
                ],
                width=12,
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
            "ServiceName",
            value=self.service.service.service_name,
            description="ECS service name",
        )

        CfnOutput(
            self,
            "DashboardUrl",
            value=f"https://{self.region}.console.aws.amazon.com/cloudwatch/home?region={self.region}#dashboards:name={self.dashboard.dashboard_name}",
            description="CloudWatch Dashboard URL",
        )
