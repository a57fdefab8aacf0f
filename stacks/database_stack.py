#!/usr/bin/env python3
import aws_cdk as cdk
from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_rds as rds,
    Duration,
    RemovalPolicy,
    CfnOutput,
)
from constructs import Construct

from config.base import InfraConfig, export_name

POSTGRES_PORT = 5432


class DatabaseStack(Stack):
    """PostgreSQL storage: Aurora Serverless v2 cluster or a Multi-AZ RDS instance."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        application_security_group: ec2.ISecurityGroup,
        config: InfraConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.database_name = config.database_name
        self.cluster = None
        self.instance = None

        removal_policy = (
            RemovalPolicy.RETAIN if config.deletion_protection else RemovalPolicy.DESTROY
        )
        isolated = ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED)

        # Database Security Group
        self.security_group = ec2.SecurityGroup(
            self,
            "DatabaseSecurityGroup",
            vpc=vpc,
            allow_all_outbound=False,
            description="Security group for the PostgreSQL database",
        )
        self.security_group.add_ingress_rule(
            application_security_group,
            ec2.Port.tcp(POSTGRES_PORT),
            "Allow application SG to reach PostgreSQL",
        )

        subnet_group = rds.SubnetGroup(
            self,
            "DatabaseSubnetGroup",
            description="Isolated subnets for the PostgreSQL database",
            vpc=vpc,
            vpc_subnets=isolated,
            removal_policy=RemovalPolicy.DESTROY,
        )

        credentials = rds.Credentials.from_generated_secret(config.database_username)

        if config.database_engine == "aurora-serverless":
            engine = rds.DatabaseClusterEngine.aurora_postgres(
                version=rds.AuroraPostgresEngineVersion.VER_16_6
            )

            parameter_group = rds.ParameterGroup(
                self,
                "AuroraClusterParameterGroup",
                engine=engine,
                description="Aurora PostgreSQL parameters with statement statistics",
                parameters={
                    "shared_preload_libraries": "pg_stat_statements",
                    "log_min_duration_statement": "1000",  # milliseconds
                },
            )

            self.cluster = rds.DatabaseCluster(
                self,
                "AuroraCluster",
                engine=engine,
                credentials=credentials,
                default_database_name=self.database_name,
                writer=rds.ClusterInstance.serverless_v2(
                    "Writer",
                    enable_performance_insights=True,
                ),
                readers=[
                    rds.ClusterInstance.serverless_v2(
                        f"Reader{index + 1}",
                        scale_with_writer=True,
                    )
                    for index in range(config.reader_instances)
                ],
                serverless_v2_min_capacity=config.min_capacity,
                serverless_v2_max_capacity=config.max_capacity,
                vpc=vpc,
                vpc_subnets=isolated,
                subnet_group=subnet_group,
                security_groups=[self.security_group],
                parameter_group=parameter_group,
                storage_encrypted=True,
                backup=rds.BackupProps(
                    retention=Duration.days(config.backup_retention_days),
                    preferred_window="02:00-03:00",
                ),
                cloudwatch_logs_exports=["postgresql"],
                deletion_protection=config.deletion_protection,
                removal_policy=removal_policy,
            )
            secret = self.cluster.secret
            self.endpoint_hostname = self.cluster.cluster_endpoint.hostname
            self.endpoint_port = cdk.Token.as_string(self.cluster.cluster_endpoint.port)
            self.reader_endpoint_hostname = self.cluster.cluster_read_endpoint.hostname
            rotation_target = self.cluster
        else:
            self.instance = rds.DatabaseInstance(
                self,
                "PostgresInstance",
                engine=rds.DatabaseInstanceEngine.postgres(
                    version=rds.PostgresEngineVersion.VER_16_6
                ),
                instance_type=ec2.InstanceType.of(
                    ec2.InstanceClass.T4G, ec2.InstanceSize.MICRO
                ),
                credentials=credentials,
                database_name=self.database_name,
                vpc=vpc,
                vpc_subnets=isolated,
                subnet_group=subnet_group,
                security_groups=[self.security_group],
                multi_az=True,
                allocated_storage=100,
                storage_encrypted=True,
                backup_retention=Duration.days(config.backup_retention_days),
                preferred_backup_window="02:00-03:00",
                cloudwatch_logs_exports=["postgresql"],
                deletion_protection=config.deletion_protection,
                removal_policy=removal_policy,
            )
            secret = self.instance.secret
            self.endpoint_hostname = self.instance.db_instance_endpoint_address
            self.endpoint_port = self.instance.db_instance_endpoint_port
            # Single instance: readers share the writer endpoint
            self.reader_endpoint_hostname = self.endpoint_hostname
            rotation_target = self.instance

        if secret is None:
            raise RuntimeError("Database credentials secret was not generated")
        self.secret = secret

        rotation_target.add_rotation_single_user(
            automatically_after=Duration.days(config.secret_rotation_days),
            vpc_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
        )

        # Outputs
        CfnOutput(
            self,
            "DatabaseEndpoint",
            value=self.endpoint_hostname,
            description="Database endpoint for write operations",
            export_name=export_name(self, "DatabaseEndpoint"),
        )

        CfnOutput(
            self,
            "DatabaseReaderEndpoint",
            value=self.reader_endpoint_hostname,
            description="Database endpoint for read operations",
            export_name=export_name(self, "DatabaseReaderEndpoint"),
        )

        CfnOutput(
            self,
            "DatabaseSecretArn",
            value=self.secret.secret_arn,
            description="ARN of the secret containing database credentials",
            export_name=export_name(self, "DatabaseSecretArn"),
        )

        CfnOutput(
            self,
            "DatabaseName",
            value=self.database_name,
            description="Default database name",
            export_name=export_name(self, "DatabaseName"),
        )
