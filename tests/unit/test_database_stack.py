"""
Unit tests for the Database Stack
Tests Aurora Serverless v2, the RDS instance variant, rotation and the secret guard
"""

import dataclasses

import aws_cdk as core
import aws_cdk.assertions as assertions
import pytest
from aws_cdk import aws_rds as rds

from stacks.database_stack import DatabaseStack
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack

Match = assertions.Match


def make_database_stack(app, config, construct_id="Database"):
    network = NetworkStack(app, "NetworkForDb", config=config, env=config.env)
    security = SecurityStack(
        app, "SecurityForDb", vpc=network.vpc, config=config, env=config.env
    )
    return DatabaseStack(
        app,
        construct_id,
        vpc=network.vpc,
        application_security_group=security.application_security_group,
        config=config,
        env=config.env,
    )


class TestAuroraDatabaseStack:
    """Test class for the Aurora Serverless v2 database"""

    @pytest.fixture
    def stack(self, app, config):
        return make_database_stack(app, config)

    @pytest.fixture
    def template(self, stack):
        return assertions.Template.from_stack(stack)

    def test_stack_has_required_resources(self, stack):
        assert stack.cluster is not None
        assert stack.instance is None
        assert stack.secret is not None
        assert stack.database_name == "appdb"

    def test_serverless_v2_cluster(self, template):
        """Aurora PostgreSQL with the configured capacity bounds"""
        template.has_resource_properties(
            "AWS::RDS::DBCluster",
            {
                "Engine": "aurora-postgresql",
                "EngineVersion": "16.6",
                "DatabaseName": "appdb",
                "ServerlessV2ScalingConfiguration": {
                    "MaxCapacity": 2,
                    "MinCapacity": 0.5,
                },
                "StorageEncrypted": True,
                "BackupRetentionPeriod": 7,
                "PreferredBackupWindow": "02:00-03:00",
                "EnableCloudwatchLogsExports": ["postgresql"],
            },
        )

    def test_writer_only_by_default(self, template):
        template.resource_count_is("AWS::RDS::DBInstance", 1)
        template.has_resource_properties(
            "AWS::RDS::DBInstance",
            {"DBInstanceClass": "db.serverless", "EnablePerformanceInsights": True},
        )

    def test_generated_credentials(self, template):
        template.has_resource_properties(
            "AWS::SecretsManager::Secret",
            {
                "GenerateSecretString": Match.object_like(
                    {"SecretStringTemplate": '{"username":"app_user"}'}
                )
            },
        )

    def test_secret_rotation(self, template):
        template.resource_count_is("AWS::SecretsManager::RotationSchedule", 1)
        template.has_resource_properties(
            "AWS::SecretsManager::RotationSchedule",
            {"RotationRules": {"ScheduleExpression": "rate(30 days)"}},
        )

    def test_parameter_group(self, template):
        template.has_resource_properties(
            "AWS::RDS::DBClusterParameterGroup",
            {
                "Parameters": {
                    "shared_preload_libraries": "pg_stat_statements",
                    "log_min_duration_statement": "1000",
                }
            },
        )

    def test_application_security_group_reaches_postgres(self, template):
        template.has_resource_properties(
            "AWS::EC2::SecurityGroupIngress",
            {
                "IpProtocol": "tcp",
                "FromPort": 5432,
                "ToPort": 5432,
                "SourceSecurityGroupId": Match.any_value(),
            },
        )

    def test_database_security_group_has_no_default_egress(self, template):
        template.has_resource_properties(
            "AWS::EC2::SecurityGroup",
            {
                "GroupDescription": "Security group for the PostgreSQL database",
                "SecurityGroupEgress": Match.array_with(
                    [Match.object_like({"CidrIp": "255.255.255.255/32"})]
                ),
            },
        )

    def test_destroy_removal_policy_by_default(self, template):
        template.has_resource(
            "AWS::RDS::DBCluster",
            {"DeletionPolicy": "Delete", "UpdateReplacePolicy": "Delete"},
        )

    def test_stack_outputs(self, template):
        template.has_output(
            "DatabaseEndpoint", {"Export": {"Name": "Database-DatabaseEndpoint"}}
        )
        template.has_output(
            "DatabaseReaderEndpoint",
            {"Export": {"Name": "Database-DatabaseReaderEndpoint"}},
        )
        template.has_output(
            "DatabaseSecretArn", {"Export": {"Name": "Database-DatabaseSecretArn"}}
        )
        template.has_output("DatabaseName", {"Value": "appdb"})


class TestDatabaseStackOptions:
    """Engine and protection variants"""

    def test_readers_scale_with_writer(self, app, config):
        config = dataclasses.replace(config, reader_instances=2)
        template = assertions.Template.from_stack(make_database_stack(app, config))

        template.resource_count_is("AWS::RDS::DBInstance", 3)
        template.has_resource_properties(
            "AWS::RDS::DBInstance", {"PromotionTier": 1}
        )

    def test_custom_capacity(self, app, config):
        config = dataclasses.replace(config, min_capacity=1, max_capacity=8)
        template = assertions.Template.from_stack(make_database_stack(app, config))

        template.has_resource_properties(
            "AWS::RDS::DBCluster",
            {"ServerlessV2ScalingConfiguration": {"MaxCapacity": 8, "MinCapacity": 1}},
        )

    def test_deletion_protection_retains_cluster(self, app, config):
        config = dataclasses.replace(config, deletion_protection=True)
        template = assertions.Template.from_stack(make_database_stack(app, config))

        template.has_resource(
            "AWS::RDS::DBCluster",
            {
                "DeletionPolicy": "Retain",
                "Properties": Match.object_like({"DeletionProtection": True}),
            },
        )

    def test_postgres_instance_engine(self, app, config):
        """The single-instance variant runs Multi-AZ PostgreSQL"""
        config = dataclasses.replace(config, database_engine="postgres")
        stack = make_database_stack(app, config)
        template = assertions.Template.from_stack(stack)

        assert stack.cluster is None
        assert stack.instance is not None
        template.resource_count_is("AWS::RDS::DBCluster", 0)
        template.has_resource_properties(
            "AWS::RDS::DBInstance",
            {
                "Engine": "postgres",
                "DBInstanceClass": "db.t4g.micro",
                "MultiAZ": True,
                "AllocatedStorage": "100",
                "StorageEncrypted": True,
                "DBName": "appdb",
                "BackupRetentionPeriod": 7,
            },
        )
        template.resource_count_is("AWS::SecretsManager::RotationSchedule", 1)

    def test_missing_generated_secret_fails_fast(self, app, config, monkeypatch):
        """Credentials that produce no secret are rejected at construct time"""
        monkeypatch.setattr(
            rds.Credentials,
            "from_generated_secret",
            lambda username, **kwargs: rds.Credentials.from_password(
                username, core.SecretValue.unsafe_plain_text("not-generated")
            ),
        )

        with pytest.raises(RuntimeError, match="secret was not generated"):
            make_database_stack(app, config)
