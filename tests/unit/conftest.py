"""Shared fixtures for the stack unit tests."""

import aws_cdk as core
import pytest

from config.base import InfraConfig
from stacks.database_stack import DatabaseStack
from stacks.monitoring_stack import MonitoringStack
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack

ACCOUNT = "123456789012"
REGION = "ap-northeast-1"


@pytest.fixture
def app():
    """Create CDK app for testing"""
    return core.App()


@pytest.fixture
def config():
    """Default EC2 / Aurora configuration in a concrete environment"""
    return InfraConfig(account=ACCOUNT, region=REGION)


@pytest.fixture
def fargate_config():
    return InfraConfig(account=ACCOUNT, region=REGION, compute_platform="fargate")


def build_upstream(app, config):
    """Network, security, monitoring and database stacks for a compute stack"""
    network = NetworkStack(app, "Network", config=config, env=config.env)
    security = SecurityStack(
        app, "Security", vpc=network.vpc, config=config, env=config.env
    )
    monitoring = MonitoringStack(app, "Monitoring", config=config, env=config.env)
    database = DatabaseStack(
        app,
        "Database",
        vpc=network.vpc,
        application_security_group=security.application_security_group,
        config=config,
        env=config.env,
    )
    return dict(
        network=network, security=security, monitoring=monitoring, database=database
    )


@pytest.fixture
def upstream():
    """Factory building the stacks a compute stack consumes"""
    return build_upstream
