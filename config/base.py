"""Configuration management for the Gaibu infrastructure stacks."""
from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import aws_cdk as cdk
from aws_cdk import aws_logs as logs
from constructs import Construct

logger = logging.getLogger(__name__)

DEFAULT_REGION = "ap-northeast-1"

STACK_NAMES = ("network", "security", "monitoring", "database", "compute")
COMPUTE_PLATFORMS = ("ec2", "fargate")
DATABASE_ENGINES = ("aurora-serverless", "postgres")

# Netmask bounds accepted by EC2 for a VPC
VPC_PREFIX_RANGE = (16, 28)

# Fargate task CPU units -> allowed memory (MiB)
FARGATE_TASK_SIZES = {
    256: (512, 1024, 2048),
    512: tuple(range(1024, 4097, 1024)),
    1024: tuple(range(2048, 8193, 1024)),
    2048: tuple(range(4096, 16385, 1024)),
    4096: tuple(range(8192, 30721, 1024)),
    8192: tuple(range(16384, 61441, 4096)),
    16384: tuple(range(32768, 122881, 8192)),
}


@dataclass
class InfraConfig:
    """Configuration for the Gaibu infrastructure.

    Attributes:
        account: AWS account ID, None for environment-agnostic synthesis
        region: AWS region for deployment
        only_stack: Stack subset selected with the STACK env var
        compute_platform: "ec2" or "fargate"
        database_engine: "aurora-serverless" or "postgres"
        alb_certificate_arn: ACM certificate enabling the HTTPS listener
    """

    account: Optional[str] = None
    region: str = DEFAULT_REGION
    only_stack: Optional[str] = None
    stack_prefix: str = "CdkPrdGaibu"
    resource_prefix: str = "cdk-prd-gaibu"

    # Network
    vpc_cidr: str = "10.0.0.0/16"
    max_azs: int = 2
    nat_gateways: int = 1

    # Compute
    compute_platform: str = "ec2"
    app_port: int = 8080
    health_check_path: str = "/"
    alb_certificate_arn: Optional[str] = None
    instance_type: str = "t3.micro"
    container_image: str = "amazon/amazon-ecs-sample"
    ecr_repository_name: Optional[str] = None
    image_tag: str = "latest"
    desired_count: int = 2
    min_tasks: int = 2
    max_tasks: int = 10
    task_cpu: int = 1024
    task_memory_mib: int = 2048

    # Database
    database_engine: str = "aurora-serverless"
    database_name: str = "appdb"
    database_username: str = "app_user"
    min_capacity: float = 0.5
    max_capacity: float = 2
    reader_instances: int = 0
    backup_retention_days: int = 7
    secret_rotation_days: int = 30
    deletion_protection: bool = False

    # Monitoring
    log_retention: str = "THREE_MONTHS"
    retain_logs: bool = True
    alarm_email: Optional[str] = None

    def __post_init__(self) -> None:
        self.validate()

    @property
    def env(self) -> cdk.Environment:
        return cdk.Environment(account=self.account, region=self.region)

    @property
    def is_fargate(self) -> bool:
        return self.compute_platform == "fargate"

    @property
    def log_retention_days(self) -> logs.RetentionDays:
        return logs.RetentionDays[self.log_retention]

    def stack_id(self, name: str) -> str:
        """Construct id for a stack, e.g. CdkPrdGaibuNetworkStack."""
        return f"{self.stack_prefix}{name.capitalize()}Stack"

    def validate(self) -> None:
        """Check value ranges and enumerations.

        Raises:
            ValueError: If a value is out of range or unknown.
        """
        try:
            network = ipaddress.IPv4Network(self.vpc_cidr)
        except ValueError as e:
            raise ValueError(f"vpcCidr is not a valid IPv4 CIDR block: {self.vpc_cidr}") from e
        if not VPC_PREFIX_RANGE[0] <= network.prefixlen <= VPC_PREFIX_RANGE[1]:
            raise ValueError(
                f"vpcCidr prefix must be between /{VPC_PREFIX_RANGE[0]} and "
                f"/{VPC_PREFIX_RANGE[1]}, got {self.vpc_cidr}"
            )

        if self.only_stack is not None and self.only_stack not in STACK_NAMES:
            raise ValueError(f"STACK must be one of {STACK_NAMES} or 'all', got {self.only_stack!r}")
        if self.max_azs < 1:
            raise ValueError(f"maxAzs must be at least 1, got {self.max_azs}")
        if self.nat_gateways < 0:
            raise ValueError(f"natGateways must not be negative, got {self.nat_gateways}")
        # Compute, agent installation and secret rotation run in PrivateWithEgress subnets
        if self.nat_gateways == 0 and self.only_stack in (None, "database", "compute"):
            raise ValueError(
                "natGateways must be at least 1 when the database or compute stack is "
                "deployed, private subnets need an egress route"
            )
        if not 0 < self.app_port < 65536:
            raise ValueError(f"appPort must be a TCP port, got {self.app_port}")
        if self.compute_platform not in COMPUTE_PLATFORMS:
            raise ValueError(
                f"computePlatform must be one of {COMPUTE_PLATFORMS}, got {self.compute_platform!r}"
            )
        if self.database_engine not in DATABASE_ENGINES:
            raise ValueError(
                f"databaseEngine must be one of {DATABASE_ENGINES}, got {self.database_engine!r}"
            )
        if not 0 <= self.min_capacity <= self.max_capacity <= 256:
            raise ValueError(
                "Serverless capacity must satisfy 0 <= minCapacity <= maxCapacity <= 256, "
                f"got {self.min_capacity}..{self.max_capacity}"
            )
        if self.reader_instances < 0:
            raise ValueError(f"readerInstances must not be negative, got {self.reader_instances}")
        if self.min_tasks < 1 or self.desired_count < 1 or self.max_tasks < self.min_tasks:
            raise ValueError(
                "Task counts must satisfy 1 <= minTasks <= maxTasks and desiredCount >= 1, "
                f"got min={self.min_tasks} desired={self.desired_count} max={self.max_tasks}"
            )
        if self.is_fargate and self.task_memory_mib not in FARGATE_TASK_SIZES.get(
            self.task_cpu, ()
        ):
            raise ValueError(
                f"taskCpu={self.task_cpu} with taskMemoryMiB={self.task_memory_mib} "
                "is not a supported Fargate task size"
            )
        if self.log_retention not in logs.RetentionDays.__members__:
            raise ValueError(f"logRetention is not a RetentionDays member: {self.log_retention!r}")


def export_name(stack: cdk.Stack, key: str) -> str:
    """CloudFormation export name for a stack output."""
    return f"{stack.stack_name}-{key}"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _context(
    scope: Construct, key: str, default: Any, cast: Callable[[Any], Any] = str
) -> Any:
    value = scope.node.try_get_context(key)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Context value {key}={value!r} is invalid: {e}") from e


def load_config(
    scope: Construct, environ: Optional[Mapping[str, str]] = None
) -> InfraConfig:
    """Load configuration from CDK context and environment variables.

    Args:
        scope: Construct whose node carries the CDK context (usually the App).
        environ: Environment mapping. Defaults to os.environ.

    Returns:
        InfraConfig instance.

    Raises:
        ValueError: If a context value or STACK is invalid.
    """
    environ = os.environ if environ is None else environ

    only_stack = (environ.get("STACK") or "").strip().lower() or None
    if only_stack == "all":
        only_stack = None

    config = InfraConfig(
        account=environ.get("CDK_DEFAULT_ACCOUNT") or None,
        region=environ.get("CDK_DEFAULT_REGION") or DEFAULT_REGION,
        only_stack=only_stack,
        stack_prefix=_context(scope, "stackPrefix", "CdkPrdGaibu"),
        resource_prefix=_context(scope, "resourcePrefix", "cdk-prd-gaibu"),
        vpc_cidr=_context(scope, "vpcCidr", "10.0.0.0/16"),
        max_azs=_context(scope, "maxAzs", 2, int),
        nat_gateways=_context(scope, "natGateways", 1, int),
        compute_platform=_context(scope, "computePlatform", "ec2", str.lower),
        app_port=_context(scope, "appPort", 8080, int),
        health_check_path=_context(scope, "healthCheckPath", "/"),
        alb_certificate_arn=_context(scope, "albCertificateArn", None),
        instance_type=_context(scope, "instanceType", "t3.micro"),
        container_image=_context(scope, "containerImage", "amazon/amazon-ecs-sample"),
        ecr_repository_name=_context(scope, "ecrRepositoryName", None),
        image_tag=_context(scope, "imageTag", "latest"),
        desired_count=_context(scope, "desiredCount", 2, int),
        min_tasks=_context(scope, "minTasks", 2, int),
        max_tasks=_context(scope, "maxTasks", 10, int),
        task_cpu=_context(scope, "taskCpu", 1024, int),
        task_memory_mib=_context(scope, "taskMemoryMiB", 2048, int),
        database_engine=_context(scope, "databaseEngine", "aurora-serverless", str.lower),
        database_name=_context(scope, "databaseName", "appdb"),
        database_username=_context(scope, "databaseUsername", "app_user"),
        min_capacity=_context(scope, "minCapacity", 0.5, float),
        max_capacity=_context(scope, "maxCapacity", 2, float),
        reader_instances=_context(scope, "readerInstances", 0, int),
        backup_retention_days=_context(scope, "backupRetentionDays", 7, int),
        secret_rotation_days=_context(scope, "secretRotationDays", 30, int),
        deletion_protection=_context(scope, "deletionProtection", False, _as_bool),
        log_retention=_context(scope, "logRetention", "THREE_MONTHS", str.upper),
        retain_logs=_context(scope, "retainLogs", True, _as_bool),
        alarm_email=_context(scope, "alarmEmail", None),
    )

    logger.info(
        "Loaded config: region=%s platform=%s engine=%s https=%s",
        config.region,
        config.compute_platform,
        config.database_engine,
        bool(config.alb_certificate_arn),
    )
    return config
