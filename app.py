#!/usr/bin/env python3
import logging
from typing import Dict, List, Optional

import aws_cdk as cdk
from aws_cdk import Stack

from config.base import STACK_NAMES, InfraConfig, load_config
from stacks.compute_stack import ComputeStack
from stacks.database_stack import DatabaseStack
from stacks.fargate_stack import FargateComputeStack
from stacks.monitoring_stack import MonitoringStack
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack

logger = logging.getLogger(__name__)

# Upstream stacks each stack needs to be built
STACK_DEPENDENCIES = {
    "network": (),
    "security": ("network",),
    "monitoring": (),
    "database": ("network", "security"),
    "compute": ("network", "security", "monitoring", "database"),
}


def resolve_stack_selection(only: Optional[str] = None) -> List[str]:
    """Stacks to build for a STACK selection, upstream stacks included.

    Returns names in build order (STACK_NAMES order). None, "" and "all"
    select every stack.
    """
    if not only or only == "all":
        return list(STACK_NAMES)
    if only not in STACK_DEPENDENCIES:
        raise ValueError(f"Unknown stack {only!r}, expected one of {STACK_NAMES}")

    selected = set()
    pending = [only]
    while pending:
        name = pending.pop()
        if name not in selected:
            selected.add(name)
            pending.extend(STACK_DEPENDENCIES[name])
    return [name for name in STACK_NAMES if name in selected]


def build_stacks(app: cdk.App, config: InfraConfig) -> Dict[str, Stack]:
    """Create the selected stacks, wired by direct references."""
    selection = resolve_stack_selection(config.only_stack)
    env = config.env
    stacks: Dict[str, Stack] = {}

    # Network Stack - VPC and subnets
    if "network" in selection:
        stacks["network"] = NetworkStack(
            app, config.stack_id("network"), config=config, env=env
        )

    # Security Stack - security groups, application role, console password
    if "security" in selection:
        stacks["security"] = SecurityStack(
            app,
            config.stack_id("security"),
            vpc=stacks["network"].vpc,
            config=config,
            env=env,
        )
        stacks["security"].add_dependency(stacks["network"])

    # Monitoring Stack - log groups and alerts topic
    if "monitoring" in selection:
        stacks["monitoring"] = MonitoringStack(
            app, config.stack_id("monitoring"), config=config, env=env
        )

    # Database Stack - PostgreSQL in isolated subnets
    if "database" in selection:
        stacks["database"] = DatabaseStack(
            app,
            config.stack_id("database"),
            vpc=stacks["network"].vpc,
            application_security_group=stacks["security"].application_security_group,
            config=config,
            env=env,
        )
        stacks["database"].add_dependency(stacks["security"])

    # Compute Stack - EC2 instance or Fargate service behind the ALB
    if "compute" in selection:
        compute_class = FargateComputeStack if config.is_fargate else ComputeStack
        stacks["compute"] = compute_class(
            app,
            config.stack_id("compute"),
            network=stacks["network"],
            security=stacks["security"],
            database=stacks["database"],
            monitoring=stacks["monitoring"],
            config=config,
            env=env,
        )
        stacks["compute"].add_dependency(stacks["database"])
        stacks["compute"].add_dependency(stacks["monitoring"])

    cdk.Tags.of(app).add("Project", config.resource_prefix)
    cdk.Tags.of(app).add("ManagedBy", "CDK")
    cdk.Tags.of(app).add("StackSet", config.stack_prefix)

    return stacks


def main() -> None:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    app = cdk.App()
    config = load_config(app)
    stacks = build_stacks(app, config)
    logger.info(
        "Synthesizing %s (%s compute)",
        ", ".join(stack.stack_name for stack in stacks.values()),
        config.compute_platform,
    )

    app.synth()


if __name__ == "__main__":
    main()
