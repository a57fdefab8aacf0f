"""CloudWatch agent configuration for the application instance.

The document is stored in SSM Parameter Store and fetched by the agent with
``amazon-cloudwatch-agent-ctl -a fetch-config -c ssm:<name>``, so the
instance needs no boot-time templating.
"""
import json
from typing import Any, Dict

METRICS_NAMESPACE = "Gaibu/Application"

CATALINA_LOG = "/opt/tomcat/logs/catalina.out"
SYSTEM_LOG = "/var/log/messages"


def agent_parameter_name(resource_prefix: str) -> str:
    """SSM parameter name readable under CloudWatchAgentServerPolicy."""
    return f"AmazonCloudWatch-{resource_prefix}"


def cloudwatch_agent_config(
    application_log_group_name: str,
    system_log_group_name: str,
    namespace: str = METRICS_NAMESPACE,
) -> Dict[str, Any]:
    """Build the agent document: Tomcat + system logs, memory and disk usage."""
    return {
        "logs": {
            "logs_collected": {
                "files": {
                    "collect_list": [
                        {
                            "file_path": CATALINA_LOG,
                            "log_group_name": application_log_group_name,
                            "log_stream_name": "{instance_id}-catalina",
                        },
                        {
                            "file_path": SYSTEM_LOG,
                            "log_group_name": system_log_group_name,
                            "log_stream_name": "{instance_id}-messages",
                        },
                    ]
                }
            }
        },
        "metrics": {
            "namespace": namespace,
            "append_dimensions": {"InstanceId": "${aws:InstanceId}"},
            "metrics_collected": {
                "mem": {"measurement": ["mem_used_percent"]},
                "disk": {"resources": ["*"], "measurement": ["disk_used_percent"]},
            },
        },
    }


def render_agent_config(
    application_log_group_name: str,
    system_log_group_name: str,
    namespace: str = METRICS_NAMESPACE,
) -> str:
    return json.dumps(
        cloudwatch_agent_config(
            application_log_group_name, system_log_group_name, namespace
        ),
        indent=2,
        sort_keys=True,
    )
