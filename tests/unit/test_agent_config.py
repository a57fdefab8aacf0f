"""
Unit tests for the CloudWatch agent document
"""

import json

from stacks.agent_config import (
    CATALINA_LOG,
    METRICS_NAMESPACE,
    SYSTEM_LOG,
    agent_parameter_name,
    cloudwatch_agent_config,
    render_agent_config,
)


class TestAgentConfig:
    def test_parameter_name_prefix(self):
        """CloudWatchAgentServerPolicy only reads AmazonCloudWatch-* parameters"""
        assert agent_parameter_name("cdk-prd-gaibu") == "AmazonCloudWatch-cdk-prd-gaibu"

    def test_log_files_routed_to_groups(self):
        config = cloudwatch_agent_config("/app/tomcat", "/app/system")
        collect_list = config["logs"]["logs_collected"]["files"]["collect_list"]

        assert [entry["file_path"] for entry in collect_list] == [CATALINA_LOG, SYSTEM_LOG]
        assert collect_list[0]["log_group_name"] == "/app/tomcat"
        assert collect_list[1]["log_group_name"] == "/app/system"
        assert all(
            entry["log_stream_name"].startswith("{instance_id}") for entry in collect_list
        )

    def test_memory_and_disk_metrics(self):
        metrics = cloudwatch_agent_config("/a", "/b")["metrics"]

        assert metrics["namespace"] == METRICS_NAMESPACE
        assert metrics["append_dimensions"] == {"InstanceId": "${aws:InstanceId}"}
        assert metrics["metrics_collected"]["mem"]["measurement"] == ["mem_used_percent"]
        assert metrics["metrics_collected"]["disk"]["measurement"] == [
            "disk_used_percent"
        ]

    def test_custom_namespace(self):
        metrics = cloudwatch_agent_config("/a", "/b", namespace="Custom/App")["metrics"]

        assert metrics["namespace"] == "Custom/App"

    def test_rendered_document_is_stable_json(self):
        rendered = render_agent_config("/a", "/b")

        assert json.loads(rendered) == cloudwatch_agent_config("/a", "/b")
        assert rendered == render_agent_config("/a", "/b")
