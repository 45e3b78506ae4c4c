"""
Unit tests for devops.py terraform and docker glue.
"""

from unittest.mock import patch

import pytest

from mxlocalnet.devops import (
    DEFAULT_IMAGE_TAG,
    docker_build,
    terraform,
    write_dockerfile,
    write_terraform,
)
from mxlocalnet.errors import DevopsError
from mxlocalnet.processes import CommandResult


class TestWriteTerraform:
    """Tests for terraform file generation."""

    def test_files(self, tmp_path):
        """main, variables, outputs and user data are written."""
        written = write_terraform(tmp_path / "tf")
        assert [p.name for p in written] == ["main.tf", "variables.tf", "outputs.tf", "user_data.sh"]

    def test_ingress_ports(self, tmp_path):
        """SSH, proxy and dashboard ports are opened."""
        write_terraform(tmp_path)
        main = (tmp_path / "main.tf").read_text()
        for port in (22, 7950, 8080):
            assert f"from_port   = {port}" in main
        assert 'user_data              = file("${path.module}/user_data.sh")' in main

    def test_variables(self, tmp_path):
        """Variables carry the requested defaults."""
        write_terraform(tmp_path, region="eu-west-1", instance_type="t3.large", node_count=2)
        variables = (tmp_path / "variables.tf").read_text()
        assert 'default     = "eu-west-1"' in variables
        assert "default     = 2" in variables

    def test_node_count(self, tmp_path):
        """At least one node is required."""
        with pytest.raises(ValueError, match="at least 1"):
            write_terraform(tmp_path, node_count=0)


class TestTerraform:
    """Tests for terraform invocations."""

    def test_unknown_action(self, tmp_path):
        """Only init/plan/apply/destroy are accepted."""
        with pytest.raises(ValueError, match="Unknown terraform action 'import'"):
            terraform("import", tmp_path)

    def test_requires_config(self, tmp_path):
        """Running without main.tf raises DevopsError."""
        with pytest.raises(DevopsError, match="mxl devops init"):
            terraform("plan", tmp_path)

    def test_auto_approve(self, tmp_path):
        """-auto-approve is only passed to apply and destroy."""
        write_terraform(tmp_path)
        ok = CommandResult(cmd=[], returncode=0)
        with patch("mxlocalnet.devops.run_command", return_value=ok) as mocked:
            terraform("apply", tmp_path, auto_approve=True)
            terraform("plan", tmp_path, auto_approve=True)
        assert mocked.call_args_list[0][0][0] == ["terraform", "apply", "-auto-approve"]
        assert mocked.call_args_list[1][0][0] == ["terraform", "plan"]
        assert mocked.call_args[1]["cwd"] == tmp_path

    def test_failure(self, tmp_path):
        """Non-zero exit raises DevopsError."""
        write_terraform(tmp_path)
        with patch("mxlocalnet.devops.run_command", return_value=CommandResult(cmd=[], returncode=1)):
            with pytest.raises(DevopsError, match="terraform init failed"):
                terraform("init", tmp_path)


class TestDocker:
    """Tests for Dockerfile and docker build."""

    def test_dockerfile(self, tmp_path):
        """The image sets up and starts the localnet."""
        text = write_dockerfile(tmp_path).read_text()
        assert "EXPOSE 7950 8080" in text
        assert 'CMD ["mxpy", "localnet", "start"]' in text

    def test_build_command(self, tmp_path):
        """docker build tags the image and points at the Dockerfile."""
        dockerfile = write_dockerfile(tmp_path / "devops")
        with patch("mxlocalnet.devops.run_command", return_value=CommandResult(cmd=[], returncode=0)) as mocked:
            docker_build(tmp_path, dockerfile=dockerfile)
        assert mocked.call_args[0][0] == [
            "docker", "build", "-t", DEFAULT_IMAGE_TAG, "-f", str(dockerfile), str(tmp_path),
        ]

    def test_missing_dockerfile(self, tmp_path):
        """A missing Dockerfile raises DevopsError."""
        with pytest.raises(DevopsError, match="not found"):
            docker_build(tmp_path)
