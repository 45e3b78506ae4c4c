"""
Terraform and Docker glue for running the localnet outside a workstation.

The terraform files describe one VPC, one public subnet, a security group
opening SSH, the proxy and the dashboard port, and `node_count` Ubuntu
instances bootstrapped by user_data.sh.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .errors import DevopsError
from .processes import CommandResult, run_command

LOGGER = logging.getLogger(__name__)

TERRAFORM_ACTIONS = ("init", "plan", "apply", "destroy")
DEFAULT_IMAGE_TAG = "multiversx-localnet"
EXPOSED_PORTS = (22, 7950, 8080)

MAIN_TF = """# MultiversX localnet infrastructure on AWS
terraform {{
  required_version = ">= 1.0"
  required_providers {{
    aws = {{
      source  = "hashicorp/aws"
      version = "~> 5.0"
    }}
  }}
}}

provider "aws" {{
  region = var.aws_region
}}

data "aws_availability_zones" "available" {{
  state = "available"
}}

data "aws_ami" "ubuntu" {{
  most_recent = true
  owners      = ["099720109477"]

  filter {{
    name   = "name"
    values = ["ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"]
  }}
}}

resource "aws_vpc" "multiversx_vpc" {{
  cidr_block           = "10.0.0.0/16"
  enable_dns_hostnames = true
  enable_dns_support   = true
  tags = {{
    Name    = "MultiversX VPC"
    Project = "MultiversX"
  }}
}}

resource "aws_internet_gateway" "multiversx_igw" {{
  vpc_id = aws_vpc.multiversx_vpc.id
}}

resource "aws_subnet" "multiversx_public" {{
  vpc_id                  = aws_vpc.multiversx_vpc.id
  cidr_block              = "10.0.1.0/24"
  availability_zone       = data.aws_availability_zones.available.names[0]
  map_public_ip_on_launch = true
}}

resource "aws_security_group" "multiversx_sg" {{
  name        = "multiversx-security-group"
  description = "MultiversX localnet access"
  vpc_id      = aws_vpc.multiversx_vpc.id
{ingress}
  egress {{
    from_port   = 0
    to_port     = 0
    protocol    = "-1"
    cidr_blocks = ["0.0.0.0/0"]
  }}
}}

resource "aws_instance" "multiversx_node" {{
  count                  = var.node_count
  ami                    = data.aws_ami.ubuntu.id
  instance_type          = var.instance_type
  key_name               = var.key_pair_name
  vpc_security_group_ids = [aws_security_group.multiversx_sg.id]
  subnet_id              = aws_subnet.multiversx_public.id
  user_data              = file("${{path.module}}/user_data.sh")
  tags = {{
    Name    = "MultiversX Node ${{count.index + 1}}"
    Project = "MultiversX"
  }}
}}
"""

INGRESS_BLOCK = """
  ingress {{
    from_port   = {port}
    to_port     = {port}
    protocol    = "tcp"
    cidr_blocks = ["0.0.0.0/0"]
  }}
"""

VARIABLES_TF = """variable "aws_region" {{
  description = "AWS region"
  type        = string
  default     = "{region}"
}}

variable "instance_type" {{
  description = "EC2 instance type"
  type        = string
  default     = "{instance_type}"
}}

variable "node_count" {{
  description = "Number of localnet hosts"
  type        = number
  default     = {node_count}
}}

variable "key_pair_name" {{
  description = "AWS key pair name"
  type        = string
}}
"""

OUTPUTS_TF = """output "instance_ids" {
  value = aws_instance.multiversx_node[*].id
}

output "public_ips" {
  value = aws_instance.multiversx_node[*].public_ip
}

output "proxy_urls" {
  value = [for ip in aws_instance.multiversx_node[*].public_ip : "http://${ip}:7950"]
}
"""

USER_DATA = """#!/bin/bash
set -e
apt-get update
apt-get install -y curl git python3 python3-pip docker.io
sudo -u ubuntu pip3 install --user multiversx-sdk-cli
sudo -u ubuntu mkdir -p /home/ubuntu/mx-localnet
cd /home/ubuntu/mx-localnet
sudo -u ubuntu /home/ubuntu/.local/bin/mxpy localnet setup
sudo -u ubuntu nohup /home/ubuntu/.local/bin/mxpy localnet start > localnet.log 2>&1 &
"""

DOCKERFILE = """# MultiversX development environment
FROM ubuntu:22.04

RUN apt-get update && apt-get install -y \\
    curl \\
    git \\
    python3 \\
    python3-pip \\
    build-essential \\
    && rm -rf /var/lib/apt/lists/*

RUN curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y
ENV PATH="/root/.cargo/bin:${PATH}"

RUN pip3 install multiversx-sdk-cli
RUN cargo install multiversx-sc-meta

WORKDIR /workspace
COPY . /workspace/
RUN mxpy localnet setup

EXPOSE 7950 8080

CMD ["mxpy", "localnet", "start"]
"""


def write_terraform(
    root: Path,
    region: str = "us-east-1",
    instance_type: str = "t3.medium",
    node_count: int = 3,
) -> List[Path]:
    if node_count < 1:
        raise ValueError("node_count must be at least 1")
    root.mkdir(parents=True, exist_ok=True)
    ingress = "".join(INGRESS_BLOCK.format(port=port) for port in EXPOSED_PORTS)
    files: Dict[str, str] = {
        "main.tf": MAIN_TF.format(ingress=ingress),
        "variables.tf": VARIABLES_TF.format(region=region, instance_type=instance_type, node_count=node_count),
        "outputs.tf": OUTPUTS_TF,
        "user_data.sh": USER_DATA,
    }
    written = []
    for name, content in files.items():
        path = root / name
        path.write_text(content, encoding="utf-8")
        written.append(path)
    LOGGER.info("Terraform configuration written to %s", root)
    return written


def terraform(action: str, root: Path, dry_run: bool = False, auto_approve: bool = False) -> CommandResult:
    if action not in TERRAFORM_ACTIONS:
        raise ValueError(f"Unknown terraform action '{action}'. Valid values: {', '.join(TERRAFORM_ACTIONS)}")
    if not (root / "main.tf").is_file():
        raise DevopsError(f"No terraform configuration in {root}. Run: mxl devops init")
    cmd = ["terraform", action]
    if auto_approve and action in ("apply", "destroy"):
        cmd.append("-auto-approve")
    result = run_command(cmd, cwd=root, dry_run=dry_run, capture=False)
    if not result.ok:
        raise DevopsError(f"terraform {action} failed with exit code {result.returncode}")
    return result


def write_dockerfile(root: Path) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / "Dockerfile"
    path.write_text(DOCKERFILE, encoding="utf-8")
    return path


def docker_build(
    context: Path,
    dockerfile: Optional[Path] = None,
    tag: str = DEFAULT_IMAGE_TAG,
    dry_run: bool = False,
) -> CommandResult:
    dockerfile = dockerfile or context / "Dockerfile"
    if not dockerfile.is_file() and not dry_run:
        raise DevopsError(f"{dockerfile} not found. Run: mxl devops init")
    result = run_command(
        ["docker", "build", "-t", tag, "-f", str(dockerfile), str(context)],
        dry_run=dry_run,
        capture=False,
    )
    if not result.ok:
        raise DevopsError(f"docker build failed with exit code {result.returncode}")
    return result
