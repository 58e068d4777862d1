"""Pytest configuration and fixtures."""

import copy
import json
import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tfingest.lib.backends import BackendKind, ResolvedBackend  # noqa: E402
from tfingest.lib.state import decode_state  # noqa: E402


SAMPLE_STATE = {
    "version": 4,
    "terraform_version": "1.2.0",
    "serial": 7,
    "lineage": "L1",
    "resources": [
        {
            "module": "root",
            "mode": "managed",
            "type": "aws_instance",
            "name": "web",
            "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
            "instances": [
                {
                    "schema_version": 0,
                    "attributes": {"id": "i-1"},
                    "dependencies": [],
                    "create_before_destroy": False,
                }
            ],
        }
    ],
}

MULTI_RESOURCE_STATE = {
    "version": 4,
    "terraform_version": "1.5.7",
    "serial": 42,
    "lineage": "abc-123",
    "outputs": {
        "vpc_id": {"value": "vpc-0a1b", "type": "string"},
        "db_password": {"value": "hunter2", "type": "string", "sensitive": True},
    },
    "resources": [
        {
            "mode": "managed",
            "type": "aws_vpc",
            "name": "main",
            "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
            "instances": [
                {
                    "schema_version": 1,
                    "attributes": {"id": "vpc-0a1b", "cidr_block": "10.0.0.0/16"},
                    "dependencies": [],
                }
            ],
        },
        {
            "module": "module.network",
            "mode": "managed",
            "type": "aws_subnet",
            "name": "private",
            "each": "list",
            "provider": 'module.network.provider["registry.terraform.io/hashicorp/aws"]',
            "instances": [
                {
                    "index_key": 0,
                    "schema_version": 1,
                    "attributes": {"id": "subnet-1", "vpc_id": "vpc-0a1b"},
                    "dependencies": ["aws_vpc.main"],
                    "create_before_destroy": True,
                },
                {
                    "index_key": 1,
                    "status": "tainted",
                    "schema_version": 1,
                    "attributes": {"id": "subnet-2", "vpc_id": "vpc-0a1b"},
                    "dependencies": ["aws_vpc.main"],
                },
            ],
        },
        {
            "mode": "data",
            "type": "aws_ami",
            "name": "ubuntu",
            "provider": "provider.aws",
            "instances": [
                {"schema_version": 0, "attributes": {"image_id": "ami-1"}},
            ],
        },
    ],
}


@pytest.fixture
def sample_state_dict():
    """The single-resource state used across scenarios."""
    return copy.deepcopy(SAMPLE_STATE)


@pytest.fixture
def multi_state_dict():
    """A state with modules, data sources, counted instances and outputs."""
    return copy.deepcopy(MULTI_RESOURCE_STATE)


@pytest.fixture
def write_state(tmp_path):
    """Write a state (dict, str or bytes) to a file and return its path."""

    def _write(content, name="terraform.tfstate"):
        path = tmp_path / name
        if isinstance(content, dict):
            content = json.dumps(content)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def make_backend():
    """Build a ResolvedBackend from a state dict without touching disk."""

    def _make(name, state_dict, kind=BackendKind.LOCAL):
        state = decode_state(json.dumps(state_dict))
        return ResolvedBackend(name=name, kind=kind, state=state)

    return _make
