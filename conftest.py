# Ensure project root is in sys.path for test imports
import sys
import os

import pytest
from dotenv import load_dotenv

project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Load .env file for tests
load_dotenv(os.path.join(project_root, ".env"))
# packaged defaults only; a developer's dev.yml must not leak into tests
os.environ["RELAY_IGNORE_DEV_CONFIG"] = "true"

from relay_service.core.catalog import ToolCatalog  # noqa: E402
from relay_service.core.descriptors import FunctionToolDescriptor, McpToolDescriptor  # noqa: E402


@pytest.fixture
def catalog():
    """
    get_weather: local, ungated. delete_repo: local, gated.
    github: remote server requiring approval. docs: remote server that never asks.
    """
    return ToolCatalog([
        FunctionToolDescriptor(name="get_weather", parameters={"type": "object", "properties": {}}),
        FunctionToolDescriptor(name="delete_repo", require_approval=True),
        McpToolDescriptor(server_label="github", server_url="https://mcp.example.com/github"),
        McpToolDescriptor(server_label="docs", server_url="https://mcp.example.com/docs", require_approval="never"),
    ])
