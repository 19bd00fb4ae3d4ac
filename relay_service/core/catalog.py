"""
Builds the ordered set of tool descriptors offered to the upstream for one
turn from the user's tool configuration and the local tool registry.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from relay_service.core.descriptors import (
    CodeInterpreterToolDescriptor,
    FileSearchToolDescriptor,
    FunctionToolDescriptor,
    McpServerConfig,
    McpToolDescriptor,
    ToolsConfig,
    WebSearchToolDescriptor,
)
from relay_service.core.errors import ConfigurationError
from relay_service.core.interfaces import Tool
from relay_service.core.logging import logger


@dataclass
class ToolCatalog:
    descriptors: List[Any] = field(default_factory=list)

    def __post_init__(self):
        self._functions: Dict[str, FunctionToolDescriptor] = {}
        self._servers: Dict[str, McpToolDescriptor] = {}
        for d in self.descriptors:
            if isinstance(d, FunctionToolDescriptor):
                self._functions[d.name] = d
            elif isinstance(d, McpToolDescriptor):
                self._servers[d.server_label] = d

    def to_upstream(self) -> List[Dict[str, Any]]:
        return [d.to_upstream() for d in self.descriptors]

    def is_local(self, name: str) -> bool:
        return name in self._functions

    def requires_approval(self, name: str, server_label: Optional[str] = None) -> bool:
        if server_label is not None:
            server = self._servers.get(server_label)
            return server is not None and server.require_approval == "always"
        fn = self._functions.get(name)
        return fn is not None and fn.require_approval


def split_allowed_tools(raw: str) -> List[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


def validate_server_config(server: McpServerConfig) -> List[str]:
    """Returns every problem found; an empty list means the server is usable."""
    errors: List[str] = []
    if not server.name.strip():
        errors.append(f"Server '{server.id}': name is required")
    if server.type == "docker" and not server.docker_image:
        errors.append(f"Server '{server.name}': docker image is required for docker servers")
    if server.type == "query_api" and not server.server_url:
        errors.append(f"Server '{server.name}': server URL is required for query API servers")
    if server.type == "remote_pipedream":
        if not server.server_url:
            errors.append(f"Server '{server.name}': server URL is required for Pipedream servers")
        if not server.app_slug:
            errors.append(f"Server '{server.name}': app slug is required for Pipedream servers")

    auth = server.auth_config
    for env_var in server.required_env_vars:
        if server.type == "docker" and env_var == "GITHUB_PERSONAL_ACCESS_TOKEN" and not auth.github_token:
            errors.append(f"Server '{server.name}': {env_var} is required")
        if server.type == "query_api" and env_var == "QUERY_API_KEY" and not auth.query_api_key:
            errors.append(f"Server '{server.name}': {env_var} is required")
    return errors


def _server_descriptor(server: McpServerConfig) -> McpToolDescriptor:
    auth = server.auth_config
    fields: Dict[str, Any] = {"server_label": server.name}

    if server.type == "docker":
        fields["docker_image"] = server.docker_image
        if auth.github_token:
            env = {"GITHUB_PERSONAL_ACCESS_TOKEN": auth.github_token}
            if auth.github_toolsets:
                env["GITHUB_TOOLSETS"] = auth.github_toolsets
            if auth.github_read_only is not None:
                env["GITHUB_READ_ONLY"] = str(auth.github_read_only).lower()
            fields["env"] = env
    elif server.type == "query_api":
        fields["server_url"] = server.server_url
        if auth.query_api_key:
            env = {"QUERY_API_KEY": auth.query_api_key}
            for key, value in (
                ("SUPABASE_URL", auth.supabase_url),
                ("SUPABASE_ANON_KEY", auth.supabase_anon_key),
                ("SUPABASE_SERVICE_ROLE_KEY", auth.supabase_service_role_key),
            ):
                if value:
                    env[key] = value
            fields["env"] = env
    elif server.type == "remote_pipedream":
        fields["server_url"] = server.server_url
        headers = {"X-App-Slug": server.app_slug}
        if auth.pipedream_api_key:
            headers["Authorization"] = f"Bearer {auth.pipedream_api_key}"
        headers.update(auth.custom_headers)
        fields["headers"] = headers
    else:
        raise ConfigurationError(f"Server '{server.name}': unsupported connection type {server.type!r}")

    if server.skip_approval:
        fields["require_approval"] = "never"
    allowed = split_allowed_tools(server.allowed_tools)
    if allowed:
        fields["allowed_tools"] = allowed
    return McpToolDescriptor(**fields)


def _function_descriptor(tool: Tool) -> FunctionToolDescriptor:
    schema = dict(tool.schema)
    return FunctionToolDescriptor(
        name=tool.name,
        description=schema.get("description", ""),
        parameters=schema.get("parameters", {"type": "object", "properties": {}}),
        strict=schema.get("strict", True),
        require_approval=tool.require_approval,
    )


class ToolCatalogBuilder:
    """
    Pure transformation from ToolsConfig to a ToolCatalog. Inconsistent
    configuration raises ConfigurationError listing every problem, so it is
    reported before any turn is opened.
    """

    def __init__(self, local_tools: Optional[Mapping[str, Tool]] = None):
        self.local_tools = dict(local_tools or {})

    def build(self, config: ToolsConfig) -> ToolCatalog:
        descriptors: List[Any] = []
        problems: List[str] = []

        if config.web_search_enabled:
            location = config.web_search.user_location
            descriptors.append(WebSearchToolDescriptor(
                user_location=location if location is not None and location.is_set else None,
            ))

        if config.file_search_enabled:
            if config.vector_store_id:
                descriptors.append(FileSearchToolDescriptor(vector_store_ids=[config.vector_store_id]))
            else:
                logger.warning("File search enabled but no vector store id configured; skipping file_search tool")

        if config.code_interpreter_enabled:
            descriptors.append(CodeInterpreterToolDescriptor())

        if config.functions_enabled:
            for tool in self.local_tools.values():
                descriptors.append(_function_descriptor(tool))

        labels: Set[str] = set()

        legacy = config.mcp
        if config.mcp_enabled and legacy.server_url and legacy.server_label:
            fields: Dict[str, Any] = {"server_label": legacy.server_label, "server_url": legacy.server_url}
            if legacy.skip_approval:
                fields["require_approval"] = "never"
            allowed = split_allowed_tools(legacy.allowed_tools)
            if allowed:
                fields["allowed_tools"] = allowed
            descriptors.append(McpToolDescriptor(**fields))
            labels.add(legacy.server_label)

        for server in config.mcp_servers:
            if not server.enabled:
                continue
            errors = validate_server_config(server)
            if server.name in labels:
                errors.append(f"Duplicate server label '{server.name}'")
            if errors:
                problems.extend(errors)
                continue
            labels.add(server.name)
            try:
                descriptors.append(_server_descriptor(server))
            except ConfigurationError as e:
                problems.extend(e.problems)

        if problems:
            for problem in problems:
                logger.error(f"Tool configuration error: {problem}")
            raise ConfigurationError(problems)

        logger.debug(f"Built tool catalog with {len(descriptors)} descriptors: {[d.type for d in descriptors]}")
        return ToolCatalog(descriptors)
