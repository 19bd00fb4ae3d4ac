"""
Tool descriptors offered to the upstream for a turn, and the tool
configuration they are built from.
"""
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================
# Descriptors (what the upstream sees)
# =============================

class _Descriptor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # fields that only matter to this client and never go upstream
    client_only: ClassVar[FrozenSet[str]] = frozenset()

    def to_upstream(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude=set(self.client_only))


class FunctionToolDescriptor(_Descriptor):
    client_only: ClassVar[FrozenSet[str]] = frozenset({"require_approval"})

    type: Literal["function"] = "function"
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    strict: bool = True
    require_approval: bool = False


class McpToolDescriptor(_Descriptor):
    type: Literal["mcp"] = "mcp"
    server_label: str = Field(..., min_length=1)
    server_url: Optional[str] = None
    docker_image: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    env: Optional[Dict[str, str]] = None
    allowed_tools: Optional[List[str]] = None
    require_approval: Literal["always", "never"] = "always"


class UserLocation(BaseModel):
    type: Literal["approximate"] = "approximate"
    country: str = ""
    region: str = ""
    city: str = ""

    @property
    def is_set(self) -> bool:
        return bool(self.country or self.region or self.city)


class WebSearchToolDescriptor(_Descriptor):
    type: Literal["web_search"] = "web_search"
    user_location: Optional[UserLocation] = None


class FileSearchToolDescriptor(_Descriptor):
    type: Literal["file_search"] = "file_search"
    vector_store_ids: List[str] = Field(..., min_length=1)


class CodeInterpreterToolDescriptor(_Descriptor):
    type: Literal["code_interpreter"] = "code_interpreter"
    container: Dict[str, Any] = Field(default_factory=lambda: {"type": "auto"})


ToolDescriptor = Annotated[
    Union[
        FunctionToolDescriptor,
        McpToolDescriptor,
        WebSearchToolDescriptor,
        FileSearchToolDescriptor,
        CodeInterpreterToolDescriptor,
    ],
    Field(discriminator="type"),
]


# =============================
# Configuration (what the user enabled)
# =============================

McpServerType = Literal["docker", "query_api", "remote_pipedream"]


class McpAuthConfig(BaseModel):
    github_token: Optional[str] = None
    github_toolsets: Optional[str] = None
    github_read_only: Optional[bool] = None

    query_api_key: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    pipedream_api_key: Optional[str] = None
    custom_headers: Dict[str, str] = Field(default_factory=dict)


class McpServerConfig(BaseModel):
    id: str
    name: str
    description: str = ""
    type: McpServerType
    server_url: Optional[str] = None
    docker_image: Optional[str] = None
    app_slug: Optional[str] = None
    enabled: bool = False
    skip_approval: bool = False
    allowed_tools: str = ""
    auth_config: McpAuthConfig = Field(default_factory=McpAuthConfig)
    required_env_vars: List[str] = Field(default_factory=list)
    optional_env_vars: List[str] = Field(default_factory=list)


class LegacyMcpConfig(BaseModel):
    """Single-server configuration kept for older clients."""

    server_label: str = ""
    server_url: str = ""
    allowed_tools: str = ""
    skip_approval: bool = True


class WebSearchConfig(BaseModel):
    user_location: Optional[UserLocation] = None


class ToolsConfig(BaseModel):
    web_search_enabled: bool = False
    web_search: WebSearchConfig = Field(default_factory=WebSearchConfig)
    file_search_enabled: bool = False
    vector_store_id: Optional[str] = None
    code_interpreter_enabled: bool = False
    functions_enabled: bool = True
    mcp_enabled: bool = False
    mcp: LegacyMcpConfig = Field(default_factory=LegacyMcpConfig)
    mcp_servers: List[McpServerConfig] = Field(default_factory=list)
