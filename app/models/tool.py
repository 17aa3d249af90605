"""Tool definition models."""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Dict, Any, List, Literal, Optional

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]
AuthType = Literal["none", "api_key", "bearer", "basic"]
ParameterKind = Literal["string", "number", "boolean", "array"]

DEFAULT_MAX_TIMEOUT_MS = 30000


class AuthConfig(BaseModel):
    """Credentials for the selected auth_type. Values may be secret references (env://, vault://, aws://)."""
    api_key: Optional[str] = None
    header_name: Optional[str] = Field(
        default=None,
        description="Header carrying the API key (default: X-API-Key)",
    )
    bearer_token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class ToolConfig(BaseModel):
    """HTTP target of a tool."""
    endpoint: str = Field(..., description="Absolute http(s) URL, or a path starting with '/' for internal routes")
    method: HttpMethod = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    auth_type: AuthType = "none"
    auth_config: AuthConfig = Field(default_factory=AuthConfig)
    timeout_ms: int = Field(default=10000, description="Per-call deadline in milliseconds (1000-30000)")


class ParameterProperty(BaseModel):
    type: ParameterKind
    description: str
    required: Optional[bool] = None
    enum: Optional[List[Any]] = None
    format: Optional[str] = Field(default=None, description="email | phone | date | url | uuid")


class ToolParameters(BaseModel):
    type: Literal["object"] = "object"
    properties: Dict[str, ParameterProperty] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)

    def required_names(self) -> List[str]:
        """Names required either by the ``required`` list or a per-property ``required`` flag."""
        names = list(self.required)
        for name, prop in self.properties.items():
            if prop.required and name not in names:
                names.append(name)
        return names


class ResponseMapping(BaseModel):
    success_path: Optional[str] = Field(default=None, description="Dot path into a successful response body")
    error_path: Optional[str] = Field(default=None, description="Dot path into an error response body")
    transform_expression: Optional[str] = Field(
        default=None,
        description="Sandboxed pipe expression, e.g. 'data.items | pick(id, name) | limit(5)'",
    )


class RateLimitPolicy(BaseModel):
    requests: int = Field(..., description="Maximum calls per window")
    window: str = Field(default="1h", description="1m | 5m | 15m | 1h | 1d")


class ToolSecurity(BaseModel):
    rate_limit: Optional[RateLimitPolicy] = None
    allowed_domains: Optional[List[str]] = Field(
        default=None,
        description="Narrows the platform allow-list for this tool",
    )
    max_timeout_ms: int = DEFAULT_MAX_TIMEOUT_MS


class ToolDefinition(BaseModel):
    """A tenant-registered HTTP tool callable by the agent."""
    id: Optional[str] = None
    tenant_id: str
    name: str = Field(..., description="Unique per tenant, ^[a-z0-9_]+$")
    display_name: str
    description: str
    category: str
    config: ToolConfig
    parameters: ToolParameters
    response_mapping: Optional[ResponseMapping] = None
    security: ToolSecurity = Field(default_factory=ToolSecurity)
    is_active: bool = True
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_function_schema(self) -> Dict[str, Any]:
        """Render the tool in the LLM function-calling format."""
        properties: Dict[str, Any] = {}
        for name, prop in self.parameters.properties.items():
            rendered: Dict[str, Any] = {"type": prop.type, "description": prop.description}
            if prop.type == "array":
                rendered["items"] = {"type": "string"}
            if prop.enum is not None:
                rendered["enum"] = prop.enum
            if prop.format:
                rendered["format"] = prop.format
            properties[name] = rendered

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": self.parameters.required_names(),
                },
            },
        }
