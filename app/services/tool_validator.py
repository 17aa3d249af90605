"""Tool definition validation.

Validation runs every check and reports every violation, so a tool author can
fix a definition in one round trip. Definitions arrive as plain dicts (API
bodies, stored rows) and are only turned into ``ToolDefinition`` models once
they pass.
"""

import re
import time
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.infra.rate_limiter import WINDOW_MS
from app.models.tool import ToolDefinition
from app.services.security_policy import (
    check_domain,
    check_timeout,
    find_forbidden_params,
    is_relative_endpoint,
)
from app.services.transform_expression import compile_transform, TransformExpressionError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["name", "display_name", "description", "category", "tenant_id", "config", "parameters"]

NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
MAX_NAME_LENGTH = 50
MAX_DISPLAY_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_CATEGORY_LENGTH = 50

VALID_METHODS = ("GET", "POST", "PUT", "DELETE")
VALID_AUTH_TYPES = ("none", "api_key", "bearer", "basic")
VALID_PARAMETER_TYPES = ("string", "number", "boolean", "array")
VALID_FORMATS = ("email", "phone", "date", "url", "uuid")

MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 30000
MIN_MAX_TIMEOUT_MS = 1000
MAX_MAX_TIMEOUT_MS = 60000

RELATIVE_PATH_PATTERN = re.compile(r"^/[a-zA-Z0-9\-._~!$&'()*+,;=:@/?%]*$")
DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+$")

# LLM function-calling limits
OPENAI_MAX_NAME_LENGTH = 64
OPENAI_MAX_DESCRIPTION_LENGTH = 1024
OPENAI_MAX_PROPERTIES = 100


@dataclass
class ToolValidationResult:
    """Result of tool validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ToolValidationResult":
        return cls(is_valid=not errors, errors=errors)


@dataclass
class EndpointReachabilityResult:
    is_valid: bool
    status: Optional[int] = None
    errors: List[str] = field(default_factory=list)
    response_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_text(errors: List[str], definition: Dict[str, Any], key: str, max_length: int) -> None:
    value = definition.get(key)
    if value is None:
        return
    if not isinstance(value, str):
        errors.append(f"{key} must be a string")
    elif len(value) > max_length:
        errors.append(f"{key} must be at most {max_length} characters")


def _identity_errors(definition: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    name = definition.get("name")
    if isinstance(name, str) and name:
        if not NAME_PATTERN.match(name):
            errors.append("name must contain only lowercase letters, numbers and underscores")
        if len(name) > MAX_NAME_LENGTH:
            errors.append(f"name must be at most {MAX_NAME_LENGTH} characters")
    elif name is not None and not isinstance(name, str):
        errors.append("name must be a string")

    _check_text(errors, definition, "display_name", MAX_DISPLAY_NAME_LENGTH)
    _check_text(errors, definition, "description", MAX_DESCRIPTION_LENGTH)
    _check_text(errors, definition, "category", MAX_CATEGORY_LENGTH)
    return errors


def _endpoint_errors(endpoint: Any, security: Dict[str, Any]) -> List[str]:
    if not endpoint:
        return ["config.endpoint is required"]
    if not isinstance(endpoint, str):
        return ["config.endpoint must be a string"]

    if is_relative_endpoint(endpoint):
        if not RELATIVE_PATH_PATTERN.match(endpoint):
            return ["config.endpoint contains characters that are not allowed in a URL path"]
        return []

    if not endpoint.lower().startswith(("http://", "https://")):
        return ["config.endpoint must be an absolute http(s) URL or a path starting with '/'"]

    allowed_domains = security.get("allowed_domains")
    if isinstance(allowed_domains, list):
        allowed_domains = [domain for domain in allowed_domains if isinstance(domain, str)]
    else:
        allowed_domains = None
    decision = check_domain(endpoint, allowed_domains)
    return [] if decision.ok else [decision.reason]


def _auth_errors(auth_type: Any, auth_config: Any) -> List[str]:
    if auth_type not in VALID_AUTH_TYPES:
        return [f"config.auth_type must be one of: {', '.join(VALID_AUTH_TYPES)}"]
    if auth_type == "none":
        return []
    if not isinstance(auth_config, dict):
        return [f"config.auth_config is required for auth_type '{auth_type}'"]

    if auth_type == "api_key" and not auth_config.get("api_key"):
        return ["config.auth_config.api_key is required for api_key auth"]
    if auth_type == "bearer" and not auth_config.get("bearer_token"):
        return ["config.auth_config.bearer_token is required for bearer auth"]
    if auth_type == "basic" and not (auth_config.get("username") and auth_config.get("password")):
        return ["config.auth_config.username and config.auth_config.password are required for basic auth"]
    return []


def _config_errors(config: Any, security: Dict[str, Any]) -> List[str]:
    if config is None:
        return []
    if not isinstance(config, dict):
        return ["config must be an object"]

    errors = _endpoint_errors(config.get("endpoint"), security)

    method = config.get("method")
    if method not in VALID_METHODS:
        errors.append(f"config.method must be one of: {', '.join(VALID_METHODS)}")

    timeout_ms = config.get("timeout_ms")
    if timeout_ms is not None:
        if not _is_int(timeout_ms) or not MIN_TIMEOUT_MS <= timeout_ms <= MAX_TIMEOUT_MS:
            errors.append(f"config.timeout_ms must be an integer between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS}")

    headers = config.get("headers")
    if headers is not None:
        if not isinstance(headers, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
        ):
            errors.append("config.headers must map header names to string values")

    errors.extend(_auth_errors(config.get("auth_type", "none"), config.get("auth_config")))
    return errors


def _property_errors(name: str, prop: Any) -> List[str]:
    if not isinstance(prop, dict):
        return [f"Parameter '{name}' must be an object"]

    errors = []
    if prop.get("type") not in VALID_PARAMETER_TYPES:
        errors.append(f"Parameter '{name}' type must be one of: {', '.join(VALID_PARAMETER_TYPES)}")

    description = prop.get("description")
    if not isinstance(description, str) or not description.strip():
        errors.append(f"Parameter '{name}' must have a description")

    if "enum" in prop and prop["enum"] is not None and not isinstance(prop["enum"], list):
        errors.append(f"Parameter '{name}' enum must be a list")

    fmt = prop.get("format")
    if fmt is not None and fmt not in VALID_FORMATS:
        errors.append(f"Parameter '{name}' format must be one of: {', '.join(VALID_FORMATS)}")

    if "required" in prop and prop["required"] is not None and not isinstance(prop["required"], bool):
        errors.append(f"Parameter '{name}' required flag must be a boolean")
    return errors


def _parameter_errors(schema: Any) -> List[str]:
    if not isinstance(schema, dict):
        return ["parameters must be an object"]

    errors = []
    if schema.get("type") != "object":
        errors.append("parameters.type must be 'object'")

    properties = schema.get("properties")
    if not isinstance(properties, dict) or not properties:
        errors.append("parameters.properties must be a non-empty object")
        properties = {}

    for name, prop in properties.items():
        errors.extend(_property_errors(name, prop))

    required = schema.get("required")
    if required is not None:
        if not isinstance(required, list):
            errors.append("parameters.required must be a list")
        else:
            for name in required:
                if not isinstance(name, str):
                    errors.append(f"parameters.required entries must be strings: {name!r}")
                elif name not in properties:
                    errors.append(f"Required parameter '{name}' is not defined in properties")

    forbidden = find_forbidden_params(properties.keys())
    if forbidden:
        errors.append(f"Forbidden parameter names: {', '.join(forbidden)}")
    return errors


def _security_errors(security: Any, config: Any) -> List[str]:
    if security is None:
        return []
    if not isinstance(security, dict):
        return ["security must be an object"]

    errors = []
    rate_limit = security.get("rate_limit")
    if rate_limit is not None:
        if not isinstance(rate_limit, dict):
            errors.append("security.rate_limit must be an object")
        else:
            requests = rate_limit.get("requests")
            if not _is_int(requests) or requests < 1:
                errors.append("security.rate_limit.requests must be a positive integer")
            window = rate_limit.get("window", "1h")
            if not isinstance(window, str) or window not in WINDOW_MS:
                errors.append(f"security.rate_limit.window must be one of: {', '.join(WINDOW_MS)}")

    allowed_domains = security.get("allowed_domains")
    if allowed_domains is not None:
        if not isinstance(allowed_domains, list):
            errors.append("security.allowed_domains must be a list")
        else:
            for domain in allowed_domains:
                if not isinstance(domain, str) or not DOMAIN_PATTERN.match(domain):
                    errors.append(f"Invalid domain format: {domain}")

    max_timeout_ms = security.get("max_timeout_ms")
    if max_timeout_ms is not None:
        if not _is_int(max_timeout_ms) or not MIN_MAX_TIMEOUT_MS <= max_timeout_ms <= MAX_MAX_TIMEOUT_MS:
            errors.append(
                f"security.max_timeout_ms must be an integer between {MIN_MAX_TIMEOUT_MS} and {MAX_MAX_TIMEOUT_MS}"
            )
        elif isinstance(config, dict) and _is_int(config.get("timeout_ms")):
            decision = check_timeout(config["timeout_ms"], max_timeout_ms)
            if not decision.ok:
                errors.append(decision.reason)
    return errors


def _response_mapping_errors(mapping: Any) -> List[str]:
    if mapping is None:
        return []
    if not isinstance(mapping, dict):
        return ["response_mapping must be an object"]

    errors = []
    for key in ("success_path", "error_path"):
        if mapping.get(key) is not None and not isinstance(mapping[key], str):
            errors.append(f"response_mapping.{key} must be a string")

    expression = mapping.get("transform_expression")
    if expression is not None:
        if not isinstance(expression, str):
            errors.append("response_mapping.transform_expression must be a string")
        else:
            try:
                compile_transform(expression)
            except TransformExpressionError as e:
                errors.append(f"Invalid transform_expression: {e}")
    return errors


def validate_tool_definition(definition: Dict[str, Any]) -> ToolValidationResult:
    """
    Validate a candidate tool definition.

    Returns:
        ToolValidationResult listing every violation found.
    """
    if not isinstance(definition, dict):
        return ToolValidationResult.from_errors(["Tool definition must be an object"])

    errors: List[str] = []
    for key in REQUIRED_FIELDS:
        value = definition.get(key)
        if value is None or value == "":
            errors.append(f"Missing required field: {key}")

    security = definition.get("security")
    security_dict = security if isinstance(security, dict) else {}

    errors.extend(_identity_errors(definition))
    errors.extend(_config_errors(definition.get("config"), security_dict))
    if definition.get("parameters") is not None:
        errors.extend(_parameter_errors(definition["parameters"]))
    errors.extend(_security_errors(security, definition.get("config")))
    errors.extend(_response_mapping_errors(definition.get("response_mapping")))

    return ToolValidationResult.from_errors(errors)


def validate_parameter_schema(schema: Dict[str, Any]) -> ToolValidationResult:
    """Validate a parameter block on its own (used by the schema editor)."""
    return ToolValidationResult.from_errors(_parameter_errors(schema))


def validate_openai_compatibility(definition: Dict[str, Any]) -> ToolValidationResult:
    """Validate a definition against the stricter LLM function-calling profile."""
    errors = list(validate_tool_definition(definition).errors)
    if not isinstance(definition, dict):
        return ToolValidationResult.from_errors(errors)

    name = definition.get("name")
    if isinstance(name, str) and len(name) > OPENAI_MAX_NAME_LENGTH:
        errors.append(f"Function name must be at most {OPENAI_MAX_NAME_LENGTH} characters")

    description = definition.get("description")
    if isinstance(description, str) and len(description) > OPENAI_MAX_DESCRIPTION_LENGTH:
        errors.append(f"Function description must be at most {OPENAI_MAX_DESCRIPTION_LENGTH} characters")

    parameters = definition.get("parameters")
    if isinstance(parameters, dict):
        properties = parameters.get("properties")
        if isinstance(properties, dict) and len(properties) > OPENAI_MAX_PROPERTIES:
            errors.append(f"Function must have at most {OPENAI_MAX_PROPERTIES} parameters")

    return ToolValidationResult.from_errors(errors)


async def validate_endpoint_reachability(
    endpoint: str,
    method: str = "GET",
    timeout_ms: int = 5000,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EndpointReachabilityResult:
    """
    Probe an endpoint before a tool is registered.

    Any HTTP response (including 4xx/5xx) counts as reachable. Relative paths
    are internal routes and are only checked for format. Absolute URLs must
    pass the domain allow-list before any connection is attempted.
    """
    if not isinstance(endpoint, str) or not endpoint:
        return EndpointReachabilityResult(is_valid=False, errors=["Endpoint is required"])

    if is_relative_endpoint(endpoint):
        if not RELATIVE_PATH_PATTERN.match(endpoint):
            return EndpointReachabilityResult(is_valid=False, errors=["Invalid relative path format"])
        return EndpointReachabilityResult(is_valid=True)

    decision = check_domain(endpoint)
    if not decision.ok:
        return EndpointReachabilityResult(is_valid=False, errors=[decision.reason])

    method = method.upper()
    if method not in VALID_METHODS:
        return EndpointReachabilityResult(is_valid=False, errors=[f"Invalid method: {method}"])

    start_time = time.time()
    try:
        async with httpx.AsyncClient(timeout=timeout_ms / 1000, transport=transport) as client:
            response = await client.request(method, endpoint)
    except httpx.TimeoutException:
        return EndpointReachabilityResult(
            is_valid=False,
            errors=["Connection timeout"],
            response_time_ms=int((time.time() - start_time) * 1000),
        )
    except httpx.HTTPError as e:
        logger.info(f"Endpoint probe failed for {endpoint}: {e}")
        return EndpointReachabilityResult(
            is_valid=False,
            errors=[f"Connection failed: {e}"],
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    return EndpointReachabilityResult(
        is_valid=True,
        status=response.status_code,
        response_time_ms=int((time.time() - start_time) * 1000),
    )


def _matches_kind(value: Any, kind: str) -> bool:
    if kind == "string":
        return isinstance(value, str)
    if kind == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == "boolean":
        return isinstance(value, bool)
    if kind == "array":
        return isinstance(value, list)
    return False


def validate_call_arguments(tool: ToolDefinition, arguments: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Check agent-supplied arguments against a tool's parameter declarations.

    Returns:
        (arguments limited to declared names, list of errors)
    """
    if not isinstance(arguments, dict):
        return {}, ["Tool arguments must be an object"]

    properties = tool.parameters.properties
    errors: List[str] = []
    rejected = set()
    accepted: Dict[str, Any] = {}

    for name, value in arguments.items():
        prop = properties.get(name)
        if prop is None:
            logger.debug(f"Dropping undeclared argument '{name}' for tool {tool.name}")
            continue
        if value is None:
            continue
        if not _matches_kind(value, prop.type):
            errors.append(f"Argument '{name}' must be of type {prop.type}")
            rejected.add(name)
        elif prop.enum is not None and value not in prop.enum:
            errors.append(f"Argument '{name}' must be one of: {', '.join(str(v) for v in prop.enum)}")
            rejected.add(name)
        else:
            accepted[name] = value

    for name in tool.parameters.required_names():
        if name not in accepted and name not in rejected:
            errors.append(f"Missing required argument: {name}")

    return accepted, errors
