"""Tests for tool definition validation."""

import httpx
import pytest

from app.services.tool_validator import (
    validate_call_arguments,
    validate_endpoint_reachability,
    validate_openai_compatibility,
    validate_parameter_schema,
    validate_tool_definition,
)


class TestValidateToolDefinition:
    """Full-definition validation reports every violation at once."""

    def test_valid_definition(self, valid_definition):
        result = validate_tool_definition(valid_definition)

        assert result.is_valid
        assert result.errors == []

    def test_missing_required_fields_are_all_reported(self):
        result = validate_tool_definition({"name": "lonely_tool"})

        assert not result.is_valid
        for key in ("display_name", "description", "category", "tenant_id", "config", "parameters"):
            assert f"Missing required field: {key}" in result.errors

    def test_invalid_name(self, valid_definition):
        valid_definition["name"] = "Get-Price"

        result = validate_tool_definition(valid_definition)

        assert "name must contain only lowercase letters, numbers and underscores" in result.errors

    def test_name_too_long(self, valid_definition):
        valid_definition["name"] = "a" * 51

        result = validate_tool_definition(valid_definition)

        assert "name must be at most 50 characters" in result.errors

    def test_invalid_method(self, valid_definition):
        valid_definition["config"]["method"] = "PATCH"

        result = validate_tool_definition(valid_definition)

        assert "config.method must be one of: GET, POST, PUT, DELETE" in result.errors

    def test_endpoint_outside_allow_list(self, valid_definition):
        valid_definition["config"]["endpoint"] = "https://evil.example.com/steal"

        result = validate_tool_definition(valid_definition)

        assert not result.is_valid
        assert "Domain evil.example.com is not in the allowed domains list" in result.errors

    def test_relative_endpoint_skips_domain_check(self, valid_definition):
        valid_definition["config"]["endpoint"] = "/api/price"

        result = validate_tool_definition(valid_definition)

        assert result.is_valid

    def test_timeout_out_of_range(self, valid_definition):
        valid_definition["config"]["timeout_ms"] = 500

        result = validate_tool_definition(valid_definition)

        assert "config.timeout_ms must be an integer between 1000 and 30000" in result.errors

    def test_timeout_above_tool_maximum(self, valid_definition):
        valid_definition["config"]["timeout_ms"] = 20000
        valid_definition["security"] = {"max_timeout_ms": 10000}

        result = validate_tool_definition(valid_definition)

        assert "Timeout 20000ms exceeds maximum allowed 10000ms" in result.errors

    def test_api_key_auth_requires_key(self, valid_definition):
        valid_definition["config"]["auth_type"] = "api_key"
        valid_definition["config"]["auth_config"] = {}

        result = validate_tool_definition(valid_definition)

        assert "config.auth_config.api_key is required for api_key auth" in result.errors

    def test_forbidden_parameter_name(self, valid_definition):
        valid_definition["parameters"]["properties"]["apiSecretKey"] = {
            "type": "string",
            "description": "Sneaky",
        }

        result = validate_tool_definition(valid_definition)

        assert "Forbidden parameter names: apiSecretKey" in result.errors

    def test_required_parameter_must_be_declared(self, valid_definition):
        valid_definition["parameters"]["required"] = ["sku", "city"]

        result = validate_tool_definition(valid_definition)

        assert "Required parameter 'city' is not defined in properties" in result.errors

    def test_invalid_rate_limit_window(self, valid_definition):
        valid_definition["security"] = {"rate_limit": {"requests": 10, "window": "2w"}}

        result = validate_tool_definition(valid_definition)

        assert any(error.startswith("security.rate_limit.window must be one of") for error in result.errors)

    def test_required_entries_must_be_strings(self, valid_definition):
        valid_definition["parameters"]["required"] = [{"x": 1}]

        result = validate_tool_definition(valid_definition)

        assert not result.is_valid
        assert "parameters.required entries must be strings: {'x': 1}" in result.errors

    def test_non_string_rate_limit_window(self, valid_definition):
        valid_definition["security"] = {"rate_limit": {"requests": 10, "window": ["1m"]}}

        result = validate_tool_definition(valid_definition)

        assert any(error.startswith("security.rate_limit.window must be one of") for error in result.errors)

    def test_non_string_allowed_domain(self, valid_definition):
        valid_definition["security"] = {"allowed_domains": [5]}

        result = validate_tool_definition(valid_definition)

        assert not result.is_valid
        assert "Invalid domain format: 5" in result.errors

    def test_invalid_transform_expression(self, valid_definition):
        valid_definition["response_mapping"] = {"transform_expression": "data.items | explode()"}

        result = validate_tool_definition(valid_definition)

        assert "Invalid transform_expression: Unknown operation: explode" in result.errors

    def test_collects_multiple_errors(self, valid_definition):
        valid_definition["name"] = "Bad Name"
        valid_definition["config"]["method"] = "FETCH"
        valid_definition["parameters"]["properties"]["password"] = {"type": "string", "description": "x"}

        result = validate_tool_definition(valid_definition)

        assert len(result.errors) >= 3


class TestValidateParameterSchema:

    def test_empty_properties(self):
        result = validate_parameter_schema({"type": "object", "properties": {}})

        assert "parameters.properties must be a non-empty object" in result.errors

    def test_unknown_property_type_and_missing_description(self):
        result = validate_parameter_schema({
            "type": "object",
            "properties": {"city": {"type": "object"}},
        })

        assert "Parameter 'city' type must be one of: string, number, boolean, array" in result.errors
        assert "Parameter 'city' must have a description" in result.errors

    def test_invalid_format(self):
        result = validate_parameter_schema({
            "type": "object",
            "properties": {"when": {"type": "string", "description": "Date", "format": "datetime"}},
        })

        assert not result.is_valid


class TestValidateOpenAICompatibility:

    def test_valid_definition_is_compatible(self, valid_definition):
        assert validate_openai_compatibility(valid_definition).is_valid

    def test_too_many_parameters(self, valid_definition):
        valid_definition["parameters"]["properties"] = {
            f"field_{i}": {"type": "string", "description": "Field"} for i in range(101)
        }
        valid_definition["parameters"]["required"] = []

        result = validate_openai_compatibility(valid_definition)

        assert "Function must have at most 100 parameters" in result.errors


class TestValidateEndpointReachability:

    @pytest.mark.asyncio
    async def test_relative_path_is_not_probed(self):
        result = await validate_endpoint_reachability("/api/price")

        assert result.is_valid
        assert result.status is None

    @pytest.mark.asyncio
    async def test_disallowed_domain_is_not_probed(self):
        calls = []
        transport = httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200))

        result = await validate_endpoint_reachability("https://evil.example.com", transport=transport)

        assert not result.is_valid
        assert calls == []

    @pytest.mark.asyncio
    async def test_any_response_counts_as_reachable(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        result = await validate_endpoint_reachability("https://api.crm.com/health", transport=transport)

        assert result.is_valid
        assert result.status == 404

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await validate_endpoint_reachability(
            "https://api.crm.com/health", transport=httpx.MockTransport(handler)
        )

        assert not result.is_valid
        assert result.errors[0].startswith("Connection failed")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await validate_endpoint_reachability(
            "https://api.crm.com/health", transport=httpx.MockTransport(handler)
        )

        assert result.errors == ["Connection timeout"]


class TestValidateCallArguments:

    @pytest.fixture
    def tool(self, make_tool):
        return make_tool(parameters={
            "type": "object",
            "properties": {
                "sku": {"type": "string", "description": "SKU"},
                "rooms": {"type": "number", "description": "Rooms"},
                "status": {"type": "string", "description": "Status", "enum": ["sale", "rent"]},
            },
            "required": ["sku"],
        })

    def test_accepts_declared_arguments(self, tool):
        accepted, errors = validate_call_arguments(tool, {"sku": "ABC", "rooms": 3})

        assert errors == []
        assert accepted == {"sku": "ABC", "rooms": 3}

    def test_drops_undeclared_arguments(self, tool):
        accepted, errors = validate_call_arguments(tool, {"sku": "ABC", "tenant_id": "other"})

        assert errors == []
        assert "tenant_id" not in accepted

    def test_missing_required(self, tool):
        _, errors = validate_call_arguments(tool, {"rooms": 2})

        assert errors == ["Missing required argument: sku"]

    def test_wrong_type(self, tool):
        _, errors = validate_call_arguments(tool, {"sku": "ABC", "rooms": "three"})

        assert errors == ["Argument 'rooms' must be of type number"]

    def test_boolean_is_not_a_number(self, tool):
        _, errors = validate_call_arguments(tool, {"sku": "ABC", "rooms": True})

        assert errors == ["Argument 'rooms' must be of type number"]

    def test_enum_violation(self, tool):
        _, errors = validate_call_arguments(tool, {"sku": "ABC", "status": "auction"})

        assert errors == ["Argument 'status' must be one of: sale, rent"]

    def test_wrongly_typed_required_argument_reported_once(self, tool):
        _, errors = validate_call_arguments(tool, {"sku": 42})

        assert errors == ["Argument 'sku' must be of type string"]
