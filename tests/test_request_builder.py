"""Tests for outbound request construction."""

import base64

import pytest
from unittest.mock import patch

from app.infra.error_handler import InternalToolError
from app.models.auth import ApiKeyAuth, BasicAuth, BearerAuth, NoAuth
from app.services.request_builder import (
    append_query,
    apply_auth,
    build_query_string,
    build_tool_request,
)


class TestQueryString:

    def test_encodes_values(self):
        query = build_query_string({"city": "San José", "rooms": 3, "pool": True, "tags": ["a", "b"]})

        assert query == "city=San%20Jos%C3%A9&rooms=3&pool=true&tags=a%2Cb"

    def test_skips_none_and_integral_floats(self):
        assert build_query_string({"max": 5.0, "min": None}) == "max=5"

    def test_append_to_existing_query(self):
        assert append_query("/api/x?lang=es", "sku=1") == "/api/x?lang=es&sku=1"
        assert append_query("/api/x", "") == "/api/x"


class TestApplyAuth:

    def test_no_auth_adds_nothing(self):
        headers = {}
        apply_auth(headers, NoAuth())

        assert headers == {}

    def test_api_key_uses_custom_header(self):
        headers = {}
        apply_auth(headers, ApiKeyAuth(key="k-123", header_name="X-Partner-Key"))

        assert headers == {"X-Partner-Key": "k-123"}

    def test_bearer(self):
        headers = {}
        apply_auth(headers, BearerAuth(token="t-1"))

        assert headers["Authorization"] == "Bearer t-1"

    def test_basic(self):
        headers = {}
        apply_auth(headers, BasicAuth(username="user", password="pass"))

        assert headers["Authorization"] == "Basic " + base64.b64encode(b"user:pass").decode()

    def test_env_secret_reference_is_resolved(self, monkeypatch):
        monkeypatch.setenv("CRM_TOKEN", "from-env")
        headers = {}
        apply_auth(headers, BearerAuth(token="env://CRM_TOKEN"))

        assert headers["Authorization"] == "Bearer from-env"

    def test_unresolvable_reference_raises_without_leaking(self):
        headers = {}
        with patch("app.services.request_builder.get_secret", return_value=None):
            with pytest.raises(InternalToolError) as exc_info:
                apply_auth(headers, BearerAuth(token="vault://secret/crm#token"))

        assert "vault" in exc_info.value.message
        assert "secret/crm" not in exc_info.value.message


class TestBuildToolRequest:

    def test_get_puts_parameters_in_query(self, make_tool):
        tool = make_tool()

        request = build_tool_request(tool, {"sku": "ABC"})

        assert request.method == "GET"
        assert request.url == "https://api.inmobiliaria.com/v1/price?sku=ABC"
        assert request.body is None
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"]

    def test_post_sends_json_body(self, make_tool):
        tool = make_tool(config={"endpoint": "/api/leads", "method": "POST", "timeout_ms": 5000})

        request = build_tool_request(tool, {"sku": "ABC"})

        assert request.url == "/api/leads"
        assert request.body == {"sku": "ABC"}

    def test_post_without_parameters_has_no_body(self, make_tool):
        tool = make_tool(config={"endpoint": "/api/leads", "method": "POST", "timeout_ms": 5000})

        assert build_tool_request(tool, {}).body is None

    def test_delete_sends_no_parameters(self, make_tool):
        tool = make_tool(config={"endpoint": "/api/leads/1", "method": "DELETE", "timeout_ms": 5000})

        request = build_tool_request(tool, {"sku": "ABC"})

        assert request.url == "/api/leads/1"
        assert request.body is None

    def test_auth_header_overrides_static_headers(self, make_tool):
        tool = make_tool(config={
            "endpoint": "/api/leads",
            "method": "GET",
            "headers": {"Authorization": "static", "X-Source": "agent"},
            "auth_type": "bearer",
            "auth_config": {"bearer_token": "live"},
        })

        request = build_tool_request(tool, {})

        assert request.headers["Authorization"] == "Bearer live"
        assert request.headers["X-Source"] == "agent"

    def test_missing_credentials_raise_internal_error(self, make_tool):
        tool = make_tool(config={"endpoint": "/api/leads", "method": "GET", "auth_type": "api_key"})

        with pytest.raises(InternalToolError):
            build_tool_request(tool, {})
