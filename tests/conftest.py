"""Pytest configuration and fixtures."""

import copy
import os

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment before any app module reads its configuration
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ["TOOL_STORE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["GLOBAL_ALLOWED_DOMAINS"] = "api.inmobiliaria.com,api.promociones.com,api.crm.com"
os.environ["INTERNAL_API_BASE_URL"] = "http://internal.test"
os.environ["FUZZY_QUERY_ARGUMENTS"] = "query,q,search"

from app.models.tool import ToolDefinition

TENANT_ID = "acme"

VALID_DEFINITION = {
    "name": "get_property_price",
    "display_name": "Property price",
    "description": "Look up the listed price of a property by SKU",
    "category": "real_estate",
    "tenant_id": TENANT_ID,
    "config": {
        "endpoint": "https://api.inmobiliaria.com/v1/price",
        "method": "GET",
        "auth_type": "none",
        "timeout_ms": 5000,
    },
    "parameters": {
        "type": "object",
        "properties": {
            "sku": {"type": "string", "description": "Property SKU"},
        },
        "required": ["sku"],
    },
}


@pytest.fixture
def valid_definition():
    """A fresh copy of a definition that passes validation."""
    return copy.deepcopy(VALID_DEFINITION)


@pytest.fixture
def make_tool():
    """Build a ToolDefinition from VALID_DEFINITION with top-level overrides."""
    def _make(**overrides):
        definition = copy.deepcopy(VALID_DEFINITION)
        definition.update(overrides)
        return ToolDefinition.model_validate(definition)
    return _make
