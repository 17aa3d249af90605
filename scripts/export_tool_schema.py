#!/usr/bin/env python3
"""Print a tenant's active tools in LLM function-calling format.

Usage: python scripts/export_tool_schema.py <tenant_id> [output.json]
"""

import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path to import app
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.api.dependencies import get_tool_registry
from app.infra.validation import validate_tenant_id


async def export_tool_schema(tenant_id: str) -> dict:
    export = await get_tool_registry().export_schema(tenant_id)
    return {"tenant_id": tenant_id, "etag": export.etag, "tools": export.tools}


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    tenant_id = sys.argv[1]
    validate_tenant_id(tenant_id)
    payload = asyncio.run(export_tool_schema(tenant_id))
    rendered = json.dumps(payload, indent=2)

    if len(sys.argv) > 2:
        Path(sys.argv[2]).write_text(rendered)
        print(f"Exported {len(payload['tools'])} tools to {sys.argv[2]}")
    else:
        print(rendered)
