"""Tests for tool dispatch: validation, policy, rate limiting, HTTP and logging."""

import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock

from app.infra.rate_limiter import InMemoryRateLimitStore, RateLimiter
from app.logging.execution_log import InMemoryExecutionLogStore
from app.models.execution import ToolCall
from app.services.tool_dispatcher import ToolDispatcher, decode_body
from app.services.tool_store import InMemoryToolStore

PRICE_TOOL_CONFIG = {"endpoint": "/api/price", "method": "GET", "timeout_ms": 5000}


class RecordingTransport:
    """Collects outbound requests and answers with a handler."""

    def __init__(self, handler):
        self.requests = []
        self._handler = handler

    async def __call__(self, request: httpx.Request):
        self.requests.append(request)
        response = self._handler(request)
        if asyncio.iscoroutine(response):
            response = await response
        return response

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def price_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/price" and request.url.params.get("sku") == "ABC":
        return httpx.Response(200, json={"price": 42})
    return httpx.Response(404, json={"error": {"message": "SKU not found"}})


@pytest.fixture
def store():
    return InMemoryToolStore()


@pytest.fixture
def execution_log():
    return InMemoryExecutionLogStore()


@pytest.fixture
def recorder():
    return RecordingTransport(price_handler)


@pytest.fixture
def dispatcher(store, execution_log, recorder):
    return ToolDispatcher(
        store=store,
        execution_log=execution_log,
        rate_limiter=RateLimiter(store=InMemoryRateLimitStore()),
        transport=recorder.transport(),
        base_url="http://internal.test",
        query_argument_names=["query"],
    )


class TestDispatchSuccess:

    @pytest.mark.asyncio
    async def test_get_tool_returns_mapped_data(self, dispatcher, store, execution_log, recorder, make_tool):
        tool = await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme", executed_by="agent")

        assert result.success
        assert result.data == {"price": 42}
        assert result.status_code == 200
        assert result.error is None
        assert str(recorder.requests[0].url) == "http://internal.test/api/price?sku=ABC"

        logs, total = await execution_log.query("acme")
        assert total == 1
        assert logs[0].tool_id == tool.id
        assert logs[0].executed_by == "agent"
        assert logs[0].response.success

    @pytest.mark.asyncio
    async def test_response_mapping_applied(self, dispatcher, store, make_tool):
        await store.insert_tool(make_tool(
            config=PRICE_TOOL_CONFIG,
            response_mapping={"success_path": "price"},
        ))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert result.data == 42

    @pytest.mark.asyncio
    async def test_auth_header_sent(self, dispatcher, store, recorder, make_tool):
        await store.insert_tool(make_tool(config={
            **PRICE_TOOL_CONFIG,
            "auth_type": "bearer",
            "auth_config": {"bearer_token": "secret-token"},
        }))

        await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert recorder.requests[0].headers["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, store, execution_log, make_tool):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"created": True})

        dispatcher = ToolDispatcher(
            store=store,
            execution_log=execution_log,
            transport=httpx.MockTransport(handler),
            base_url="http://internal.test",
        )
        await store.insert_tool(make_tool(config={"endpoint": "/api/leads", "method": "POST"}))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert result.success
        assert result.status_code == 201
        assert seen["body"] == {"sku": "ABC"}

    @pytest.mark.asyncio
    async def test_query_argument_filters_records(self, store, execution_log, make_tool):
        def handler(request):
            return httpx.Response(200, json={"items": [
                {"title": "Beach house"},
                {"title": "City loft"},
            ]})

        dispatcher = ToolDispatcher(
            store=store,
            execution_log=execution_log,
            transport=httpx.MockTransport(handler),
            base_url="http://internal.test",
            query_argument_names=["query"],
        )
        await store.insert_tool(make_tool(
            name="search_listings",
            config={"endpoint": "/api/listings", "method": "GET"},
            parameters={
                "type": "object",
                "properties": {"query": {"type": "string", "description": "Search text"}},
            },
        ))

        result = await dispatcher.execute("search_listings", {"query": "beach"}, "acme")

        assert result.data == {"items": [{"title": "Beach house"}]}

    @pytest.mark.asyncio
    async def test_query_against_empty_result_returns_message(self, store, execution_log, make_tool):
        dispatcher = ToolDispatcher(
            store=store,
            execution_log=execution_log,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
            base_url="http://internal.test",
            query_argument_names=["query"],
        )
        await store.insert_tool(make_tool(
            name="search_listings",
            config={"endpoint": "/api/listings", "method": "GET"},
            parameters={
                "type": "object",
                "properties": {"query": {"type": "string", "description": "Search text"}},
            },
        ))

        result = await dispatcher.execute("search_listings", {"query": "beach house"}, "acme")

        assert result.success
        assert result.data == {"message": "No results matched 'beach house'.", "suggestions": []}


class TestDispatchFailures:

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher, execution_log):
        result = await dispatcher.execute("does_not_exist", {}, "acme")

        assert not result.success
        assert result.error_type == "not_found"
        assert result.status_code == 404

        logs, _ = await execution_log.query("acme")
        assert logs[0].tool_id is None
        assert logs[0].tool_name == "does_not_exist"

    @pytest.mark.asyncio
    async def test_tool_of_other_tenant_is_not_found(self, dispatcher, store, make_tool):
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "globex")

        assert result.error_type == "not_found"

    @pytest.mark.asyncio
    async def test_invalid_arguments_make_no_request(self, dispatcher, store, recorder, make_tool):
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        result = await dispatcher.execute("get_property_price", {}, "acme")

        assert result.error_type == "validation"
        assert result.data == {"errors": ["Missing required argument: sku"]}
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_non_object_arguments_are_logged_as_empty(self, dispatcher, store, execution_log, recorder, make_tool):
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        result = await dispatcher.execute("get_property_price", ["ABC"], "acme")

        assert result.error_type == "validation"
        assert recorder.requests == []
        logs, _ = await execution_log.query("acme")
        assert logs[0].parameters == {}

    @pytest.mark.asyncio
    async def test_domain_violation_makes_no_request(self, dispatcher, store, recorder, make_tool):
        await store.insert_tool(make_tool(config={"endpoint": "https://evil.example.com/price", "method": "GET"}))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert result.error_type == "security_violation"
        assert result.status_code == 403
        assert "evil.example.com" in result.error
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, dispatcher, store, recorder, make_tool):
        await store.insert_tool(make_tool(
            config=PRICE_TOOL_CONFIG,
            security={"rate_limit": {"requests": 1, "window": "1m"}},
        ))

        first = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")
        second = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert first.success
        assert not second.success
        assert second.error_type == "rate_limited"
        assert second.status_code == 429
        assert 1 <= second.retry_after_seconds <= 60
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_upstream_error_uses_error_path(self, dispatcher, store, make_tool):
        await store.insert_tool(make_tool(
            config=PRICE_TOOL_CONFIG,
            response_mapping={"success_path": "price", "error_path": "error.message"},
        ))

        result = await dispatcher.execute("get_property_price", {"sku": "NOPE"}, "acme")

        assert not result.success
        assert result.error_type == "upstream_error"
        assert result.status_code == 404
        assert result.error == "Upstream returned HTTP 404"
        assert result.data == "SKU not found"

    @pytest.mark.asyncio
    async def test_transport_failure(self, store, execution_log, make_tool):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = ToolDispatcher(
            store=store,
            execution_log=execution_log,
            transport=httpx.MockTransport(handler),
            base_url="http://internal.test",
        )
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert result.error_type == "upstream_error"
        assert result.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout(self, store, execution_log, make_tool):
        async def slow_handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        dispatcher = ToolDispatcher(
            store=store,
            execution_log=execution_log,
            transport=httpx.MockTransport(slow_handler),
            base_url="http://internal.test",
        )
        await store.insert_tool(make_tool(config={**PRICE_TOOL_CONFIG, "timeout_ms": 1000}))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert not result.success
        assert result.error_type == "timeout"
        assert result.status_code == 408
        assert result.error == "Request timeout after 1000ms"
        assert result.execution_time_ms < 4000

    @pytest.mark.asyncio
    async def test_cancellation_is_logged_and_propagated(self, store, execution_log, make_tool):
        started = asyncio.Event()

        async def slow_handler(request):
            started.set()
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        dispatcher = ToolDispatcher(
            store=store,
            execution_log=execution_log,
            transport=httpx.MockTransport(slow_handler),
            base_url="http://internal.test",
        )
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        task = asyncio.create_task(dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme"))
        await asyncio.wait_for(started.wait(), timeout=2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        logs, total = await execution_log.query("acme")
        assert total == 1
        assert logs[0].response.error_type == "timeout"
        assert logs[0].response.error == "Request cancelled"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(self, execution_log):
        store = AsyncMock()
        store.find_tool.side_effect = RuntimeError("database exploded")
        dispatcher = ToolDispatcher(store=store, execution_log=execution_log)

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert result.error_type == "internal"
        assert "exploded" not in result.error

    @pytest.mark.asyncio
    async def test_log_failure_does_not_change_result(self, store, recorder, make_tool):
        broken_log = AsyncMock()
        broken_log.append.side_effect = RuntimeError("log store down")
        dispatcher = ToolDispatcher(
            store=store,
            execution_log=broken_log,
            transport=recorder.transport(),
            base_url="http://internal.test",
        )
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        result = await dispatcher.execute("get_property_price", {"sku": "ABC"}, "acme")

        assert result.success
        broken_log.append.assert_awaited_once()


class TestExecuteBatch:

    @pytest.mark.asyncio
    async def test_results_keep_call_order(self, dispatcher, store, make_tool):
        await store.insert_tool(make_tool(config=PRICE_TOOL_CONFIG))

        results = await dispatcher.execute_batch(
            [
                ToolCall(tool_name="missing_tool"),
                ToolCall(tool_name="get_property_price", parameters={"sku": "ABC"}),
            ],
            "acme",
        )

        assert [result.success for result in results] == [False, True]
        assert results[1].data == {"price": 42}


class TestDecodeBody:

    def test_json(self):
        assert decode_body(httpx.Response(200, json={"a": 1})) == {"a": 1}

    def test_text(self):
        assert decode_body(httpx.Response(200, text="plain")) == "plain"

    def test_empty(self):
        assert decode_body(httpx.Response(204)) is None

    def test_malformed_json_kept_as_text(self):
        response = httpx.Response(200, content=b"{oops", headers={"content-type": "application/json"})

        assert decode_body(response) == "{oops"
