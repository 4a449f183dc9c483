"""Tests for ToolSpanManager and the span-producing tool adapter."""

import asyncio
import inspect
from unittest.mock import patch

import pytest
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from mcp_tools_otel.spans import ToolSpanManager

# Fixtures tracer and span_exporter come from conftest.py


@pytest.fixture
def span_manager(tracer):
    """Create a ToolSpanManager instance."""
    return ToolSpanManager(tracer)


class ToolFailure(Exception):
    pass


class TestToolSpanLifecycle:
    """Tests for start/end of tool spans."""

    def test_start_and_end_ok(self, span_manager, span_exporter):
        span = span_manager.start_tool_span("search", is_async=False)
        span_manager.end_tool_span(span)

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].name == "mcp.tool:search"
        assert spans[0].status.status_code == StatusCode.OK
        assert spans[0].attributes["mcp.tool.name"] == "search"

    def test_end_with_error(self, span_manager, span_exporter):
        span = span_manager.start_tool_span("search", is_async=False)
        span_manager.end_tool_span(span, ToolFailure("bad"))

        finished = span_exporter.get_finished_spans()[0]
        assert finished.status.status_code == StatusCode.ERROR
        assert finished.attributes["error.type"] == "ToolFailure"
        assert finished.events[0].name == "exception"


class TestAsyncToolAdapter:
    """Tests for adapters around coroutine tool functions."""

    @pytest.mark.asyncio
    async def test_success_returns_result_unchanged(self, span_manager, span_exporter):
        result_obj = {"answer": 42}

        async def tool(x):
            return result_obj

        adapter = span_manager.wrap_tool(tool, "answer")
        result = await adapter(1)

        assert result is result_obj
        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].name == "mcp.tool:answer"
        assert spans[0].status.status_code == StatusCode.OK
        assert spans[0].attributes["mcp.tool.async"] is True

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_reraised(self, span_manager, span_exporter):
        error = ToolFailure("nope")

        async def tool():
            await asyncio.sleep(0)
            raise error

        adapter = span_manager.wrap_tool(tool, "broken")
        with pytest.raises(ToolFailure) as exc_info:
            await adapter()

        assert exc_info.value is error
        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].status.status_code == StatusCode.ERROR
        exception_events = [e for e in spans[0].events if e.name == "exception"]
        assert len(exception_events) == 1
        # SDK versions differ on whether exception.type is module-qualified
        assert exception_events[0].attributes["exception.type"].endswith("ToolFailure")

    @pytest.mark.asyncio
    async def test_span_is_current_across_awaits(self, span_manager, span_exporter):
        seen = []

        async def tool():
            seen.append(trace.get_current_span())
            await asyncio.sleep(0)
            seen.append(trace.get_current_span())

        adapter = span_manager.wrap_tool(tool, "ctx")
        before = trace.get_current_span()
        await adapter()

        finished = span_exporter.get_finished_spans()[0]
        assert seen[0].get_span_context().span_id == finished.context.span_id
        assert seen[1].get_span_context().span_id == finished.context.span_id
        assert trace.get_current_span() is before

    @pytest.mark.asyncio
    async def test_nested_spans_are_parented(self, span_manager, span_exporter, tracer):
        async def tool():
            with tracer.start_as_current_span("inner"):
                await asyncio.sleep(0)

        await span_manager.wrap_tool(tool, "outer")()

        spans = {s.name: s for s in span_exporter.get_finished_spans()}
        assert spans["inner"].parent.span_id == spans["mcp.tool:outer"].context.span_id

    @pytest.mark.asyncio
    async def test_span_started_before_and_ended_after_tool(self, span_manager, span_exporter):
        observed = {}

        async def tool():
            observed["finished_during_call"] = len(span_exporter.get_finished_spans())
            await asyncio.sleep(0)

        await span_manager.wrap_tool(tool, "timing")()

        assert observed["finished_during_call"] == 0
        assert len(span_exporter.get_finished_spans()) == 1

    @pytest.mark.asyncio
    async def test_interleaved_calls_do_not_share_context(self, span_manager, span_exporter):
        seen = {}
        gate = asyncio.Event()

        async def tool(label):
            seen.setdefault(label, []).append(trace.get_current_span().get_span_context().span_id)
            if label == "a":
                await gate.wait()
            else:
                gate.set()
            seen[label].append(trace.get_current_span().get_span_context().span_id)
            return label

        adapter = span_manager.wrap_tool(tool, "interleaved")
        results = await asyncio.gather(adapter("a"), adapter("b"))

        assert results == ["a", "b"]
        assert len(set(seen["a"])) == 1
        assert len(set(seen["b"])) == 1
        assert seen["a"][0] != seen["b"][0]
        assert len(span_exporter.get_finished_spans()) == 2

    @pytest.mark.asyncio
    async def test_cancellation_ends_span(self, span_manager, span_exporter):
        async def tool():
            await asyncio.sleep(10)

        task = asyncio.ensure_future(span_manager.wrap_tool(tool, "slow")())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].status.status_code == StatusCode.ERROR

    def test_adapter_looks_like_original(self, span_manager):
        async def lookup(city: str, units: str = "metric") -> str:
            """Look up the weather."""
            return city

        adapter = span_manager.wrap_tool(lookup, "lookup")

        assert inspect.iscoroutinefunction(adapter)
        assert adapter.__name__ == "lookup"
        assert adapter.__doc__ == "Look up the weather."
        assert list(inspect.signature(adapter).parameters) == ["city", "units"]


class TestSyncToolAdapter:
    """Tests for adapters around plain tool functions."""

    def test_success(self, span_manager, span_exporter):
        def add(a, b):
            return a + b

        adapter = span_manager.wrap_tool(add, "add")

        assert adapter(2, b=3) == 5
        assert not inspect.iscoroutinefunction(adapter)
        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].status.status_code == StatusCode.OK
        assert spans[0].attributes["mcp.tool.async"] is False

    def test_failure(self, span_manager, span_exporter):
        error = ValueError("bad input")

        def tool():
            raise error

        with pytest.raises(ValueError) as exc_info:
            span_manager.wrap_tool(tool, "tool")()

        assert exc_info.value is error
        assert span_exporter.get_finished_spans()[0].status.status_code == StatusCode.ERROR

    def test_sequential_calls_each_get_a_span(self, span_manager, span_exporter):
        current = []

        def tool():
            current.append(trace.get_current_span().get_span_context().span_id)

        adapter = span_manager.wrap_tool(tool, "seq")
        adapter()
        adapter()

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 2
        assert current == [s.context.span_id for s in spans]
        assert not trace.get_current_span().get_span_context().is_valid


class TestContextActivationFailure:
    """A span whose context cannot be activated is still ended."""

    def test_sync_span_ended_when_use_span_fails(self, span_manager, span_exporter):
        called = []

        with patch("mcp_tools_otel.spans.trace.use_span", side_effect=RuntimeError("ctx")):
            with pytest.raises(RuntimeError, match="ctx"):
                span_manager.wrap_tool(lambda: called.append(1), "sync_ctx")()

        assert called == []
        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].name == "mcp.tool:sync_ctx"
        assert spans[0].status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_async_span_ended_when_use_span_fails(self, span_manager, span_exporter):
        async def tool():
            return "unreachable"

        with patch("mcp_tools_otel.spans.trace.use_span", side_effect=RuntimeError("ctx")):
            with pytest.raises(RuntimeError, match="ctx"):
                await span_manager.wrap_tool(tool, "async_ctx")()

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].status.status_code == StatusCode.ERROR
        assert spans[0].attributes["error.type"] == "RuntimeError"
