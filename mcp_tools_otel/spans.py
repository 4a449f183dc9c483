"""Span lifecycle management for MCP tool invocations.

Each registered tool function is wrapped in a span-producing adapter. One
span is started per call, made current for the whole call (including any
awaits inside the tool), and ended on every exit path.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

import wrapt
from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

from .attributes import AttributeMapper

logger = logging.getLogger(__name__)


class ToolSpanManager:
    """Manage OpenTelemetry span lifecycle for MCP tool calls.

    The tool name is captured when the adapter is built (at registration
    time), never at invocation time.

    Context handling relies on ``trace.use_span``, which attaches the span to
    the contextvars-based OTel context and detaches it on exit. Concurrent
    asyncio tasks therefore only ever see their own tool span as current.
    """

    def __init__(self, tracer: Tracer) -> None:
        """Initialize ToolSpanManager with a tracer.

        Args:
            tracer: OpenTelemetry Tracer instance.
        """
        self._tracer = tracer

    def start_tool_span(self, tool_name: str, is_async: bool) -> Span:
        """Start a span for one tool invocation.

        The span is parented under whatever span is current for the caller.
        Caller is responsible for ending it.
        """
        return self._tracer.start_span(
            AttributeMapper.span_name(tool_name),
            kind=SpanKind.INTERNAL,
            attributes=AttributeMapper.for_tool(tool_name, is_async),
        )

    @staticmethod
    def end_tool_span(span: Span, error: BaseException | None = None) -> None:
        """Set the final status on a tool span and end it.

        Args:
            span: The tool span.
            error: The exception the tool raised, if any.
        """
        try:
            if error is not None:
                span.record_exception(error)
                span.set_attributes(AttributeMapper.for_error(error))
                span.set_status(Status(StatusCode.ERROR, type(error).__name__))
            else:
                span.set_status(Status(StatusCode.OK))
        finally:
            span.end()

    def _traced_sync(
        self, tool_name: str, wrapped: Callable[..., Any], args: tuple, kwargs: dict
    ) -> Any:
        span = self.start_tool_span(tool_name, is_async=False)
        error: BaseException | None = None
        try:
            with trace.use_span(
                span, end_on_exit=False, record_exception=False, set_status_on_exception=False
            ):
                return wrapped(*args, **kwargs)
        except BaseException as e:
            error = e
            raise
        finally:
            self.end_tool_span(span, error)

    async def _traced_async(
        self, tool_name: str, wrapped: Callable[..., Any], args: tuple, kwargs: dict
    ) -> Any:
        span = self.start_tool_span(tool_name, is_async=True)
        error: BaseException | None = None
        try:
            with trace.use_span(
                span, end_on_exit=False, record_exception=False, set_status_on_exception=False
            ):
                return await wrapped(*args, **kwargs)
        except BaseException as e:
            error = e
            raise
        finally:
            self.end_tool_span(span, error)

    def wrap_tool(self, fn: Callable[..., Any], tool_name: str) -> Callable[..., Any]:
        """Build the span-producing adapter for a tool function.

        The adapter is a ``wrapt.FunctionWrapper``: it proxies ``__name__``,
        ``__doc__``, annotations and the code flags of ``fn``, so signature
        introspection and sync/async detection see the original function.

        Args:
            fn: The tool callback as passed to the registration call.
            tool_name: Name the tool is registered under.

        Returns:
            The adapter, callable exactly like ``fn``.
        """
        is_async = inspect.iscoroutinefunction(fn)
        logger.debug(f"Wrapping tool '{tool_name}' (async={is_async})")

        if is_async:

            def async_wrapper(wrapped, instance, args, kwargs):
                return self._traced_async(tool_name, wrapped, args, kwargs)

            return wrapt.FunctionWrapper(fn, async_wrapper)

        def sync_wrapper(wrapped, instance, args, kwargs):
            return self._traced_sync(tool_name, wrapped, args, kwargs)

        return wrapt.FunctionWrapper(fn, sync_wrapper)
