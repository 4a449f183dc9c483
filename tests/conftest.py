"""Pytest configuration and fixtures for MCP tool instrumentation tests."""

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from mcp_tools_otel import McpToolInstrumentor

# Global provider - set once at module import
_tracer_provider = None
_span_exporter = None


def _setup_global_provider():
    """Set up the global OTel tracer provider once."""
    global _tracer_provider, _span_exporter

    if _tracer_provider is None:
        _span_exporter = InMemorySpanExporter()
        _tracer_provider = TracerProvider()
        _tracer_provider.add_span_processor(SimpleSpanProcessor(_span_exporter))
        trace.set_tracer_provider(_tracer_provider)


# Set up provider at import time
_setup_global_provider()


@pytest.fixture
def span_exporter():
    """Get the global span exporter and clear it before each test."""
    assert _span_exporter is not None
    _span_exporter.clear()
    return _span_exporter


@pytest.fixture
def tracer_provider():
    """Get the global tracer provider."""
    return _tracer_provider


@pytest.fixture
def tracer():
    """Get a tracer from the global provider."""
    return trace.get_tracer("test-tracer")


@pytest.fixture
def instrumentor(tracer_provider):
    """Instrument MCP tools for one test, uninstrumenting afterwards."""
    instrumentor = McpToolInstrumentor()
    instrumentor.instrument(tracer_provider=tracer_provider, skip_dep_check=True)
    yield instrumentor
    instrumentor.uninstrument()
