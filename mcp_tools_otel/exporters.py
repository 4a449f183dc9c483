"""Exporter configuration for the MCP tool tracing pipeline.

Supports two exporter backends:
- otlp-http: Send to an OTLP collector via HTTP/protobuf (production)
- console: Print spans to stderr (development; stdout carries the MCP
  stdio transport and must stay clean)
"""

import logging
import os
import sys

from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
    SpanProcessor,
)

from .config import TracingConfig

logger = logging.getLogger(__name__)


def _build_resource(config: TracingConfig) -> Resource:
    """Build OTel resource with service attributes."""
    return Resource.create(
        {
            "service.name": config.service_name,
            "service.version": config.service_version,
            "process.pid": os.getpid(),
        }
    )


def build_exporter(config: TracingConfig, headers: dict[str, str]) -> SpanExporter:
    """Construct the span exporter for a configuration.

    Args:
        config: TracingConfig with exporter settings.
        headers: Resolved exporter headers.

    Raises:
        ValueError: If exporter type is unknown.
    """
    if config.exporter == "otlp-http":
        # None endpoint/headers let the exporter fall back to its defaults
        return OTLPSpanExporter(
            endpoint=config.traces_endpoint,
            headers=headers or None,
        )
    if config.exporter == "console":
        return ConsoleSpanExporter(out=sys.stderr)
    raise ValueError(f"Unknown exporter type: {config.exporter}")


def _build_processor(config: TracingConfig, exporter: SpanExporter) -> SpanProcessor:
    if config.exporter == "console":
        # Console exporter - immediate output, good for development
        return SimpleSpanProcessor(exporter)
    return BatchSpanProcessor(
        exporter,
        max_queue_size=config.max_queue_size,
        schedule_delay_millis=config.batch_delay_ms,
    )


def setup_tracing(config: TracingConfig, headers: dict[str, str]) -> TracerProvider:
    """Build a TracerProvider wired to the configured exporter.

    The provider is returned, not installed globally; the caller decides
    when to make it the process tracer provider.

    Args:
        config: TracingConfig with exporter settings.
        headers: Resolved exporter headers.

    Raises:
        ValueError: If exporter type is unknown.
    """
    exporter = build_exporter(config, headers)
    provider = TracerProvider(resource=_build_resource(config))
    provider.add_span_processor(_build_processor(config, exporter))

    if config.debug:
        logger.info(f"Configured {config.exporter} trace exporter")
        if config.exporter == "otlp-http":
            logger.info(f"Endpoint: {config.traces_endpoint or 'exporter default'}")
            logger.info(f"Headers: {sorted(headers)}")

    return provider
