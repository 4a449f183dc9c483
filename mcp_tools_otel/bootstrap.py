"""Process bootstrap for the MCP tool tracing pipeline.

Assembles exporter, tracer provider and instrumentors, and starts them at
most once per process:

    from mcp_tools_otel import bootstrap

    handle = bootstrap.register()  # PipelineHandle on first call, None afterwards

Tracing is best effort. A failure while starting is logged and swallowed;
the host application behaves the same whether or not tracing started.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from importlib.metadata import entry_points

from opentelemetry import trace
from opentelemetry.instrumentation.instrumentor import BaseInstrumentor
from opentelemetry.sdk.trace import TracerProvider

from . import McpToolInstrumentor
from .config import TracingConfig
from .exporters import setup_tracing
from .headers import resolve_headers

logger = logging.getLogger(__name__)

# Entry point group OTel instrumentation packages publish their instrumentors under
INSTRUMENTOR_ENTRY_POINT_GROUP = "opentelemetry_instrumentor"

DIAGNOSTIC_LOGGERS = ("mcp_tools_otel", "opentelemetry")
DIAGNOSTIC_FORMAT = "[otel] %(levelname)s %(name)s: %(message)s"

_diagnostic_handler: logging.Handler | None = None


def configure_diagnostics(level: int = logging.INFO, force: bool = False) -> None:
    """Send package and OpenTelemetry diagnostics to stderr.

    Installs a single stderr handler. A logger level the application already
    set is kept unless ``force`` is true (the debug flag).
    """
    global _diagnostic_handler
    if _diagnostic_handler is None:
        _diagnostic_handler = logging.StreamHandler(sys.stderr)
        _diagnostic_handler.setFormatter(logging.Formatter(DIAGNOSTIC_FORMAT))

    for name in DIAGNOSTIC_LOGGERS:
        target = logging.getLogger(name)
        if force or target.level == logging.NOTSET:
            target.setLevel(level)
        if _diagnostic_handler not in target.handlers:
            target.addHandler(_diagnostic_handler)


def load_auto_instrumentors(tracer_provider: TracerProvider) -> list[BaseInstrumentor]:
    """Instrument every installed OpenTelemetry instrumentor.

    This package's own entry point is skipped; McpToolInstrumentor is
    instrumented explicitly by the pipeline. Instrumentors whose target
    library is missing are skipped by their own dependency check.

    Args:
        tracer_provider: Provider handed to each instrumentor.

    Returns:
        The instrumentors that were loaded.
    """
    instrumentors: list[BaseInstrumentor] = []
    for entry_point in entry_points(group=INSTRUMENTOR_ENTRY_POINT_GROUP):
        if entry_point.module.split(".")[0] == __package__:
            continue
        try:
            instrumentor = entry_point.load()()
            instrumentor.instrument(tracer_provider=tracer_provider)
        except Exception:
            logger.exception(f"Failed to load instrumentor '{entry_point.name}', skipping")
            continue
        instrumentors.append(instrumentor)
        logger.debug(f"Loaded instrumentor '{entry_point.name}'")
    return instrumentors


@dataclass
class PipelineHandle:
    """Lifecycle handle for the process tracing pipeline.

    Attributes:
        started: Whether start() was attempted. Set before starting, so a
            failed start is never retried.
        running: Whether the pipeline started successfully.
        tracer_provider: Provider built on start.
        instrumentors: Instrumentors enabled on start.
    """

    started: bool = False
    running: bool = False
    tracer_provider: TracerProvider | None = None
    instrumentors: list[BaseInstrumentor] = field(default_factory=list)

    def start(self, config: TracingConfig) -> bool:
        """Build and start the pipeline.

        Args:
            config: TracingConfig for exporter and instrumentation.

        Returns:
            True if the pipeline is running. False if it was already
            started, is disabled, or failed to start.
        """
        if self.started:
            logger.debug("Tracing pipeline already started")
            return False
        self.started = True

        if not config.enabled:
            logger.info("Tracing disabled (opt-out active)")
            return False

        try:
            headers = resolve_headers(config)
            provider = setup_tracing(config, headers)
            trace.set_tracer_provider(provider)
            self.tracer_provider = provider

            if config.auto_instrument:
                self.instrumentors.extend(load_auto_instrumentors(provider))

            mcp_instrumentor = McpToolInstrumentor()
            mcp_instrumentor.instrument(tracer_provider=provider)
            self.instrumentors.append(mcp_instrumentor)
        except Exception:
            logger.exception("Failed to start OpenTelemetry SDK")
            return False

        self.running = True
        logger.info("OpenTelemetry SDK started by MCP instrumentation")
        return True

    def shutdown(self) -> None:
        """Flush and shut down the tracer provider.

        Does not reset ``started``; the pipeline is not restartable.
        """
        if self.tracer_provider is not None:
            self.tracer_provider.shutdown()
        self.running = False


# Process-wide pipeline; only register() starts it
_pipeline = PipelineHandle()


def get_pipeline() -> PipelineHandle:
    """Return the process pipeline handle."""
    return _pipeline


def register(
    config: TracingConfig | None = None,
    pipeline: PipelineHandle | None = None,
) -> PipelineHandle | None:
    """Start the tracing pipeline once.

    Args:
        config: Pipeline configuration. Read from the environment if omitted.
        pipeline: Handle to start. Defaults to the process handle.

    Returns:
        The handle on the first call, None on every later call.
    """
    handle = pipeline if pipeline is not None else get_pipeline()
    if handle.started:
        return None

    config = config or TracingConfig.from_env()
    configure_diagnostics(logging.DEBUG if config.debug else logging.INFO, force=config.debug)
    handle.start(config)
    return handle
