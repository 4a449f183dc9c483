"""Configuration for the MCP tool tracing pipeline."""

import os
from dataclasses import dataclass
from typing import Any, Literal

# Environment variable for global opt-out
OPT_OUT_ENV_VAR = "MCP_OTEL_OPT_OUT"

# Standard OTLP exporter variables
ENDPOINT_ENV_VAR = "OTEL_EXPORTER_OTLP_ENDPOINT"
HEADERS_ENV_VAR = "OTEL_EXPORTER_OTLP_HEADERS"
SERVICE_NAME_ENV_VAR = "OTEL_SERVICE_NAME"

# Dynatrace API token, turned into an "Authorization: Api-Token ..." header
API_TOKEN_ENV_VAR = "DYNATRACE_API_TOKEN"

EXPORTER_ENV_VAR = "MCP_OTEL_EXPORTER"
AUTO_INSTRUMENT_ENV_VAR = "MCP_OTEL_AUTO_INSTRUMENT"
DEBUG_ENV_VAR = "MCP_OTEL_DEBUG"

# Supported exporter types
ExporterType = Literal["otlp-http", "console"]

_TRUTHY = ("1", "true", "yes", "on")


def _check_opt_out() -> bool:
    """Check if tracing is opted out via environment variable.

    Returns:
        True if tracing should be ENABLED (not opted out).
        False if tracing should be DISABLED (opted out).
    """
    opt_out_value = os.environ.get(OPT_OUT_ENV_VAR, "").lower()
    if opt_out_value in _TRUTHY:
        return False
    return True


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class TracingConfig:
    """Configuration for the tracing pipeline.

    Attributes:
        enabled: Master switch. Also respects MCP_OTEL_OPT_OUT.
        service_name: Service name in traces (default: "mcp-server").
        service_version: Service version (default: "0.1.0").
        exporter: Exporter type - "otlp-http" or "console".
        endpoint: OTLP collector base URL. None lets the exporter use its
            own default.
        raw_headers: Comma-separated key=value header string for the exporter.
        api_token: Optional API token sent as "Authorization: Api-Token <token>"
            when raw_headers carries no authorization header.
        auto_instrument: Also instrument every installed OTel instrumentor.
        batch_delay_ms: Batch export delay in milliseconds.
        max_queue_size: Maximum spans buffered before new ones are dropped.
        debug: Enable debug output.
    """

    enabled: bool = True
    service_name: str = "mcp-server"
    service_version: str = "0.1.0"
    exporter: ExporterType = "otlp-http"
    endpoint: str | None = None
    raw_headers: str | None = None
    api_token: str | None = None
    auto_instrument: bool = True
    batch_delay_ms: int = 5000
    max_queue_size: int = 2048
    debug: bool = False

    def __post_init__(self) -> None:
        # Env var opt-out wins over explicit configuration
        if not _check_opt_out():
            self.enabled = False

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "TracingConfig":
        """Create TracingConfig from a dictionary.

        Extracts known fields and ignores unknown ones.

        Args:
            config: Dictionary with configuration values.

        Returns:
            TracingConfig instance with values from dict or defaults.
        """
        known_fields = {
            "enabled",
            "service_name",
            "service_version",
            "exporter",
            "endpoint",
            "raw_headers",
            "api_token",
            "auto_instrument",
            "batch_delay_ms",
            "max_queue_size",
            "debug",
        }
        filtered = {k: v for k, v in config.items() if k in known_fields}
        return cls(**filtered)

    @classmethod
    def from_env(cls) -> "TracingConfig":
        """Create TracingConfig from the process environment.

        Missing variables fall back to defaults; an empty endpoint is
        treated as unset.
        """
        return cls(
            service_name=os.environ.get(SERVICE_NAME_ENV_VAR) or cls.service_name,
            exporter=os.environ.get(EXPORTER_ENV_VAR) or cls.exporter,  # type: ignore[arg-type]
            endpoint=os.environ.get(ENDPOINT_ENV_VAR) or None,
            raw_headers=os.environ.get(HEADERS_ENV_VAR),
            api_token=os.environ.get(API_TOKEN_ENV_VAR) or None,
            auto_instrument=_env_flag(AUTO_INSTRUMENT_ENV_VAR, True),
            debug=_env_flag(DEBUG_ENV_VAR, False),
        )

    @property
    def traces_endpoint(self) -> str | None:
        """Full OTLP/HTTP traces URL derived from the base endpoint."""
        if not self.endpoint:
            return None
        endpoint = self.endpoint.rstrip("/")
        if endpoint.endswith("/v1/traces"):
            return endpoint
        return f"{endpoint}/v1/traces"
