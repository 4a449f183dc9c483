"""Start the tracing pipeline on import.

    import mcp_tools_otel.auto  # noqa: F401

Configuration comes from the environment (see TracingConfig.from_env).
Importing this module more than once starts nothing new.
"""

from .bootstrap import register

register()
