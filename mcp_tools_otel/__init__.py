"""
OpenTelemetry instrumentation for MCP server tools.

Wraps ``FastMCP.add_tool`` (``MCPServer.add_tool`` in mcp 2.x; the
``@server.tool()`` decorator delegates to it) so that every tool registered
afterwards produces one ``mcp.tool:<toolName>`` span per invocation. The
tool's arguments, return value and exceptions pass through unchanged.

Usage:
    from mcp_tools_otel import McpToolInstrumentor

    McpToolInstrumentor().instrument()

Or stand up the whole pipeline (OTLP exporter + instrumentors) once:

    from mcp_tools_otel import bootstrap

    bootstrap.register()
"""

import functools
import inspect
import logging
import sys
from collections.abc import Callable, Collection
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Protocol

import wrapt
from opentelemetry import trace
from opentelemetry.instrumentation.instrumentor import BaseInstrumentor

from .attributes import AttributeMapper
from .config import TracingConfig
from .headers import parse_headers
from .spans import ToolSpanManager

logger = logging.getLogger(__name__)

__version__ = "0.1.0"

INSTRUMENTATION_NAME = "opentelemetry-instrumentation-mcp-tools"

# Modules and server classes intercepted on load. mcp 2.x renamed
# mcp.server.fastmcp.FastMCP to mcp.server.mcpserver.MCPServer.
TARGET_MODULE = "mcp.server.fastmcp"
TARGET_CLASS = "FastMCP"
SERVER_TARGETS = (
    (TARGET_MODULE, TARGET_CLASS),
    ("mcp.server.mcpserver", "MCPServer"),
)
TARGET_METHOD = "add_tool"

SUPPORTED_VERSIONS = ">=0.0.0"

_instruments = (f"mcp {SUPPORTED_VERSIONS}",)

# Public exports
__all__ = [
    "McpToolInstrumentor",
    "ModuleHookRegistration",
    "ToolRegistrar",
    "ToolSpanManager",
    "AttributeMapper",
    "TracingConfig",
    "parse_headers",
    "patch_server_class",
    "unpatch_server_class",
    "is_patched",
]


class ToolRegistrar(Protocol):
    """Capability interface wrapped by the instrumentation.

    Any server class whose ``add_tool`` takes the tool callback first and
    its registration name as ``name`` can be patched.
    """

    def add_tool(self, fn: Callable[..., Any], name: str | None = None, **kwargs: Any) -> Any: ...


@dataclass(frozen=True)
class ModuleHookRegistration:
    """Describes how to intercept one module when it is first imported.

    Attributes:
        module_name: Fully qualified module to hook.
        version_range: Distribution version range the hook supports.
        on_load: Called with the imported module; returns it (possibly patched).
        on_unload: Called with the module to undo the patch.
    """

    module_name: str
    version_range: str
    on_load: Callable[[ModuleType], ModuleType]
    on_unload: Callable[[ModuleType], None]


def _resolve_tool_args(args: tuple, kwargs: dict) -> tuple[Callable[..., Any] | None, str | None]:
    """Extract the tool callback and its registration name from add_tool args."""
    if args:
        fn = args[0]
        name = args[1] if len(args) > 1 else kwargs.get("name")
    else:
        fn = kwargs.get("fn")
        name = kwargs.get("name")

    if fn is None or not callable(fn):
        return None, None
    # FastMCP registers unnamed tools under the function name
    return fn, name or getattr(fn, "__name__", None)


def _add_tool_wrapper(span_manager: ToolSpanManager) -> Callable[..., Any]:
    def wrapper(wrapped, instance, args, kwargs):
        fn, tool_name = _resolve_tool_args(args, kwargs)
        if fn is None or not tool_name:
            # Let the original method report the bad call itself
            return wrapped(*args, **kwargs)

        adapter = span_manager.wrap_tool(fn, tool_name)
        if args:
            args = (adapter, *args[1:])
        else:
            kwargs = {**kwargs, "fn": adapter}
        return wrapped(*args, **kwargs)

    return wrapper


def _installed_wrapper(server_cls: type) -> wrapt.FunctionWrapper | None:
    # getattr() would return a bound wrapper; the class slot holds the FunctionWrapper
    attr = inspect.getattr_static(server_cls, TARGET_METHOD, None)
    if isinstance(attr, wrapt.FunctionWrapper):
        return attr
    return None


def is_patched(server_cls: type) -> bool:
    """Check whether a server class's add_tool is already wrapped."""
    return _installed_wrapper(server_cls) is not None


def patch_server_class(server_cls: type, span_manager: ToolSpanManager) -> bool:
    """Wrap ``add_tool`` on a server class so every instance is traced.

    Safe to call repeatedly; an already wrapped class is left alone.

    Args:
        server_cls: Class implementing ToolRegistrar.
        span_manager: Span manager used by the tool adapters.

    Returns:
        True if the class is instrumented, False if it has no add_tool
        (unsupported SDK version).
    """
    if not callable(getattr(server_cls, TARGET_METHOD, None)):
        return False
    if is_patched(server_cls):
        logger.debug(f"{server_cls.__name__}.{TARGET_METHOD} already instrumented")
        return True

    wrapt.wrap_function_wrapper(server_cls, TARGET_METHOD, _add_tool_wrapper(span_manager))
    logger.debug(f"Instrumented {server_cls.__name__}.{TARGET_METHOD}")
    return True


def unpatch_server_class(server_cls: type) -> bool:
    """Restore the original ``add_tool`` on a server class.

    Tools registered while patched keep their span-producing adapter.

    Returns:
        True if a wrapper was removed.
    """
    installed = _installed_wrapper(server_cls)
    if installed is None:
        return False
    setattr(server_cls, TARGET_METHOD, installed.__wrapped__)
    logger.debug(f"Restored {server_cls.__name__}.{TARGET_METHOD}")
    return True


class McpToolInstrumentor(BaseInstrumentor):
    """OpenTelemetry instrumentor for MCP tool callbacks.

    On ``instrument()`` a post-import hook is registered for each MCP SDK
    server module (``FastMCP`` in mcp 1.x, ``MCPServer`` in mcp 2.x). A hook
    fires immediately if its module is already imported, otherwise on first
    import. ``uninstrument()`` restores the original method; tools registered
    in between stay traced.
    """

    _span_manager: ToolSpanManager | None = None
    _hook_active: bool = False
    # Modules with a post-import hook registered; wrapt keeps hooks for the
    # process lifetime, so each module is hooked once.
    _hooked_modules: frozenset[str] = frozenset()

    def instrumentation_dependencies(self) -> Collection[str]:
        return _instruments

    def init(self) -> list[ModuleHookRegistration]:
        """Return the module hooks this instrumentation installs."""
        return [
            ModuleHookRegistration(
                module_name=module_name,
                version_range=SUPPORTED_VERSIONS,
                on_load=functools.partial(self._on_load, class_name=class_name),
                on_unload=functools.partial(self._on_unload, class_name=class_name),
            )
            for module_name, class_name in SERVER_TARGETS
        ]

    def _on_load(self, module: ModuleType, class_name: str = TARGET_CLASS) -> ModuleType:
        # Post-import hooks cannot be deregistered, so a hook that fires after
        # uninstrument() must do nothing.
        if not self._hook_active or self._span_manager is None:
            return module

        server_cls = getattr(module, class_name, None)
        if server_cls is None or not patch_server_class(server_cls, self._span_manager):
            logger.warning(
                f"{module.__name__}.{class_name}.{TARGET_METHOD} not found; "
                "unsupported mcp version, tool calls will not be traced"
            )
        return module

    def _on_unload(self, module: ModuleType, class_name: str = TARGET_CLASS) -> None:
        server_cls = getattr(module, class_name, None)
        if server_cls is not None:
            unpatch_server_class(server_cls)

    def _instrument(self, **kwargs: Any) -> None:
        tracer_provider = kwargs.get("tracer_provider")
        tracer = trace.get_tracer(
            INSTRUMENTATION_NAME,
            __version__,
            tracer_provider,
            schema_url="https://opentelemetry.io/schemas/1.21.0",
        )
        self._span_manager = ToolSpanManager(tracer)
        self._hook_active = True

        for registration in self.init():
            if registration.module_name not in self._hooked_modules:
                self._hooked_modules = self._hooked_modules | {registration.module_name}
                wrapt.register_post_import_hook(registration.on_load, registration.module_name)
                continue
            # Hook already registered (and fired, if the module was imported)
            module = sys.modules.get(registration.module_name)
            if module is not None:
                registration.on_load(module)

    def _uninstrument(self, **kwargs: Any) -> None:
        self._hook_active = False
        for registration in self.init():
            module = sys.modules.get(registration.module_name)
            if module is not None:
                registration.on_unload(module)
