"""Span naming and attribute mapping for MCP tool invocations."""

from typing import Any


class AttributeMapper:
    """Map MCP tool registrations to span names and attributes.

    Span names follow the ``mcp.tool:<toolName>`` contract, where the tool
    name is the exact string the tool was registered under.
    """

    SPAN_NAME_PREFIX = "mcp.tool:"

    MCP_TOOL_NAME = "mcp.tool.name"
    MCP_TOOL_ASYNC = "mcp.tool.async"
    ERROR_TYPE = "error.type"

    @staticmethod
    def span_name(tool_name: str) -> str:
        """Build the span name for a tool invocation.

        Args:
            tool_name: Name the tool was registered under.

        Returns:
            Span name, e.g. ``mcp.tool:search``.
        """
        return f"{AttributeMapper.SPAN_NAME_PREFIX}{tool_name}"

    @staticmethod
    def for_tool(tool_name: str, is_async: bool) -> dict[str, Any]:
        """Map a tool registration to span attributes.

        Args:
            tool_name: Name the tool was registered under.
            is_async: Whether the tool callback is a coroutine function.

        Returns:
            Dictionary of OTel attributes for the tool span.
        """
        return {
            AttributeMapper.MCP_TOOL_NAME: tool_name,
            AttributeMapper.MCP_TOOL_ASYNC: is_async,
        }

    @staticmethod
    def for_error(error: BaseException) -> dict[str, Any]:
        """Map a tool failure to span attributes."""
        return {AttributeMapper.ERROR_TYPE: type(error).__name__}
