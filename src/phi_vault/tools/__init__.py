"""Tool registry utilities for the PHI vault engine."""

from .registry import ToolDescriptor, get_tool_registry, invoke_tool

__all__ = ["ToolDescriptor", "get_tool_registry", "invoke_tool"]
