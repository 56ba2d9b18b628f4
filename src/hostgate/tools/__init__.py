"""
Tools module for hostgate.

Tools are the capabilities hostgate executes on behalf of a sandboxed
caller.

Built-in tools:
    - proxy.fetch: HTTP request to an approved domain (gated)
    - net.exec: Run an approved CLI command (gated)
    - file.read: Read a host file (sensitive paths blocked)
    - file.serve / file.status / file.cleanup: Expose files over HTTP

Architecture:
    - Tool: Abstract base class defining the tool interface
    - ToolRegistry: Per-gateway registry for looking up tools by name
    - ToolContext: Runtime context passed to tools (call_id, settings)
    - ToolOutput: Standardized result format from tool execution

Policy enforcement happens BEFORE tool execution, in the Gateway.
"""

from hostgate.tools.base import Tool, ToolContext, ToolOutput
from hostgate.tools.fs import FileReadTool
from hostgate.tools.http import ProxyFetchTool
from hostgate.tools.registry import ToolRegistry
from hostgate.tools.serve import FileCleanupTool, FileServeTool, FileStatusTool
from hostgate.tools.shell import NetworkExecTool

__all__ = [
    "FileCleanupTool",
    "FileReadTool",
    "FileServeTool",
    "FileStatusTool",
    "NetworkExecTool",
    "ProxyFetchTool",
    "Tool",
    "ToolContext",
    "ToolOutput",
    "ToolRegistry",
]
