"""
SaaS MCP servers.

Small HTTP services that expose third-party SaaS APIs as Model Context
Protocol tools. Every server shares the same front end (saas_mcp.mcp):
a stateless streaming transport on /mcp, the legacy event-stream transport
on /sse + /messages, a per-request credential context and a declarative
tool-dispatch table.
"""

__version__ = "1.0.0"
