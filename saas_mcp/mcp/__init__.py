"""
MCP servers package.

One server per wrapped SaaS API, all built on the same core:
  - registry / arguments / dispatch  — static tool catalog and call routing
  - context                          — per-request adapter binding
  - server                           — low-level protocol engine wiring
  - transport / sessions / auth      — streamable HTTP, legacy SSE, credentials

Servers:
  - Attio server (saas_mcp.mcp.attio_server) — people, companies, deals, notes

    # Attio on 0.0.0.0:5000 (streamable HTTP on /mcp, SSE on /sse)
    python -m saas_mcp.mcp.attio_server

    # Attio on a different port
    python -m saas_mcp.mcp.attio_server --port 5050
"""
