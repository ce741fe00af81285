"""
Backend adapters for the wrapped SaaS APIs.

One module per integration; each exposes a client class whose methods map
one-to-one onto the MCP tools of the corresponding server.
"""
