"""
Per-request API credential extraction.

A process-wide default credential (e.g. ATTIO_API_KEY) takes precedence;
otherwise the request must carry the configured header (x-auth-token by
default). A request without either is rejected with HTTP 401 before any
request context is created, so it never reaches the tool dispatcher.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger("saas_mcp.mcp.auth")

UNAUTHORIZED_CODE = -32001


@dataclass(frozen=True)
class Credential:
    """An API credential and where it came from ("env" or "header")."""

    value: str = field(repr=False)
    source: str = "header"


def resolve_credential(
    request: Request,
    default: Optional[str] = None,
    header: str = "x-auth-token",
) -> Optional[Credential]:
    """Return the credential for this request, or None when there is none."""
    if default and default.strip():
        return Credential(default.strip(), "env")
    provided = request.headers.get(header, "").strip()
    if provided:
        return Credential(provided, "header")
    return None


def unauthorized_response(request: Request, header: str = "x-auth-token") -> JSONResponse:
    logger.warning(
        "MCP request rejected: missing %s header from %s %s",
        header, request.method, request.url.path,
    )
    return JSONResponse(
        {
            "jsonrpc": "2.0",
            "error": {
                "code": UNAUTHORIZED_CODE,
                "message": "Unauthorized: missing API credential",
            },
            "id": None,
        },
        status_code=401,
    )
