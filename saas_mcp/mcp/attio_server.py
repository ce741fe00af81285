"""
Attio CRM MCP Server.

Exposes an Attio workspace (people, companies, deals, notes) to any
MCP-compatible client. Each request authenticates with its own Attio API key
(x-auth-token header, or ATTIO_API_KEY for single-tenant deployments).

Tools:
    attio_search_people     — search people across name / email / job / company
    attio_search_companies  — search companies across name / domain / team
    attio_search_deals      — filter deals by name, stage and value range
    attio_search_notes      — fetch recent notes and filter them by content
    attio_create_note       — attach a note to a person, company or deal
    attio_create_person     — create a person record
    attio_create_company    — create a company record
    attio_update_person     — update a person record
    attio_update_company    — update a company record

Run:
    python -m saas_mcp.mcp.attio_server                 # 0.0.0.0:5000
    python -m saas_mcp.mcp.attio_server --port 5050
"""

# Load .env before settings are built
# .env.local overrides .env for machine-specific settings (API key, port)
from pathlib import Path
from dotenv import load_dotenv
_env_root = Path(__file__).parent.parent.parent
load_dotenv(_env_root / ".env", override=True)
load_dotenv(_env_root / ".env.local", override=True)

import argparse
import logging
from typing import Any, Callable, Optional, Union

from mcp import types
from pydantic import Field
from starlette.applications import Starlette

from ..config import MCPServerConfig, settings
from ..services.attio_client import NOTES_LIMIT, SEARCH_LIMIT, AttioClient, create_attio_client
from .arguments import ToolArguments
from .context import RequestContextStore
from .dispatch import ToolBinding, ToolDispatcher
from .registry import ToolRegistry
from .server import build_server
from .transport import McpTransport, build_app, serve

logger = logging.getLogger("saas_mcp.mcp.attio")

SERVER_NAME = "attio-mcp-server"
SERVER_VERSION = "1.0.0"

_LIMIT_DESCRIPTION = "Maximum number of results to return (default: 25, max: 50)"


# ---------------------------------------------------------------------------
# Tool descriptors
# ---------------------------------------------------------------------------

SEARCH_PEOPLE_TOOL = types.Tool(
    name="attio_search_people",
    description=(
        "Search for people in your Attio workspace with advanced filtering options. "
        "If no parameter other than limit is provided, it will search all people."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": (
                    "Search query for people (searches across name, email, company, "
                    "job title, description, etc.)"
                ),
            },
            "email": {"type": "string", "description": "Filter by email address"},
            "limit": {"type": "number", "description": _LIMIT_DESCRIPTION, "default": 25},
        },
    },
)

SEARCH_COMPANIES_TOOL = types.Tool(
    name="attio_search_companies",
    description=(
        "Search for companies in your Attio workspace with filtering and sorting. "
        "If no parameter other than limit is provided, it will search all companies."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": (
                    "Search query for companies (searches across name, domain, description, "
                    "employees names, employees descriptions, etc.)"
                ),
            },
            "domain": {"type": "string", "description": "Filter by company domain"},
            "limit": {"type": "number", "description": _LIMIT_DESCRIPTION, "default": 25},
        },
    },
)

SEARCH_DEALS_TOOL = types.Tool(
    name="attio_search_deals",
    description=(
        "Search for deals in your Attio workspace with stage and value filtering. "
        "If no parameter other than limit is provided, it will search all deals."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Filter by deal name"},
            "stage": {
                "type": "string",
                "description": 'Filter by deal stage (one of "Lead", "In Progress", "Won 🎉", "Lost")',
            },
            "minValue": {"type": "number", "description": "Minimum deal value"},
            "maxValue": {"type": "number", "description": "Maximum deal value"},
            "limit": {"type": "number", "description": _LIMIT_DESCRIPTION, "default": 25},
        },
    },
)

SEARCH_NOTES_TOOL = types.Tool(
    name="attio_search_notes",
    description=(
        "Search for notes across all objects in your Attio workspace by fetching "
        "all notes and filtering by content."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": (
                    "Search query for notes content (searches title, plaintext content, "
                    "and markdown content). Leave empty to get all notes."
                ),
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of notes to fetch and search through (default: 50, max: 50)",
                "default": 50,
            },
        },
    },
)

CREATE_NOTE_TOOL = types.Tool(
    name="attio_create_note",
    description="Create a new note for a given record in Attio.",
    inputSchema={
        "type": "object",
        "properties": {
            "parent_object": {
                "type": "string",
                "description": 'The object type to attach the note to (e.g., "people", "companies", "deals")',
                "enum": ["people", "companies", "deals"],
            },
            "parent_record_id": {
                "type": "string",
                "description": "The ID of the record to attach the note to",
            },
            "title": {"type": "string", "description": "Title of the note"},
            "content": {"type": "string", "description": "Content of the note"},
            "format": {
                "type": "string",
                "description": "Format of the note content",
                "enum": ["plaintext", "markdown"],
                "default": "plaintext",
            },
        },
        "required": ["parent_object", "parent_record_id", "title", "content"],
    },
)

_PERSON_PROPERTIES: dict[str, Any] = {
    "name": {"type": "string", "description": "Full name of the person"},
    "email_addresses": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Array of email addresses for the person",
    },
    "phone_numbers": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Array of phone numbers for the person",
    },
    "job_title": {"type": "string", "description": "Job title of the person"},
    "description": {"type": "string", "description": "Description or notes about the person"},
}

_COMPANY_PROPERTIES: dict[str, Any] = {
    "name": {"type": "string", "description": "Name of the company"},
    "domains": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Array of domain names associated with the company",
    },
    "description": {"type": "string", "description": "Description of the company"},
}

CREATE_PERSON_TOOL = types.Tool(
    name="attio_create_person",
    description="Create a new person record in your Attio workspace.",
    inputSchema={"type": "object", "properties": dict(_PERSON_PROPERTIES)},
)

CREATE_COMPANY_TOOL = types.Tool(
    name="attio_create_company",
    description="Create a new company record in your Attio workspace.",
    inputSchema={"type": "object", "properties": dict(_COMPANY_PROPERTIES)},
)

UPDATE_PERSON_TOOL = types.Tool(
    name="attio_update_person",
    description="Update an existing person record in your Attio workspace.",
    inputSchema={
        "type": "object",
        "properties": {
            "record_id": {"type": "string", "description": "ID of the person record to update"},
            **_PERSON_PROPERTIES,
        },
        "required": ["record_id"],
    },
)

UPDATE_COMPANY_TOOL = types.Tool(
    name="attio_update_company",
    description="Update an existing company record in your Attio workspace.",
    inputSchema={
        "type": "object",
        "properties": {
            "record_id": {"type": "string", "description": "ID of the company record to update"},
            **_COMPANY_PROPERTIES,
        },
        "required": ["record_id"],
    },
)


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------

Number = Union[int, float]


class SearchPeopleArgs(ToolArguments):
    query: Optional[str] = None
    email: Optional[str] = None
    limit: Number = SEARCH_LIMIT


class SearchCompaniesArgs(ToolArguments):
    query: Optional[str] = None
    domain: Optional[str] = None
    limit: Number = SEARCH_LIMIT


class SearchDealsArgs(ToolArguments):
    name: Optional[str] = None
    stage: Optional[str] = None
    min_value: Optional[Number] = Field(default=None, alias="minValue")
    max_value: Optional[Number] = Field(default=None, alias="maxValue")
    limit: Number = SEARCH_LIMIT


class SearchNotesArgs(ToolArguments):
    query: str = ""
    limit: Number = NOTES_LIMIT


class CreateNoteArgs(ToolArguments):
    parent_object: str = ""
    parent_record_id: str = ""
    title: str = ""
    content: str = ""
    format: str = "plaintext"


class PersonArgs(ToolArguments):
    name: Optional[str] = None
    email_addresses: Optional[list[str]] = None
    phone_numbers: Optional[list[str]] = None
    job_title: Optional[str] = None
    description: Optional[str] = None


class UpdatePersonArgs(PersonArgs):
    record_id: str = ""


class CompanyArgs(ToolArguments):
    name: Optional[str] = None
    domains: Optional[list[str]] = None
    description: Optional[str] = None


class UpdateCompanyArgs(CompanyArgs):
    record_id: str = ""


# ---------------------------------------------------------------------------
# Filter builders (Attio query grammar)
# ---------------------------------------------------------------------------

def _contains(query: str) -> dict[str, Any]:
    return {"$contains": query}


def _path_contains(via: tuple[str, str], target: tuple[str, str], query: str) -> dict[str, Any]:
    """Match `query` against an attribute of a related record."""
    return {"path": [list(via), list(target)], "constraints": _contains(query)}


def people_filter(args: SearchPeopleArgs) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    if args.query is not None:
        q = args.query
        filters["$or"] = [
            {"name": _contains(q)},
            {"email_addresses": _contains(q)},
            {"description": _contains(q)},
            {"job_title": _contains(q)},
            _path_contains(("people", "company"), ("companies", "name"), q),
            _path_contains(("people", "company"), ("companies", "description"), q),
            {"primary_location": {"locality": _contains(q)}},
        ]
    if args.email is not None:
        filters["email_addresses"] = args.email
    return filters


def companies_filter(args: SearchCompaniesArgs) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    if args.query is not None:
        q = args.query
        filters["$or"] = [
            {"name": _contains(q)},
            {"domains": {"domain": _contains(q)}},
            {"description": _contains(q)},
            {"primary_location": {"locality": _contains(q)}},
            _path_contains(("companies", "team"), ("people", "name"), q),
            _path_contains(("companies", "team"), ("people", "description"), q),
        ]
    if args.domain is not None:
        filters["domains"] = {"domain": args.domain}
    return filters


def deals_filter(args: SearchDealsArgs) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    if args.name is not None:
        filters["name"] = _contains(args.name)
    if args.stage is not None:
        filters["stage"] = args.stage
    if args.min_value is not None or args.max_value is not None:
        value: dict[str, Any] = {}
        if args.min_value is not None:
            value["$gte"] = args.min_value
        if args.max_value is not None:
            value["$lte"] = args.max_value
        filters["value"] = value
    return filters


# ---------------------------------------------------------------------------
# Adapter calls
# ---------------------------------------------------------------------------

async def _search_people(client: AttioClient, args: SearchPeopleArgs) -> Any:
    return await client.search_people(people_filter(args), args.limit)


async def _search_companies(client: AttioClient, args: SearchCompaniesArgs) -> Any:
    return await client.search_companies(companies_filter(args), args.limit)


async def _search_deals(client: AttioClient, args: SearchDealsArgs) -> Any:
    return await client.search_deals(deals_filter(args), args.limit)


async def _search_notes(client: AttioClient, args: SearchNotesArgs) -> Any:
    return await client.search_notes(args.query, args.limit)


async def _create_note(client: AttioClient, args: CreateNoteArgs) -> Any:
    return await client.create_note(
        parent_object=args.parent_object,
        parent_record_id=args.parent_record_id,
        title=args.title,
        content=args.content,
        format=args.format,
    )


async def _create_person(client: AttioClient, args: PersonArgs) -> Any:
    return await client.create_person(
        name=args.name,
        email_addresses=args.email_addresses,
        phone_numbers=args.phone_numbers,
        job_title=args.job_title,
        description=args.description,
    )


async def _create_company(client: AttioClient, args: CompanyArgs) -> Any:
    return await client.create_company(
        name=args.name, domains=args.domains, description=args.description
    )


async def _update_person(client: AttioClient, args: UpdatePersonArgs) -> Any:
    return await client.update_person(
        args.record_id,
        name=args.name,
        email_addresses=args.email_addresses,
        phone_numbers=args.phone_numbers,
        job_title=args.job_title,
        description=args.description,
    )


async def _update_company(client: AttioClient, args: UpdateCompanyArgs) -> Any:
    return await client.update_company(
        args.record_id, name=args.name, domains=args.domains, description=args.description
    )


# ---------------------------------------------------------------------------
# Catalog and dispatch table
# ---------------------------------------------------------------------------

BINDINGS: tuple[ToolBinding, ...] = (
    ToolBinding(SEARCH_PEOPLE_TOOL, SearchPeopleArgs, _search_people),
    ToolBinding(SEARCH_COMPANIES_TOOL, SearchCompaniesArgs, _search_companies),
    ToolBinding(SEARCH_DEALS_TOOL, SearchDealsArgs, _search_deals),
    ToolBinding(SEARCH_NOTES_TOOL, SearchNotesArgs, _search_notes),
    ToolBinding(CREATE_NOTE_TOOL, CreateNoteArgs, _create_note),
    ToolBinding(CREATE_PERSON_TOOL, PersonArgs, _create_person),
    ToolBinding(CREATE_COMPANY_TOOL, CompanyArgs, _create_company),
    ToolBinding(UPDATE_PERSON_TOOL, UpdatePersonArgs, _update_person),
    ToolBinding(UPDATE_COMPANY_TOOL, UpdateCompanyArgs, _update_company),
)

registry = ToolRegistry(binding.descriptor for binding in BINDINGS)
store = RequestContextStore("attio_request_context")
dispatcher = ToolDispatcher(registry, BINDINGS, store)
server = build_server(SERVER_NAME, SERVER_VERSION, dispatcher, store)


def create_app(
    adapter_factory: Callable[[str], Any] = create_attio_client,
    config: Optional[MCPServerConfig] = None,
    default_credential: Optional[str] = None,
) -> Starlette:
    """Build the Starlette app serving both MCP transports for this server."""
    transport = McpTransport(
        server,
        store,
        adapter_factory,
        config=config,
        default_credential=default_credential,
    )
    return build_app(transport)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Attio CRM MCP server")
    parser.add_argument("--host", default=settings.mcp.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.mcp.port, help="Listen port")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if settings.attio.api_key:
        logger.info("Using ATTIO_API_KEY for every request; x-auth-token is ignored")

    app = create_app(default_credential=settings.attio.api_key)
    logger.info("Attio MCP server listening on %s:%d", args.host, args.port)
    serve(app, args.host, args.port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
