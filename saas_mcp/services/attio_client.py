"""
Attio CRM API client.

One instance per inbound MCP request: the API key it carries is the
credential of that request and nothing else. Each method issues exactly one
HTTP call against https://api.attio.com/v2 and returns the decoded JSON body;
non-2xx responses raise AttioAPIError. Nothing is retried here.

Usage:
    from saas_mcp.services.attio_client import create_attio_client

    client = create_attio_client(api_key)
    people = await client.search_people({"email_addresses": "jane@example.com"})
"""

import logging
from typing import Any, Optional, Sequence

import httpx

from ..config import settings

logger = logging.getLogger("saas_mcp.services.attio")

SEARCH_LIMIT = 25
NOTES_LIMIT = 50

_NOTE_TEXT_FIELDS = ("title", "content_plaintext", "content_markdown")


class AttioAPIError(Exception):
    """Non-2xx response from the Attio API."""

    def __init__(self, status_code: int, reason: str, body: str) -> None:
        super().__init__(f"Attio API error: {status_code} {reason} - {body}")
        self.status_code = status_code
        self.reason = reason
        self.body = body


class AttioClient:
    """Thin async wrapper over the Attio REST endpoints the MCP tools use."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = (base_url or settings.attio.base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.attio.timeout
        self._transport = transport

    def __repr__(self) -> str:
        return f"AttioClient(base_url={self._base_url!r})"

    # ------------------------------------------------------------------
    # HTTP helper
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.request(
                method,
                f"{self._base_url}{endpoint}",
                headers=headers,
                json=json,
                params=params,
            )
        if response.is_error:
            logger.debug("Attio %s %s -> %s", method, endpoint, response.status_code)
            raise AttioAPIError(response.status_code, response.reason_phrase, response.text)
        return response.json()

    async def _query_records(self, object_slug: str, filters: dict[str, Any], limit: Any) -> Any:
        body: dict[str, Any] = {"filter": filters, "limit": limit} if filters else {"limit": limit}
        return await self._request("POST", f"/objects/{object_slug}/records/query", json=body)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_people(self, filters: Optional[dict[str, Any]] = None, limit: Any = SEARCH_LIMIT) -> Any:
        return await self._query_records("people", filters or {}, limit)

    async def search_companies(self, filters: Optional[dict[str, Any]] = None, limit: Any = SEARCH_LIMIT) -> Any:
        return await self._query_records("companies", filters or {}, limit)

    async def search_deals(self, filters: Optional[dict[str, Any]] = None, limit: Any = SEARCH_LIMIT) -> Any:
        return await self._query_records("deals", filters or {}, limit)

    async def search_notes(self, query: str = "", limit: Any = NOTES_LIMIT) -> dict[str, Any]:
        """
        Fetch up to `limit` notes, then filter them locally.

        Attio has no free-text filter for notes, so matching is a
        case-insensitive substring test over title, plaintext and markdown
        content. Notes beyond the first `limit` fetched are never searched.
        A blank query returns the fetched page unchanged.
        """
        raw = await self._request("GET", "/notes", params={"limit": limit})
        if isinstance(raw, dict) and isinstance(raw.get("data"), list):
            notes = raw
        else:
            notes = {"data": []}

        if not query or not query.strip():
            return notes

        needle = query.lower()
        matched = [note for note in notes["data"] if _note_matches(note, needle)]
        return {**notes, "data": matched}

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def create_note(
        self,
        parent_object: str,
        parent_record_id: str,
        title: str,
        content: str,
        format: str = "plaintext",
    ) -> Any:
        return await self._request(
            "POST",
            "/notes",
            json={
                "data": {
                    "parent_object": parent_object,
                    "parent_record_id": parent_record_id,
                    "title": title,
                    "format": format or "plaintext",
                    "content": content,
                }
            },
        )

    async def create_person(
        self,
        name: Optional[str] = None,
        email_addresses: Optional[Sequence[str]] = None,
        phone_numbers: Optional[Sequence[str]] = None,
        job_title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Any:
        values = _person_values(name, email_addresses, phone_numbers, job_title, description)
        return await self._request(
            "POST", "/objects/people/records", json={"data": {"values": values}}
        )

    async def update_person(
        self,
        record_id: str,
        name: Optional[str] = None,
        email_addresses: Optional[Sequence[str]] = None,
        phone_numbers: Optional[Sequence[str]] = None,
        job_title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Any:
        values = _person_values(name, email_addresses, phone_numbers, job_title, description)
        return await self._request(
            "PATCH", f"/objects/people/records/{record_id}", json={"data": {"values": values}}
        )

    async def create_company(
        self,
        name: Optional[str] = None,
        domains: Optional[Sequence[str]] = None,
        description: Optional[str] = None,
    ) -> Any:
        values = _company_values(name, domains, description)
        return await self._request(
            "POST", "/objects/companies/records", json={"data": {"values": values}}
        )

    async def update_company(
        self,
        record_id: str,
        name: Optional[str] = None,
        domains: Optional[Sequence[str]] = None,
        description: Optional[str] = None,
    ) -> Any:
        values = _company_values(name, domains, description)
        return await self._request(
            "PATCH", f"/objects/companies/records/{record_id}", json={"data": {"values": values}}
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _note_matches(note: Any, needle: str) -> bool:
    if not isinstance(note, dict):
        return False
    return any(
        isinstance(note.get(key), str) and needle in note[key].lower()
        for key in _NOTE_TEXT_FIELDS
    )


def _person_values(
    name: Optional[str],
    email_addresses: Optional[Sequence[str]],
    phone_numbers: Optional[Sequence[str]],
    job_title: Optional[str],
    description: Optional[str],
) -> dict[str, Any]:
    # Empty strings are omitted; an explicitly supplied empty list is sent
    values: dict[str, Any] = {}
    if name:
        values["name"] = name
    if email_addresses is not None:
        values["email_addresses"] = list(email_addresses)
    if phone_numbers is not None:
        values["phone_numbers"] = [{"original_phone_number": number} for number in phone_numbers]
    if job_title:
        values["job_title"] = job_title
    if description:
        values["description"] = description
    return values


def _company_values(
    name: Optional[str],
    domains: Optional[Sequence[str]],
    description: Optional[str],
) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if name:
        values["name"] = name
    if domains is not None:
        values["domains"] = list(domains)
    if description:
        values["description"] = description
    return values


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_attio_client(api_key: str) -> AttioClient:
    """Build a client for one request's credential using the configured endpoint."""
    return AttioClient(api_key, base_url=settings.attio.base_url, timeout=settings.attio.timeout)
