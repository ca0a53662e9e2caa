"""GoHighLevel (LeadConnector) contacts API client.

WHAT:
    REST wrapper for the two contact endpoints the sync job needs:
    - GET /contacts/            cursor-paginated contact list for a location
    - GET /contacts/{id}        single contact lookup

WHY:
    Webhooks only fire on workflow events; cash collected and deal value
    are edited by hand in the CRM, so they are pulled periodically instead.

REFERENCES:
    - https://highlevel.stoplight.io/docs/integrations (Contacts API)
    - funnelboard/services/ghl_contact_sync_service.py (consumer)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

GHL_BASE_URL = "https://services.leadconnectorhq.com"
GHL_API_VERSION = "2021-07-28"


class GHLAPIError(Exception):
    """Custom exception for GoHighLevel API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GHLNotFoundError(GHLAPIError):
    """The requested contact does not exist."""


class GHLClient:
    """Contacts API client bound to one API key.

    Usage:
        client = GHLClient(api_key="...")
        contacts, cursor = client.list_contacts(location_id="loc_1", limit=100)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = GHL_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Version": GHL_API_VERSION,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._client.get(path, params=params)
        except httpx.RequestError as e:
            raise GHLAPIError(f"GHL API request failed: {e}")

        if response.status_code == 404:
            raise GHLNotFoundError(f"GHL API error: 404 - {response.text}", status_code=404)
        if response.status_code >= 400:
            logger.error(f"[GHL_CLIENT] HTTP {response.status_code} for {path}: {response.text[:500]}")
            raise GHLAPIError(
                f"GHL API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    def get_contact(self, contact_id: str) -> Dict[str, Any]:
        """Fetch one contact.

        Raises:
            GHLNotFoundError: Unknown contact id
            GHLAPIError: Any other failure
        """
        data = self._get(f"/contacts/{contact_id}")
        return data.get("contact") or data

    def list_contacts(
        self,
        location_id: str,
        limit: int = 100,
        start_after: Optional[Any] = None,
        start_after_id: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Tuple[Optional[Any], Optional[str]]]:
        """Fetch one page of contacts.

        The cursor pair is only sent when both halves are present; GHL
        rejects a half cursor.

        Returns:
            (contacts, (next_start_after, next_start_after_id))
        """
        params: Dict[str, Any] = {"locationId": location_id, "limit": limit}
        if start_after is not None and start_after_id is not None:
            params["startAfter"] = start_after
            params["startAfterId"] = start_after_id

        data = self._get("/contacts/", params=params)
        meta = data.get("meta") or {}
        return data.get("contacts") or [], (meta.get("startAfter"), meta.get("startAfterId"))
