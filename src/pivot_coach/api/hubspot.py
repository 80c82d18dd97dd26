"""
HubSpot CRM Client.

Read-only access to CRM contacts with a private-app or OAuth access token.
"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from ..config.settings import HubSpotSettings
from ..errors import BackendUnavailable, RequestFailed
from ..models.schemas import Contact

logger = logging.getLogger(__name__)

CONTACT_PROPERTIES = "firstname,lastname,email,phone,company,hs_lead_status,notes_last_updated"


class HubSpotClient:
    """Fetches contacts from the HubSpot CRM v3 API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.hubapi.com",
        page_size: int = 100,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HubSpot client.

        Args:
            access_token: Bearer token
            base_url: API base URL
            page_size: Contacts per page (HubSpot max is 100)
            timeout: Request timeout in seconds
            transport: Custom httpx transport
        """
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: HubSpotSettings) -> "HubSpotClient":
        if not settings.access_token:
            raise RequestFailed("HUBSPOT_ACCESS_TOKEN is not set")
        return cls(settings.access_token, settings.base_url, settings.page_size)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HubSpotClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def fetch_contacts(self) -> list[Contact]:
        """
        Fetch all contacts, following pagination cursors.

        Returns:
            Contacts sorted by last name, then first name

        Raises:
            RequestFailed: Non-2xx status (401 when the token expired)
            BackendUnavailable: HubSpot not reachable
        """
        contacts: list[Contact] = []
        after: Optional[str] = None

        while True:
            params = {"limit": self.page_size, "properties": CONTACT_PROPERTIES}
            if after:
                params["after"] = after

            data = await self._get("/crm/v3/objects/contacts", params)
            contacts.extend(self._parse_contact(item) for item in data.get("results", []))

            after = data.get("paging", {}).get("next", {}).get("after")
            if not after:
                break

        contacts.sort(key=lambda c: (c.last_name.lower(), c.first_name.lower()))
        logger.info(f"Fetched {len(contacts)} HubSpot contacts")
        return contacts

    @staticmethod
    def search_contacts(contacts: list[Contact], query: str) -> list[Contact]:
        """Filter contacts by name, company or email substring."""
        query = query.strip().lower()
        if not query:
            return list(contacts)

        return [
            c for c in contacts
            if query in c.full_name.lower()
            or query in c.company.lower()
            or query in c.email.lower()
        ]

    async def _get(self, path: str, params: dict) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"HubSpot API error: {status}")
            if status == 401:
                raise RequestFailed("HubSpot token expired or invalid", status=status) from e
            raise RequestFailed(f"HubSpot API error: {status}", status=status) from e
        except httpx.ConnectError as e:
            raise BackendUnavailable(f"HubSpot not reachable: {e}") from e
        except httpx.HTTPError as e:
            raise RequestFailed(f"HubSpot request failed: {e}") from e
        except ValueError as e:
            raise RequestFailed(f"Invalid HubSpot response: {e}") from e

    @staticmethod
    def _parse_contact(item: dict[str, Any]) -> Contact:
        props = item.get("properties") or {}

        last_activity = None
        updated = props.get("notes_last_updated")
        if updated:
            try:
                last_activity = datetime.fromisoformat(updated.replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"Unparseable notes_last_updated: {updated}")

        return Contact(
            id=str(item["id"]),
            first_name=props.get("firstname") or "",
            last_name=props.get("lastname") or "",
            email=props.get("email") or "",
            company=props.get("company") or "",
            phone=props.get("phone") or "",
            deal_stage=props.get("hs_lead_status"),
            last_activity=last_activity,
        )
