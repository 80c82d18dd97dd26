"""Tests for the HubSpot contacts client."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from pivot_coach.api.hubspot import HubSpotClient
from pivot_coach.config.settings import HubSpotSettings
from pivot_coach.errors import RequestFailed
from pivot_coach.models.schemas import Contact


def _contact(contact_id: str, first: str, last: str, company: str = "", status=None) -> dict:
    return {
        "id": contact_id,
        "properties": {
            "firstname": first,
            "lastname": last,
            "email": f"{first.lower()}@example.com",
            "company": company,
            "phone": None,
            "hs_lead_status": status,
        },
    }


def _fetch(handler) -> list[Contact]:
    async def main():
        async with HubSpotClient("token-123", transport=httpx.MockTransport(handler)) as client:
            return await client.fetch_contacts()

    return asyncio.run(main())


def test_fetch_follows_pagination_and_sorts() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.params.get("after") is None:
            return httpx.Response(200, json={
                "results": [_contact("1", "Zoé", "Martin", "Bistro Zoé", "OPEN")],
                "paging": {"next": {"after": "cursor-2"}},
            })
        return httpx.Response(200, json={
            "results": [_contact("2", "Paul", "Bernard"), _contact("3", "Anne", "Bernard")],
        })

    contacts = _fetch(handler)

    assert [c.id for c in contacts] == ["3", "2", "1"]
    assert contacts[2].deal_stage == "OPEN"
    assert contacts[2].phone == ""
    assert len(requests) == 2
    assert requests[0].headers["Authorization"] == "Bearer token-123"
    assert requests[0].url.path == "/crm/v3/objects/contacts"
    assert requests[0].url.params["limit"] == "100"
    assert "hs_lead_status" in requests[0].url.params["properties"]
    assert requests[1].url.params["after"] == "cursor-2"


def test_unauthorized_raises_request_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "expired"})

    with pytest.raises(RequestFailed) as exc_info:
        _fetch(handler)
    assert exc_info.value.status == 401


def test_from_settings_requires_token() -> None:
    with pytest.raises(RequestFailed):
        HubSpotClient.from_settings(HubSpotSettings(access_token=None))


def test_search_contacts_matches_name_company_email() -> None:
    contacts = [
        Contact(id="1", first_name="Léa", last_name="Roux", company="Chez Léa", email="lea@roux.fr"),
        Contact(id="2", first_name="Paul", last_name="Bernard", company="Le Zinc", email="paul@zinc.fr"),
    ]

    assert [c.id for c in HubSpotClient.search_contacts(contacts, "zinc")] == ["2"]
    assert [c.id for c in HubSpotClient.search_contacts(contacts, "léa roux")] == ["1"]
    assert [c.id for c in HubSpotClient.search_contacts(contacts, "roux.fr")] == ["1"]
    assert len(HubSpotClient.search_contacts(contacts, "  ")) == 2
