"""Tests for the CRM contact sync.

WHAT:
    GHLClient error mapping and cursor pagination against an
    httpx.MockTransport, revenue field extraction, and the three sync
    modes of /sync/ghl-contacts.

REFERENCES:
    - funnelboard/services/ghl_client.py
    - funnelboard/services/ghl_contact_sync_service.py
    - funnelboard/routers/ghl_sync.py
"""

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from funnelboard.deps import get_ghl_client
from funnelboard.models import Contact
from funnelboard.services import ghl_contact_sync_service as svc
from funnelboard.services.ghl_client import GHLAPIError, GHLClient, GHLNotFoundError

CASH = svc.CASH_COLLECTED_FIELD_ID
DEAL = svc.DEAL_VALUE_FIELD_ID


def _crm_contact(contact_id, cash=None, deal=None, **extra):
    fields = []
    if cash is not None:
        fields.append({"id": CASH, "value": cash})
    if deal is not None:
        fields.append({"id": DEAL, "value": deal})
    return {"id": contact_id, "firstName": "Lead", "lastName": contact_id, "customFields": fields, **extra}


class _FakeCRM:
    """Serves /contacts/ pages keyed by startAfterId, plus single lookups."""

    def __init__(self, pages, contacts=None, fail_with=None):
        self.pages = pages
        self.contacts = contacts or {}
        self.fail_with = fail_with
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, text="upstream broke")
        if request.url.path == "/contacts/":
            cursor = request.url.params.get("startAfterId")
            contacts, meta = self.pages[cursor]
            return httpx.Response(200, json={"contacts": contacts, "meta": meta})
        contact_id = request.url.path.rsplit("/", 1)[-1]
        if contact_id not in self.contacts:
            return httpx.Response(404, json={"message": "Contact not found"})
        return httpx.Response(200, json={"contact": self.contacts[contact_id]})


def _client(crm):
    return GHLClient(api_key="test-key", transport=httpx.MockTransport(crm))


class TestGHLClient:

    def test_sends_auth_and_version_headers(self):
        crm = _FakeCRM({None: ([], {})})

        _client(crm).list_contacts("loc-1", limit=10)

        request = crm.requests[0]
        assert request.headers["Authorization"] == "Bearer test-key"
        assert request.headers["Version"] == "2021-07-28"
        assert request.url.params["locationId"] == "loc-1"
        assert "startAfter" not in request.url.params

    def test_half_cursor_is_not_sent(self):
        crm = _FakeCRM({None: ([], {})})

        _client(crm).list_contacts("loc-1", start_after=1700000000000, start_after_id=None)

        assert "startAfter" not in crm.requests[0].url.params

    def test_404_raises_not_found(self):
        with pytest.raises(GHLNotFoundError):
            _client(_FakeCRM({}, contacts={})).get_contact("missing")

    def test_server_error_raises_api_error(self):
        with pytest.raises(GHLAPIError) as exc_info:
            _client(_FakeCRM({}, fail_with=500)).list_contacts("loc-1")

        assert exc_info.value.status_code == 500


class TestCustomFieldValue:

    def test_matches_by_id_key_or_field_key(self):
        assert svc.custom_field_value({"customFields": [{"id": CASH, "value": "$1,500"}]}, CASH) == 1500.0
        assert svc.custom_field_value({"customFields": [{"key": CASH, "value": 10}]}, CASH) == 10.0
        assert svc.custom_field_value({"customField": [{"field_key": CASH, "field_value": "7"}]}, CASH) == 7.0

    def test_missing_field_is_none(self):
        assert svc.custom_field_value({"customFields": [{"id": "other", "value": 1}]}, CASH) is None
        assert svc.custom_field_value({}, CASH) is None


class TestSyncContacts:

    def test_paginates_and_writes_only_revenue_contacts(self, test_db_session):
        """WHAT: Two pages are fetched; only contacts with revenue fields are stored.
        WHY: The sync must not create noise rows for the rest of the CRM.
        """
        crm = _FakeCRM({
            None: (
                [_crm_contact("g1", cash="2000"), _crm_contact("g2")],
                {"startAfter": 1700000000000, "startAfterId": "g2"},
            ),
            "g2": ([_crm_contact("g3", deal="$9,000")], {"startAfter": None, "startAfterId": None}),
        })

        result = svc.sync_contacts(test_db_session, _client(crm), "loc-1", batch_size=2, sleep=lambda _: None)

        assert result["total_fetched"] == 3
        assert result["total_updated"] == 2
        assert result["contacts_with_cash"] == 1
        assert result["contacts_with_deal_value"] == 1
        assert result["errors"] == []
        assert len(crm.requests) == 2
        assert crm.requests[1].url.params["startAfterId"] == "g2"

        stored = {c.ghl_contact_id: c for c in test_db_session.query(Contact).all()}
        assert set(stored) == {"g1", "g3"}
        assert stored["g1"].cash_collected == 2000.0
        assert stored["g3"].deal_value == 9000.0

    def test_max_contacts_caps_the_sync(self, test_db_session):
        crm = _FakeCRM({
            None: (
                [_crm_contact("g1", cash="1"), _crm_contact("g2", cash="2")],
                {"startAfter": 1, "startAfterId": "g2"},
            ),
        })

        result = svc.sync_contacts(test_db_session, _client(crm), "loc-1", batch_size=2, max_contacts=1)

        assert result["total_fetched"] == 1
        assert len(crm.requests) == 1

    def test_page_failure_is_reported(self, test_db_session):
        result = svc.sync_contacts(test_db_session, _client(_FakeCRM({}, fail_with=503)), "loc-1")

        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("Batch error:")

    def test_existing_contact_is_updated_in_place(self, test_db_session):
        test_db_session.add(Contact(ghl_contact_id="g1", ad_id="A1"))
        test_db_session.commit()
        crm = _FakeCRM({None: ([_crm_contact("g1", cash="500")], {})})

        svc.sync_contacts(test_db_session, _client(crm), "loc-1", sleep=lambda _: None)

        contact = test_db_session.query(Contact).one()
        assert contact.ad_id == "A1"
        assert contact.cash_collected == 500.0

    def test_record_without_id_is_skipped(self, test_db_session):
        """WHAT: A CRM record carrying revenue but no id is not stored or counted.
        WHY: One malformed record must not abort the rest of the page.
        """
        nameless = _crm_contact("unused", cash="300")
        del nameless["id"]
        crm = _FakeCRM({None: ([nameless, _crm_contact("g2", cash="400")], {})})

        result = svc.sync_contacts(test_db_session, _client(crm), "loc-1", sleep=lambda _: None)
        scan = svc.scan_revenue_contacts(test_db_session, _client(crm), "loc-1", sleep=lambda _: None)

        assert result["total_updated"] == 1
        assert result["errors"] == []
        assert [c["id"] for c in scan["contacts"]] == ["g2"]
        assert [c.ghl_contact_id for c in test_db_session.query(Contact).all()] == ["g2"]


class TestScanRevenueContacts:

    def test_failed_write_is_rolled_back_and_reported(self, test_db_session, monkeypatch):
        """WHAT: A commit failure on one contact is reported and the scan carries on.
        WHY: The session must be usable again after the failure, as in the full sync.
        """
        real_commit = test_db_session.commit
        calls = {"n": 0}

        def flaky_commit():
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("INSERT INTO contacts", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(test_db_session, "commit", flaky_commit)
        crm = _FakeCRM({None: ([_crm_contact("g1", cash="10"), _crm_contact("g2", deal="20")], {})})

        result = svc.scan_revenue_contacts(test_db_session, _client(crm), "loc-1", sleep=lambda _: None)

        assert result["success"] is False
        assert result["total_found"] == 1
        assert [c["id"] for c in result["contacts"]] == ["g2"]
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("Contact g1:")
        assert [c.ghl_contact_id for c in test_db_session.query(Contact).all()] == ["g2"]

    def test_clean_scan_reports_no_errors(self, test_db_session):
        crm = _FakeCRM({None: ([_crm_contact("g1", cash="10")], {})})

        result = svc.scan_revenue_contacts(test_db_session, _client(crm), "loc-1", sleep=lambda _: None)

        assert result["success"] is True
        assert result["errors"] == []


class TestSyncEndpoint:

    def test_single_contact_mode(self, app, client, test_db_session):
        crm = _FakeCRM({}, contacts={"g1": _crm_contact("g1", cash="750", email="g1@example.com")})
        app.dependency_overrides[get_ghl_client] = lambda: _client(crm)

        response = client.post("/sync/ghl-contacts", json={"contactId": "g1"})

        assert response.status_code == 200
        body = response.json()
        assert body["contact"]["cash_collected"] == 750.0
        assert body["contact"]["name"] == "Lead g1"
        assert len(body["contact"]["all_custom_fields"]) == 1
        assert test_db_session.query(Contact).one().email == "g1@example.com"

    def test_unknown_contact_is_404(self, app, client):
        app.dependency_overrides[get_ghl_client] = lambda: _client(_FakeCRM({}, contacts={}))

        response = client.get("/sync/ghl-contacts", params={"contact_id": "nope"})

        assert response.status_code == 404

    def test_scan_revenue_mode(self, app, client):
        crm = _FakeCRM({None: ([_crm_contact("g1", deal="100"), _crm_contact("g2")], {})})
        app.dependency_overrides[get_ghl_client] = lambda: _client(crm)

        response = client.post("/sync/ghl-contacts", json={"scanRevenue": True})

        assert response.status_code == 200
        body = response.json()
        assert body["total_found"] == 1
        assert body["contacts"][0]["id"] == "g1"

    def test_full_sync_mode(self, app, client):
        crm = _FakeCRM({None: ([_crm_contact("g1", cash="1")], {})})
        app.dependency_overrides[get_ghl_client] = lambda: _client(crm)

        response = client.post("/sync/ghl-contacts", json={"batch_size": 50})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["total_updated"] == 1
        assert crm.requests[0].url.params["limit"] == "50"

    def test_upstream_failure_is_502(self, app, client):
        app.dependency_overrides[get_ghl_client] = lambda: _client(_FakeCRM({}, fail_with=500))

        response = client.post("/sync/ghl-contacts", json={"scanRevenue": True})

        assert response.status_code == 502

    def test_batch_size_over_100_is_rejected(self, client):
        response = client.post("/sync/ghl-contacts", json={"batchSize": 500})

        assert response.status_code == 422
