"""Tests for the GoHighLevel webhook receiver.

WHAT:
    Field extraction, event type normalization, set-once funnel
    timestamps, funnel order policies and the HTTP contract of
    POST /webhooks/gohighlevel.

WHY:
    Every dashboard number starts here: a lost event or a moved
    timestamp silently changes booking, show and close rates.

REFERENCES:
    - funnelboard/services/ghl_webhook_service.py
    - funnelboard/routers/ghl_webhooks.py
"""

from datetime import datetime

import pytest

from funnelboard.deps import Settings, get_settings
from funnelboard.models import CalendarTypeEnum, Contact, ConversionEvent
from funnelboard.services import ghl_webhook_service as svc


def _post(client, payload):
    return client.post("/webhooks/gohighlevel", json=payload)


def _contact(db, ghl_id):
    db.expire_all()
    return db.query(Contact).filter(Contact.ghl_contact_id == ghl_id).one()


class TestExtraction:
    """Declarative field lookup."""

    def test_first_non_empty_path_wins(self):
        payload = {"email": "  ", "contact": {"email": "lead@example.com"}}

        assert svc.extract(payload, svc.CONTACT_FIELD_RULES[2]) == "lead@example.com"

    def test_custom_fields_and_custom_data_are_searched(self):
        payload = {
            "contact": {"customFields": {"ad_id": "AD-9"}},
            "customData": {"utm_source": "facebook"},
        }

        values = svc.extract_all(payload, svc.CONTACT_FIELD_RULES)

        assert values["ad_id"] == "AD-9"
        assert values["utm_source"] == "facebook"

    def test_currency_fields_are_parsed(self):
        values = svc.extract_all({"deal_value": "$5,000"}, svc.CONTACT_FIELD_RULES)

        assert values["deal_value"] == 5000.0

    def test_unparseable_currency_is_dropped(self):
        values = svc.extract_all({"revenue": "$10k-$25k/month"}, svc.CONTACT_FIELD_RULES)

        assert "revenue" not in values
        assert svc.extract_all({"revenue": "$10k-$25k/month"}, svc.FORM_ANSWER_RULES)["revenue"] == "$10k-$25k/month"

    def test_appointment_start_time_human_format(self):
        values = svc.extract_all(
            {"calendar": {"startTime": "Saturday, January 31, 2026 2:00 PM"}}, svc.APPOINTMENT_RULES
        )

        assert values["start_time"] == datetime(2026, 1, 31, 14, 0)


class TestNormalization:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ContactCreate", "contact_create"),
            ("Appointment Create", "appointment_booked"),
            ("booked_call", "appointment_booked"),
            ("OpportunityStageUpdate", "pipeline_stage_changed"),
            ("deal-won", "deal_closed"),
            ("Custom Thing", "custom_thing"),
        ],
    )
    def test_aliases(self, raw, expected):
        assert svc.normalize_event_type(raw) == expected

    def test_calendar_qualification_is_exact(self):
        assert svc.calendar_qualification("Scaling Blueprint Call.") is True
        assert svc.calendar_qualification("Scaling Blueprint Call*") is False
        assert svc.calendar_qualification("Scaling Blueprint Call") is None
        assert svc.calendar_qualification(None) is None


class TestApplyChanges:
    """Set-once timestamps and funnel order policies, without a database."""

    def test_timestamps_are_set_once(self):
        first = datetime(2024, 1, 1, 9, 0)
        contact = Contact(ghl_contact_id="c1", form_submitted_at=first)

        svc.apply_changes(contact, svc.ContactChanges(timestamps={"form_submitted_at": datetime(2024, 1, 5)}))

        assert contact.form_submitted_at == first

    def test_reject_leaves_contact_untouched(self):
        """WHAT: Under "reject" an out-of-order booking changes nothing.
        WHY: A rejected event must not half-apply its field updates.
        """
        contact = Contact(ghl_contact_id="c1", showed_up_at=datetime(2024, 1, 3))
        changes = svc.ContactChanges(
            fields={"email": "late@example.com"},
            timestamps={"call_booked_at": datetime(2024, 1, 4)},
        )

        with pytest.raises(svc.FunnelOrderError) as exc_info:
            svc.apply_changes(contact, changes, policy="reject")

        assert contact.call_booked_at is None
        assert contact.email is None
        assert exc_info.value.violations == ["call_booked_at arrived after showed_up_at"]

    def test_warn_applies_and_reports(self):
        contact = Contact(ghl_contact_id="c1", deal_closed_at=datetime(2024, 1, 3))

        warnings = svc.apply_changes(
            contact, svc.ContactChanges(timestamps={"showed_up_at": datetime(2024, 1, 4)}), policy="warn"
        )

        assert contact.showed_up_at == datetime(2024, 1, 4)
        assert warnings == ["showed_up_at arrived after deal_closed_at"]

    def test_final_deal_value_kept_once_closed(self):
        contact = Contact(ghl_contact_id="c1", deal_closed_at=datetime(2024, 1, 3), final_deal_value=3000.0)

        svc.apply_changes(contact, svc.ContactChanges(
            timestamps={"deal_closed_at": datetime(2024, 1, 9)}, final_deal_value=9000.0,
        ))

        assert contact.final_deal_value == 3000.0
        assert contact.deal_closed_at == datetime(2024, 1, 3)

    def test_history_and_form_answers_accumulate(self):
        contact = Contact(
            ghl_contact_id="c1",
            pipeline_stage_history=[{"pipeline": "Sales", "stage": "New", "timestamp": "t0"}],
            form_responses={"revenue": "$5k-$10k/month"},
        )

        svc.apply_changes(contact, svc.ContactChanges(
            history_entry={"pipeline": "Sales", "stage": "Booked", "timestamp": "t1"},
            form_answers={"investment_ability": "Yes, I have $5k in cash"},
        ))

        assert [h["stage"] for h in contact.pipeline_stage_history] == ["New", "Booked"]
        assert contact.form_responses == {
            "revenue": "$5k-$10k/month",
            "investment_ability": "Yes, I have $5k in cash",
        }


class TestWebhookEndpoint:
    """HTTP contract of POST /webhooks/gohighlevel."""

    def test_booked_call_alias(self, client, test_db_session):
        """WHAT: contactId + workflow_name "booked_call" stores a booked_call event.
        WHY: Workflows built by hand name the event instead of sending a type.
        """
        payload = {
            "contactId": "c-100",
            "workflow_name": "booked_call",
            "calendar": {"id": "cal-1", "name": "Scaling Blueprint Call."},
        }

        response = _post(client, payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["event_type"] == "booked_call"
        assert body["contact_id"] == "c-100"
        assert body["contact"]["funnel_stage"] == "qualified"

        event = test_db_session.query(ConversionEvent).one()
        assert event.raw_payload == payload
        assert event.calendar_type == CalendarTypeEnum.qualified
        assert str(event.id) == body["event_id"]

        contact = _contact(test_db_session, "c-100")
        assert contact.call_booked_at is not None
        assert contact.qualified_at is not None
        assert contact.is_qualified is True
        assert contact.calendar_id == "cal-1"

    def test_form_submission_records_attribution(self, client, test_db_session):
        payload = {
            "type": "form_submission",
            "contact": {
                "id": "c-1",
                "firstName": "Ada",
                "lastName": "Lovelace",
                "email": "ada@example.com",
                "customFields": {"ad_id": "A1", "campaign_name": "Promo"},
            },
            "customData": {"revenue": "$10k-$25k/month", "investment_ability": "I need financing"},
        }

        response = _post(client, payload)

        assert response.status_code == 200
        assert response.json()["contact"]["name"] == "Ada Lovelace"
        contact = _contact(test_db_session, "c-1")
        assert contact.ad_id == "A1"
        assert contact.campaign_name == "Promo"
        assert contact.form_submitted_at is not None
        assert contact.form_responses["revenue"] == "$10k-$25k/month"

        event = test_db_session.query(ConversionEvent).one()
        assert event.event_type == "form_submission"
        assert event.ad_id == "A1"
        assert event.revenue == "$10k-$25k/month"

    def test_replayed_form_keeps_first_timestamp(self, client, test_db_session):
        payload = {"contact_id": "c-2", "type": "form_submission"}

        _post(client, payload)
        first = _contact(test_db_session, "c-2").form_submitted_at
        _post(client, payload)

        assert _contact(test_db_session, "c-2").form_submitted_at == first
        assert test_db_session.query(ConversionEvent).count() == 2

    def test_unknown_event_type_is_logged_only(self, client, test_db_session):
        response = _post(client, {"contact_id": "c-3", "type": "Custom Thing"})

        assert response.status_code == 200
        assert response.json()["event_type"] == "custom_thing"
        assert response.json()["contact"] is None
        assert test_db_session.query(ConversionEvent).count() == 1
        assert test_db_session.query(Contact).count() == 0

    def test_showed_status(self, client, test_db_session):
        response = _post(client, {"contact_id": "c-4", "type": "appointment_status", "appointmentStatus": "Showed"})

        assert response.json()["event_type"] == "showed_up"
        assert _contact(test_db_session, "c-4").showed_up_at is not None

    def test_no_show_status(self, client, test_db_session):
        response = _post(client, {"contact_id": "c-5", "type": "AppointmentUpdate", "appointment": {"status": "no-show"}})

        assert response.json()["event_type"] == "appointment_status"
        assert _contact(test_db_session, "c-5").no_show_at is not None

    def test_out_of_order_is_applied_with_warning(self, client, test_db_session):
        _post(client, {"contact_id": "c-6", "type": "appointment_status", "appointmentStatus": "showed"})

        response = _post(client, {"contact_id": "c-6", "type": "AppointmentCreate"})

        assert response.status_code == 200
        assert response.json()["warnings"] == ["call_booked_at arrived after showed_up_at"]
        assert _contact(test_db_session, "c-6").call_booked_at is not None

    def test_out_of_order_rejected_under_reject_policy(self, app, client, test_db_session):
        """WHAT: FUNNEL_ORDER_POLICY=reject answers 409 but still logs the event.
        WHY: The event log is append-only; only the contact update is skipped.
        """
        app.dependency_overrides[get_settings] = lambda: Settings(FUNNEL_ORDER_POLICY="reject")
        _post(client, {"contact_id": "c-7", "type": "appointment_status", "appointmentStatus": "showed"})

        response = _post(client, {"contact_id": "c-7", "type": "AppointmentCreate"})

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "Funnel order violation"
        assert body["violations"] == ["call_booked_at arrived after showed_up_at"]
        assert test_db_session.query(ConversionEvent).count() == 2
        assert _contact(test_db_session, "c-7").call_booked_at is None

    def test_pipeline_deal_closed_stage(self, client, test_db_session):
        payload = {
            "contact_id": "c-8",
            "type": "pipeline_stage_changed",
            "pipeline": {"name": "Sales", "stage_name": "Deal Closed"},
            "contact": {"customFields": {"deal_value": "$5,000"}},
        }

        response = _post(client, payload)

        assert response.json()["contact"]["funnel_stage"] == "closed"
        contact = _contact(test_db_session, "c-8")
        assert contact.current_pipeline == "Sales"
        assert contact.current_stage == "Deal Closed"
        assert contact.final_deal_value == 5000.0
        assert len(contact.pipeline_stage_history) == 1

    @pytest.mark.parametrize(
        "stage_name",
        ["Deal Closed - Lost", "Not Deal Closed", "Appointment Show Rescheduled", "Pre Appointment No Show Risk"],
    )
    def test_near_miss_stage_names_set_no_timestamp(self, client, test_db_session, stage_name):
        """WHAT: Stage names are matched exactly, not by substring.
        WHY: "Deal Closed - Lost" must not count as a close in every KPI.
        """
        _post(client, {"contact_id": "c-near", "type": "pipeline_stage_changed", "stage_name": stage_name})

        contact = _contact(test_db_session, "c-near")
        assert contact.current_stage == stage_name
        assert contact.deal_closed_at is None
        assert contact.showed_up_at is None
        assert contact.no_show_at is None

    def test_stage_name_match_ignores_case_and_padding(self, client, test_db_session):
        _post(client, {"contact_id": "c-pad", "type": "pipeline_stage_changed", "stage_name": "  appointment NO-SHOW "})

        assert _contact(test_db_session, "c-pad").no_show_at is not None

    def test_deal_won_records_cash(self, client, test_db_session):
        response = _post(client, {"contact_id": "c-9", "type": "deal_won", "opportunity": {"monetaryValue": 12000}})

        assert response.json()["event_type"] == "deal_won"
        event = test_db_session.query(ConversionEvent).one()
        assert event.cash_collected == 12000.0
        contact = _contact(test_db_session, "c-9")
        assert contact.deal_closed_at is not None
        assert contact.final_deal_value == 12000.0

    def test_stage_change_mirrors_to_attributed_duplicate(self, client, test_db_session):
        """WHAT: A stage change on an unattributed duplicate also updates the
        attributed contact with the same email.
        WHY: The CRM sometimes creates a second contact at booking time.
        """
        _post(client, {"contact_id": "orig", "type": "form_submission", "email": "dup@example.com", "ad_id": "A1"})
        _post(client, {"contact_id": "dupe", "type": "form_submission", "email": "dup@example.com"})

        _post(client, {"contact_id": "dupe", "type": "pipeline_stage_changed", "stage_name": "Appointment Showed"})

        assert _contact(test_db_session, "dupe").showed_up_at is not None
        assert _contact(test_db_session, "orig").showed_up_at is not None

    def test_invalid_json_is_400(self, client):
        response = client.post(
            "/webhooks/gohighlevel", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"

    @pytest.mark.parametrize("payload", [{"type": "form_submission"}, {"contact_id": "c-1"}, ["not", "an", "object"]])
    def test_unattributable_payload_is_400(self, client, test_db_session, payload):
        response = _post(client, payload)

        assert response.status_code == 400
        assert test_db_session.query(ConversionEvent).count() == 0

    def test_preflight_allows_any_origin(self, client):
        response = client.options(
            "/webhooks/gohighlevel",
            headers={"Origin": "https://app.gohighlevel.com", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
