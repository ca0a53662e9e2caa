"""GoHighLevel webhook processing.

WHAT:
    Turns one CRM webhook body into:
    - exactly one ConversionEvent row (always, even for unknown types)
    - an update of the matching Contact's funnel state (known types only)

    Field extraction is declarative: each FieldRule lists the key paths a
    value may live under, in priority order, and the first non-empty one
    wins. CRM workflows send the same field as snake_case, camelCase,
    nested under `contact`, under `contact.customFields` or under
    `customData`, depending on how the workflow was built.

WHY:
    - Funnel timestamps are set once; replays and late duplicates never
      move them
    - Out-of-order events (e.g. a booking arriving after the show) are
      detected and either applied with a warning or rejected, depending
      on FUNNEL_ORDER_POLICY
    - The event row and the contact update share one transaction, so the
      event log never claims an update that was rolled back

REFERENCES:
    - funnelboard/routers/ghl_webhooks.py (HTTP surface)
    - funnelboard/services/funnel_metrics.py (stage derivation)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from funnelboard.models import CalendarTypeEnum, Contact, ConversionEvent
from funnelboard.services.funnel_metrics import contact_funnel_row
from funnelboard.utils.dates import parse_flexible_datetime, utcnow
from funnelboard.utils.numbers import parse_currency

logger = logging.getLogger(__name__)

QUALIFIED_CALENDAR_NAME = "Scaling Blueprint Call."
DQ_CALENDAR_NAME = "Scaling Blueprint Call*"

SHOWED_STATUSES = {"showed", "completed", "confirmed"}
NO_SHOW_STATUSES = {"noshow", "no_show", "no-show", "cancelled"}

# Pipeline stage names, compared exactly after lowercasing and trimming
NO_SHOW_STAGES = {"appointment no-show", "appointment no show"}
SHOWED_STAGES = {
    "follow-up high intent",
    "follow up high intent",
    "appointment show",
    "appointment showed",
    "showed up",
}
DEAL_CLOSED_STAGES = {"deal closed"}

# Normalized raw type -> canonical type
EVENT_TYPE_ALIASES = {
    "contactcreate": "contact_create",
    "contact_create": "contact_create",
    "form_submission": "form_submission",
    "formsubmission": "form_submission",
    "appointmentcreate": "appointment_booked",
    "appointment_create": "appointment_booked",
    "appointment_booked": "appointment_booked",
    "call_booked": "appointment_booked",
    "booked_call": "appointment_booked",
    "appointmentupdate": "appointment_update",
    "appointment_update": "appointment_update",
    "appointment_status": "appointment_status",
    "opportunitystageupdate": "pipeline_stage_changed",
    "opportunity_stage_update": "pipeline_stage_changed",
    "pipeline_stage_changed": "pipeline_stage_changed",
    "stage_changed": "pipeline_stage_changed",
    "opportunitystatusupdate": "deal_closed",
    "opportunity_status_update": "deal_closed",
    "deal_closed": "deal_closed",
    "deal_won": "deal_closed",
}

# Position of each funnel timestamp; timestamps of equal rank are alternatives
FUNNEL_RANK = {
    "form_submitted_at": 0,
    "call_booked_at": 1,
    "qualified_at": 1,
    "disqualified_at": 1,
    "showed_up_at": 2,
    "no_show_at": 2,
    "deal_closed_at": 3,
}


class WebhookValidationError(ValueError):
    """The body cannot be attributed to a contact and event type."""


class FunnelOrderError(Exception):
    """An event would set an earlier funnel stage after a later one."""

    def __init__(self, message: str, violations: Sequence[str]):
        super().__init__(message)
        self.violations = list(violations)


# =============================================================================
# DECLARATIVE EXTRACTION
# =============================================================================

Path = Tuple[str, ...]


@dataclass(frozen=True)
class FieldRule:
    """Where to find one field, in priority order, and how to convert it."""
    name: str
    paths: Tuple[Path, ...]
    transform: Optional[Callable[[Any], Any]] = None


def _lookup(payload: Any, path: Path) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def extract(payload: Dict[str, Any], rule: FieldRule) -> Any:
    """First non-empty value along rule.paths, transformed; None if absent."""
    for path in rule.paths:
        value = _lookup(payload, path)
        if _is_present(value):
            return rule.transform(value) if rule.transform else value
    return None


def _text(value: Any) -> str:
    return str(value).strip()


def contact_paths(*keys: str) -> Tuple[Path, ...]:
    """Search order for a contact field: root, contact.*, custom fields, customData."""
    paths: List[Path] = []
    for prefix in ((), ("contact",), ("contact", "customFields"), ("contact", "customField"),
                   ("customData",), ("custom_data",)):
        paths.extend(prefix + (key,) for key in keys)
    return tuple(paths)


CONTACT_ID_RULE = FieldRule(
    "contact_id",
    (("contact_id",), ("contactId",), ("contact", "id"), ("contact", "contact_id"), ("contact", "contactId")),
    _text,
)

EVENT_TYPE_RULE = FieldRule(
    "event_type",
    (("type",), ("event",), ("event_type",), ("eventType",), ("workflow_name",), ("workflowName",)),
    _text,
)

CONTACT_FIELD_RULES: Tuple[FieldRule, ...] = (
    FieldRule("first_name", contact_paths("first_name", "firstName"), _text),
    FieldRule("last_name", contact_paths("last_name", "lastName"), _text),
    FieldRule("email", contact_paths("email"), _text),
    FieldRule("phone", contact_paths("phone"), _text),
    FieldRule("ad_id", contact_paths("ad_id", "adId"), _text),
    FieldRule("ad_name", contact_paths("ad_name", "adName"), _text),
    FieldRule("campaign_id", contact_paths("campaign_id", "campaignId"), _text),
    FieldRule("campaign_name", contact_paths("campaign_name", "campaignName"), _text),
    FieldRule("adset_id", contact_paths("adset_id", "adsetId"), _text),
    FieldRule("adset_name", contact_paths("adset_name", "adsetName"), _text),
    FieldRule("utm_source", contact_paths("utm_source", "utmSource"), _text),
    FieldRule("utm_medium", contact_paths("utm_medium", "utmMedium"), _text),
    FieldRule("utm_campaign", contact_paths("utm_campaign", "utmCampaign"), _text),
    FieldRule("utm_content", contact_paths("utm_content", "utmContent"), _text),
    FieldRule("utm_term", contact_paths("utm_term", "utmTerm"), _text),
    FieldRule("fbclid", contact_paths("fbclid"), _text),
    FieldRule("revenue", contact_paths("revenue"), parse_currency),
    FieldRule("investment_ability", contact_paths("investment_ability", "investmentAbility"), parse_currency),
    FieldRule("deal_value", contact_paths("deal_value", "dealValue"), parse_currency),
    FieldRule("scaling_challenge", contact_paths("scaling_challenge", "scalingChallenge"), _text),
)

# Raw answers kept verbatim for form analytics and the event log
FORM_ANSWER_RULES: Tuple[FieldRule, ...] = (
    FieldRule("revenue", contact_paths("revenue"), _text),
    FieldRule("investment_ability", contact_paths("investment_ability", "investmentAbility"), _text),
    FieldRule("scaling_challenge", contact_paths("scaling_challenge", "scalingChallenge"), _text),
)

APPOINTMENT_RULES: Tuple[FieldRule, ...] = (
    FieldRule("calendar_id", (
        ("calendar", "calendarId"), ("calendar", "calendar_id"), ("calendar", "id"),
        ("appointment", "calendarId"), ("appointment", "calendar_id"),
        ("calendarId",), ("calendar_id",),
    ), _text),
    FieldRule("calendar_name", (
        ("calendar", "name"), ("calendar", "calendarName"),
        ("appointment", "calendar_name"), ("appointment", "calendarName"),
        ("calendarName",), ("calendar_name",),
    ), _text),
    FieldRule("start_time", (
        ("calendar", "startTime"), ("calendar", "start_time"),
        ("appointment", "startTime"), ("appointment", "start_time"),
        ("startTime",), ("start_time",),
    ), parse_flexible_datetime),
    FieldRule("status", (
        ("calendar", "status"), ("calendar", "appointmentStatus"), ("calendar", "appoinmentStatus"),
        ("appointment", "status"), ("appointment", "appointmentStatus"),
        ("appointmentStatus",), ("appointment_status",), ("status",),
    ), lambda v: _text(v).lower()),
)

OPPORTUNITY_RULES: Tuple[FieldRule, ...] = (
    FieldRule("pipeline_name", (
        ("opportunity", "pipelineName"), ("opportunity", "pipeline_name"),
        ("pipeline", "pipelineName"), ("pipeline", "pipeline_name"), ("pipeline", "name"),
        ("pipelineName",), ("pipeline_name",),
    ), _text),
    FieldRule("stage_name", (
        ("opportunity", "stageName"), ("opportunity", "stage_name"),
        ("pipeline", "stageName"), ("pipeline", "stage_name"),
        ("stageName",), ("stage_name",), ("pipeline_stage",), ("pipleline_stage",),
    ), _text),
    FieldRule("status", (
        ("opportunity", "status"), ("pipeline", "status"), ("opportunity_status",),
    ), lambda v: _text(v).lower()),
    FieldRule("monetary_value", (
        ("opportunity", "monetaryValue"), ("opportunity", "monetary_value"),
        ("pipeline", "monetaryValue"), ("pipeline", "monetary_value"),
        ("monetaryValue",), ("monetary_value",),
        ("cash_collected",), ("cashCollected",), ("amount",),
    ), parse_currency),
)


def extract_all(payload: Dict[str, Any], rules: Sequence[FieldRule]) -> Dict[str, Any]:
    """Extract every rule, keeping only values that were found."""
    values = {}
    for rule in rules:
        value = extract(payload, rule)
        if value is not None:
            values[rule.name] = value
    return values


def normalize_event_type(raw: str) -> str:
    """Lowercase, spaces/hyphens -> underscores, then map aliases.

    Example:
        normalize_event_type("Appointment Create") -> "appointment_booked"
        normalize_event_type("Custom Thing") -> "custom_thing"
    """
    normalized = raw.strip().lower().replace(" ", "_").replace("-", "_")
    return EVENT_TYPE_ALIASES.get(normalized, normalized)


def calendar_qualification(calendar_name: Optional[str]) -> Optional[bool]:
    """True for the qualified calendar, False for the DQ calendar, else unknown."""
    if not calendar_name:
        return None
    name = calendar_name.strip()
    if name == QUALIFIED_CALENDAR_NAME:
        return True
    if name == DQ_CALENDAR_NAME:
        return False
    return None


# =============================================================================
# CONTACT CHANGES
# =============================================================================

@dataclass
class ContactChanges:
    """What one event wants to do to a contact.

    `fields` overwrite when present; `timestamps` are funnel timestamps
    applied only when still unset.
    """
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamps: Dict[str, datetime] = field(default_factory=dict)
    history_entry: Optional[Dict[str, Any]] = None
    form_answers: Dict[str, Any] = field(default_factory=dict)
    final_deal_value: Optional[float] = None


def _order_violations(contact: Contact, timestamps: Dict[str, datetime]) -> List[str]:
    violations = []
    for name in timestamps:
        if getattr(contact, name) is not None:
            continue  # already set, will be skipped
        rank = FUNNEL_RANK[name]
        later = [
            other for other, other_rank in FUNNEL_RANK.items()
            if other_rank > rank and getattr(contact, other) is not None
        ]
        if later:
            violations.append(f"{name} arrived after {', '.join(sorted(later))}")
    return violations


def apply_changes(contact: Contact, changes: ContactChanges, policy: str = "warn") -> List[str]:
    """Apply changes to a contact, honoring set-once timestamps and funnel order.

    Returns:
        Warnings for out-of-order timestamps that were applied (policy "warn")

    Raises:
        FunnelOrderError: Out-of-order timestamps under policy "reject";
            the contact is left untouched
    """
    violations = _order_violations(contact, changes.timestamps)
    if violations and policy == "reject":
        raise FunnelOrderError("Funnel order violation: " + "; ".join(violations), violations)

    for name, value in changes.fields.items():
        setattr(contact, name, value)

    closing = changes.timestamps.get("deal_closed_at") is not None and contact.deal_closed_at is None
    for name, value in changes.timestamps.items():
        if getattr(contact, name) is None:
            setattr(contact, name, value)

    if changes.final_deal_value is not None and (closing or contact.final_deal_value is None):
        contact.final_deal_value = changes.final_deal_value

    if changes.history_entry is not None:
        contact.pipeline_stage_history = list(contact.pipeline_stage_history or []) + [changes.history_entry]

    if changes.form_answers:
        contact.form_responses = {**(contact.form_responses or {}), **changes.form_answers}

    return violations


# =============================================================================
# HANDLERS
# =============================================================================

@dataclass
class WebhookContext:
    payload: Dict[str, Any]
    event_type: str
    contact_data: Dict[str, Any]
    form_answers: Dict[str, Any]
    appointment: Dict[str, Any]
    opportunity: Dict[str, Any]
    received_at: datetime


def _form_submission(ctx: WebhookContext, contact: Contact) -> ContactChanges:
    return ContactChanges(
        fields=dict(ctx.contact_data),
        timestamps={"form_submitted_at": ctx.received_at},
        form_answers=dict(ctx.form_answers),
    )


def _appointment_booked(ctx: WebhookContext, contact: Contact) -> ContactChanges:
    changes = ContactChanges(fields=dict(ctx.contact_data))
    calendar_name = ctx.appointment.get("calendar_name")
    qualified = calendar_qualification(calendar_name)

    if "calendar_id" in ctx.appointment:
        changes.fields["calendar_id"] = ctx.appointment["calendar_id"]
    if calendar_name:
        changes.fields["calendar_name"] = calendar_name
    if qualified is not None:
        changes.fields["is_qualified"] = qualified

    changes.timestamps["call_booked_at"] = ctx.received_at
    if qualified is True:
        changes.timestamps["qualified_at"] = ctx.received_at
    elif qualified is False:
        changes.timestamps["disqualified_at"] = ctx.received_at

    if ctx.appointment.get("start_time") is not None and contact.call_scheduled_for is None:
        changes.fields["call_scheduled_for"] = ctx.appointment["start_time"]
    return changes


def _appointment_status(ctx: WebhookContext, contact: Contact) -> ContactChanges:
    status = ctx.appointment.get("status")
    changes = ContactChanges()
    if status in SHOWED_STATUSES:
        changes.timestamps["showed_up_at"] = ctx.received_at
    elif status in NO_SHOW_STATUSES:
        changes.timestamps["no_show_at"] = ctx.received_at
    return changes


def _pipeline_stage_changed(ctx: WebhookContext, contact: Contact) -> ContactChanges:
    pipeline = ctx.opportunity.get("pipeline_name") or "Unknown"
    stage = ctx.opportunity.get("stage_name") or "Unknown"
    changes = ContactChanges(
        fields={"current_pipeline": pipeline, "current_stage": stage},
        history_entry={"pipeline": pipeline, "stage": stage, "timestamp": ctx.received_at.isoformat()},
    )

    stage_lower = stage.strip().lower()
    if stage_lower in NO_SHOW_STAGES:
        changes.timestamps["no_show_at"] = ctx.received_at
    elif stage_lower in SHOWED_STAGES:
        changes.timestamps["showed_up_at"] = ctx.received_at
    elif stage_lower in DEAL_CLOSED_STAGES:
        changes.timestamps["deal_closed_at"] = ctx.received_at
        changes.final_deal_value = ctx.contact_data.get("deal_value", contact.deal_value)
    return changes


def _deal_closed(ctx: WebhookContext, contact: Contact) -> ContactChanges:
    pipeline = ctx.opportunity.get("pipeline_name") or contact.current_pipeline or "Unknown"
    return ContactChanges(
        fields={"current_stage": "Deal Closed"},
        timestamps={"deal_closed_at": ctx.received_at},
        history_entry={"pipeline": pipeline, "stage": "Deal Closed", "timestamp": ctx.received_at.isoformat()},
        final_deal_value=ctx.opportunity.get("monetary_value"),
    )


HANDLERS: Dict[str, Callable[[WebhookContext, Contact], ContactChanges]] = {
    "form_submission": _form_submission,
    "contact_create": _form_submission,
    "appointment_booked": _appointment_booked,
    "appointment_update": _appointment_status,
    "appointment_status": _appointment_status,
    "pipeline_stage_changed": _pipeline_stage_changed,
    "deal_closed": _deal_closed,
}


def stored_event_type(event_type: str, appointment_status: Optional[str]) -> str:
    """Event log vocabulary used by the dashboard."""
    if event_type == "appointment_booked":
        return "booked_call"
    if event_type in ("appointment_update", "appointment_status"):
        return "showed_up" if appointment_status in SHOWED_STATUSES else "appointment_status"
    if event_type == "deal_closed":
        return "deal_won"
    if event_type in ("form_submission", "contact_create"):
        return "form_submission"
    return event_type


# =============================================================================
# ENTRYPOINT
# =============================================================================

@dataclass
class WebhookResult:
    contact_id: str
    event_type: str  # canonical type
    stored_event_type: str
    event_id: Any
    contact: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)
    rejected: Optional[FunnelOrderError] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": self.rejected is None,
            "event_type": self.stored_event_type,
            "contact_id": self.contact_id,
            "contact": self.contact,
            "event_id": str(self.event_id),
            "warnings": self.warnings,
        }


def _get_or_create_contact(db: Session, contact_id: str) -> Contact:
    contact = db.query(Contact).filter(Contact.ghl_contact_id == contact_id).first()
    if contact is None:
        contact = Contact(ghl_contact_id=contact_id)
        db.add(contact)
    return contact


def _attributed_duplicate(db: Session, contact: Contact) -> Optional[Contact]:
    """Another contact for the same person that carries ad attribution."""
    matchers = []
    if contact.email:
        matchers.append(Contact.email == contact.email)
    if contact.phone:
        matchers.append(Contact.phone == contact.phone)
    if not matchers:
        return None
    query = db.query(Contact).filter(or_(*matchers), Contact.ad_id.isnot(None))
    if contact.id is not None:
        query = query.filter(Contact.id != contact.id)
    return query.order_by(Contact.created_at.desc()).first()


def process_webhook(db: Session, payload: Any, policy: str = "warn") -> WebhookResult:
    """Record one webhook and update the contact's funnel state.

    Raises:
        WebhookValidationError: Not an object, or no contact id / event type
        SQLAlchemyError: Storage failure; the transaction is rolled back
    """
    if not isinstance(payload, dict):
        raise WebhookValidationError("Webhook body must be a JSON object")

    contact_id = extract(payload, CONTACT_ID_RULE)
    raw_type = extract(payload, EVENT_TYPE_RULE)
    if not contact_id or not raw_type:
        raise WebhookValidationError("Missing contact_id or event type")

    event_type = normalize_event_type(raw_type)
    ctx = WebhookContext(
        payload=payload,
        event_type=event_type,
        contact_data=extract_all(payload, CONTACT_FIELD_RULES),
        form_answers=extract_all(payload, FORM_ANSWER_RULES),
        appointment=extract_all(payload, APPOINTMENT_RULES),
        opportunity=extract_all(payload, OPPORTUNITY_RULES),
        received_at=utcnow(),
    )
    logger.info(f"[GHL_WEBHOOK] {raw_type!r} -> {event_type} for contact {contact_id}")

    warnings: List[str] = []
    rejected: Optional[FunnelOrderError] = None
    contact: Optional[Contact] = None

    try:
        handler = HANDLERS.get(event_type)
        if handler is not None:
            contact = _get_or_create_contact(db, contact_id)
            db.flush()
            changes = handler(ctx, contact)
            try:
                warnings = apply_changes(contact, changes, policy)
            except FunnelOrderError as e:
                rejected = e
                logger.warning(f"[GHL_WEBHOOK] Rejected update for {contact_id}: {e}")

            if rejected is None and event_type == "pipeline_stage_changed" and not contact.ad_id:
                duplicate = _attributed_duplicate(db, contact)
                if duplicate is not None:
                    logger.info(
                        f"[GHL_WEBHOOK] Mirroring stage change to attributed duplicate {duplicate.ghl_contact_id}"
                    )
                    warnings += apply_changes(duplicate, handler(ctx, duplicate), "warn")

            for warning in warnings:
                logger.warning(f"[GHL_WEBHOOK] Out-of-order event for {contact_id}: {warning}")

        calendar_qualified = calendar_qualification(ctx.appointment.get("calendar_name"))
        event = ConversionEvent(
            contact_id=contact_id,
            event_type=stored_event_type(event_type, ctx.appointment.get("status")),
            ad_id=ctx.contact_data.get("ad_id") or (contact.ad_id if contact is not None else None),
            cash_collected=ctx.opportunity.get("monetary_value"),
            calendar_type=(
                None if calendar_qualified is None
                else CalendarTypeEnum.qualified if calendar_qualified
                else CalendarTypeEnum.dq
            ),
            revenue=ctx.form_answers.get("revenue"),
            investment_ability=ctx.form_answers.get("investment_ability"),
            raw_payload=payload,
            created_at=ctx.received_at,
        )
        db.add(event)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if contact is not None:
        db.refresh(contact)

    return WebhookResult(
        contact_id=contact_id,
        event_type=event_type,
        stored_event_type=event.event_type,
        event_id=event.id,
        contact=contact_funnel_row(contact) if contact is not None else None,
        warnings=warnings,
        rejected=rejected,
    )
