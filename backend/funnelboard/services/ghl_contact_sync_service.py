"""GoHighLevel contact sync service.

WHAT:
    Pulls contacts from the CRM and copies the two hand-maintained revenue
    custom fields (cash collected, deal value) onto local Contact rows.
    - sync_contacts(): paginated sync for a location
    - sync_single_contact(): one contact, returns all of its custom fields
    - scan_revenue_contacts(): list every contact carrying revenue data

WHY:
    Revenue is edited in the CRM after the call, without a webhook. Only
    contacts with revenue data are written, so the sync never creates
    noise rows for the rest of the CRM.

REFERENCES:
    - funnelboard/services/ghl_client.py
    - funnelboard/routers/ghl_sync.py
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnelboard.models import Contact
from funnelboard.services.ghl_client import GHLAPIError, GHLClient
from funnelboard.utils.numbers import parse_currency

logger = logging.getLogger(__name__)

# Custom field ids in the CRM location
CASH_COLLECTED_FIELD_ID = "TNV6O7CmlSXosQekT6r5"
DEAL_VALUE_FIELD_ID = "noXrsRQa0wubLdHPqutQ"

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_CONTACTS = 10000
SCAN_MAX_PAGES = 30
PAGE_DELAY_SECONDS = 0.2


def _custom_fields(contact: Dict[str, Any]) -> List[Dict[str, Any]]:
    fields = contact.get("customFields") or contact.get("customField") or []
    return [f for f in fields if isinstance(f, dict)]


def custom_field_value(contact: Dict[str, Any], field_id: str) -> Optional[float]:
    """Numeric value of a custom field matched by id, key or field_key."""
    for custom_field in _custom_fields(contact):
        if field_id in (custom_field.get("id"), custom_field.get("key"), custom_field.get("field_key")):
            value = custom_field.get("value")
            if value is None:
                value = custom_field.get("field_value")
            return parse_currency(value)
    return None


def _display_name(contact: Dict[str, Any]) -> str:
    name = contact.get("contactName") or contact.get("name")
    if name:
        return name
    parts = [contact.get("firstName"), contact.get("lastName")]
    return " ".join(p for p in parts if p) or "Unknown"


def upsert_revenue_contact(
    db: Session,
    contact: Dict[str, Any],
    cash_collected: Optional[float],
    deal_value: Optional[float],
) -> Optional[Contact]:
    """Write revenue fields (and identity fields when present) onto a Contact.

    Returns None without writing when the CRM record has no id.
    """
    ghl_id = contact.get("id")
    if not ghl_id:
        logger.warning("[GHL_SYNC] Skipping CRM record without an id")
        return None
    row = db.query(Contact).filter(Contact.ghl_contact_id == ghl_id).first()
    if row is None:
        row = Contact(ghl_contact_id=ghl_id)
        db.add(row)

    for attr, key in (("first_name", "firstName"), ("last_name", "lastName"), ("email", "email"), ("phone", "phone")):
        if contact.get(key):
            setattr(row, attr, contact[key])
    if cash_collected is not None:
        row.cash_collected = cash_collected
    if deal_value is not None:
        row.deal_value = deal_value

    db.commit()
    return row


def _iter_contact_pages(
    client: GHLClient,
    location_id: str,
    batch_size: int,
    max_pages: Optional[int],
    sleep: Callable[[float], None],
) -> Iterator[List[Dict[str, Any]]]:
    """Yield pages until the CRM runs out or max_pages is reached.

    A page counts as the last one when it is short or the cursor pair is
    incomplete.
    """
    cursor: tuple = (None, None)
    pages = 0
    while True:
        contacts, next_cursor = client.list_contacts(
            location_id, limit=batch_size, start_after=cursor[0], start_after_id=cursor[1]
        )
        pages += 1
        yield contacts

        has_more = (
            len(contacts) == batch_size
            and next_cursor[0] is not None
            and next_cursor[1] is not None
        )
        if not has_more or (max_pages is not None and pages >= max_pages):
            return
        cursor = next_cursor
        sleep(PAGE_DELAY_SECONDS)


def sync_contacts(
    db: Session,
    client: GHLClient,
    location_id: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_contacts: int = DEFAULT_MAX_CONTACTS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Sync revenue fields for up to max_contacts contacts.

    A failed page stops the sync and is reported as "Batch error: ...";
    a failed contact write is reported as "Contact <id>: ..." and the
    sync continues.
    """
    result: Dict[str, Any] = {
        "total_fetched": 0,
        "total_updated": 0,
        "contacts_with_cash": 0,
        "contacts_with_deal_value": 0,
        "errors": [],
    }
    logger.info(f"[GHL_SYNC] Starting sync for location {location_id} (batch={batch_size}, max={max_contacts})")

    try:
        for page in _iter_contact_pages(client, location_id, batch_size, None, sleep):
            remaining = max_contacts - result["total_fetched"]
            page = page[:remaining]
            result["total_fetched"] += len(page)

            for contact in page:
                cash = custom_field_value(contact, CASH_COLLECTED_FIELD_ID)
                deal = custom_field_value(contact, DEAL_VALUE_FIELD_ID)
                if cash is not None:
                    result["contacts_with_cash"] += 1
                if deal is not None:
                    result["contacts_with_deal_value"] += 1
                if cash is None and deal is None:
                    continue
                try:
                    if upsert_revenue_contact(db, contact, cash, deal) is not None:
                        result["total_updated"] += 1
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error(f"[GHL_SYNC] Failed to upsert contact {contact.get('id')}: {e}")
                    result["errors"].append(f"Contact {contact.get('id')}: {e}")

            if result["total_fetched"] >= max_contacts:
                break
    except GHLAPIError as e:
        logger.error(f"[GHL_SYNC] Page fetch failed: {e}")
        result["errors"].append(f"Batch error: {e}")

    logger.info(
        f"[GHL_SYNC] Done: fetched={result['total_fetched']} updated={result['total_updated']} "
        f"errors={len(result['errors'])}"
    )
    return result


def sync_single_contact(db: Session, client: GHLClient, contact_id: str) -> Dict[str, Any]:
    """Sync and describe one contact.

    Raises:
        GHLNotFoundError: Unknown contact id
    """
    contact = client.get_contact(contact_id)
    cash = custom_field_value(contact, CASH_COLLECTED_FIELD_ID)
    deal = custom_field_value(contact, DEAL_VALUE_FIELD_ID)
    if cash is not None or deal is not None:
        upsert_revenue_contact(db, contact, cash, deal)

    return {
        "success": True,
        "contact": {
            "id": contact.get("id"),
            "name": _display_name(contact),
            "email": contact.get("email"),
            "phone": contact.get("phone"),
            "cash_collected": cash,
            "deal_value": deal,
            "all_custom_fields": _custom_fields(contact),
        },
    }


def scan_revenue_contacts(
    db: Session,
    client: GHLClient,
    location_id: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_pages: int = SCAN_MAX_PAGES,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Find (and sync) every contact with revenue data in the first max_pages pages.

    A failed contact write is rolled back, reported as "Contact <id>: ..."
    and the scan continues.

    Raises:
        GHLAPIError: Any page failure
    """
    found = []
    errors: List[str] = []
    for page in _iter_contact_pages(client, location_id, batch_size, max_pages, sleep):
        for contact in page:
            cash = custom_field_value(contact, CASH_COLLECTED_FIELD_ID)
            deal = custom_field_value(contact, DEAL_VALUE_FIELD_ID)
            if cash is None and deal is None:
                continue
            try:
                if upsert_revenue_contact(db, contact, cash, deal) is None:
                    continue
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"[GHL_SYNC] Failed to upsert contact {contact.get('id')}: {e}")
                errors.append(f"Contact {contact.get('id')}: {e}")
                continue
            found.append({
                "id": contact.get("id"),
                "name": _display_name(contact),
                "cash_collected": cash,
                "deal_value": deal,
            })

    logger.info(f"[GHL_SYNC] Revenue scan found {len(found)} contacts ({len(errors)} errors)")
    return {"success": not errors, "total_found": len(found), "contacts": found, "errors": errors}
