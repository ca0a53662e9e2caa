"""Funnel and cost-efficiency metrics.

WHAT:
    Pure functions over already-loaded rows. Ad rows need the
    AdSpendRecord attributes, contact rows the Contact attributes; ORM
    objects and SimpleNamespace instances both work.

WHY:
    Keeping arithmetic free of database access makes every formula unit
    testable, and gives the dashboard one definition per metric:

        booking_rate   = booked / leads * 100
        qualified_rate = qualified / booked * 100
        show_rate      = shown / booked * 100
        close_rate     = closed / shown * 100
        cost_per_X     = spend / X
        roas           = revenue / spend
        roi_percentage = (revenue - spend) / spend * 100

    Any zero (or negative) denominator yields 0, never NaN or Infinity.

REFERENCES:
    - funnelboard/services/dashboard_service.py (loads rows, calls these)
    - funnelboard/routers/dashboard.py
"""

from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from funnelboard.models import FunnelStageEnum


# =============================================================================
# PRIMITIVES
# =============================================================================

def safe_divide(numerator: Optional[float], denominator: Optional[float]) -> float:
    """numerator / denominator, or 0 when the denominator is missing or <= 0."""
    if not denominator or denominator <= 0:
        return 0.0
    return (numerator or 0) / denominator


def to_percentage(numerator: Optional[float], denominator: Optional[float]) -> float:
    return safe_divide(numerator, denominator) * 100


def pct_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """Period-over-period change in percent.

    A previous value of 0 gives 100 when the current value is positive and
    None otherwise, since the change is undefined.
    """
    current = current or 0
    previous = previous or 0
    if previous == 0:
        return 100.0 if current > 0 else None
    return (current - previous) / previous * 100


def _sum(values: Iterable[Optional[float]]) -> float:
    # fsum is exactly rounded, so totals do not depend on row order
    return math.fsum(v for v in values if v is not None)


def _day(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


# =============================================================================
# CONTACT CLASSIFICATION
# =============================================================================

def is_booked(contact) -> bool:
    return contact.call_booked_at is not None


def is_disqualified(contact) -> bool:
    return contact.is_qualified is False or contact.disqualified_at is not None


def is_qualified(contact) -> bool:
    return not is_disqualified(contact) and (
        contact.is_qualified is True or contact.qualified_at is not None
    )


def get_funnel_stage(contact) -> FunnelStageEnum:
    """Derive a contact's furthest stage from its funnel timestamps.

    Precedence: closed > no_show > showed > disqualified > qualified > booked > lead.

    Example:
        booked, is_qualified unknown, showed up -> FunnelStageEnum.showed
    """
    if contact.deal_closed_at is not None:
        return FunnelStageEnum.closed
    if contact.no_show_at is not None:
        return FunnelStageEnum.no_show
    if contact.showed_up_at is not None:
        return FunnelStageEnum.showed
    if is_disqualified(contact):
        return FunnelStageEnum.disqualified
    if is_qualified(contact):
        return FunnelStageEnum.qualified
    if is_booked(contact):
        return FunnelStageEnum.booked
    return FunnelStageEnum.lead


@dataclass
class FunnelCounts:
    """Funnel counts for one group of contacts.

    Every contact passed in counts as a lead: contacts are selected by
    form_submitted_at. qualified and dq only count booked contacts, and a
    contact cannot be both.
    """
    leads: int = 0
    booked: int = 0
    qualified: int = 0
    dq: int = 0
    shown: int = 0
    no_shows: int = 0
    closed: int = 0
    revenue: float = 0.0
    cash_collected: float = 0.0
    deal_value: float = 0.0
    _revenues: List[float] = field(default_factory=list, repr=False)

    def add(self, contact) -> None:
        self.leads += 1
        if is_booked(contact):
            self.booked += 1
            if is_disqualified(contact):
                self.dq += 1
            elif is_qualified(contact):
                self.qualified += 1
        if contact.showed_up_at is not None:
            self.shown += 1
        if contact.no_show_at is not None:
            self.no_shows += 1
        if contact.deal_closed_at is not None:
            self.closed += 1
            self._revenues.append(contact.final_deal_value or 0)
            self.revenue = _sum(self._revenues)
        self.cash_collected += getattr(contact, "cash_collected", None) or 0
        self.deal_value += getattr(contact, "deal_value", None) or 0

    @classmethod
    def from_contacts(cls, contacts: Iterable[Any]) -> "FunnelCounts":
        counts = cls()
        for contact in contacts:
            counts.add(contact)
        return counts

    def rates(self) -> Dict[str, float]:
        return {
            "booking_rate": to_percentage(self.booked, self.leads),
            "qualified_rate": to_percentage(self.qualified, self.booked),
            "show_rate": to_percentage(self.shown, self.booked),
            "close_rate": to_percentage(self.closed, self.shown),
        }


@dataclass
class SpendTotals:
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0

    @classmethod
    def from_ads(cls, ads: Iterable[Any]) -> "SpendTotals":
        ads = list(ads)
        return cls(
            spend=_sum(ad.spend for ad in ads),
            clicks=sum(ad.clicks or 0 for ad in ads),
            impressions=sum(ad.impressions or 0 for ad in ads),
        )


def _costs(spend: float, counts: FunnelCounts) -> Dict[str, float]:
    return {
        "cost_per_lead": safe_divide(spend, counts.leads),
        "cost_per_booked": safe_divide(spend, counts.booked),
        "cost_per_qualified": safe_divide(spend, counts.qualified),
        "cost_per_dq": safe_divide(spend, counts.dq),
        "cost_per_show": safe_divide(spend, counts.shown),
        "cost_per_close": safe_divide(spend, counts.closed),
    }


def _returns(spend: float, revenue: float) -> Dict[str, float]:
    return {
        "roas": safe_divide(revenue, spend),
        "roi_percentage": to_percentage(revenue - spend, spend),
    }


# =============================================================================
# KPIs
# =============================================================================

def compute_marketing_kpis(ads: Sequence[Any], contacts: Sequence[Any]) -> Dict[str, Any]:
    """Headline KPIs for one date window."""
    totals = SpendTotals.from_ads(ads)
    counts = FunnelCounts.from_contacts(contacts)

    return {
        "total_spend": totals.spend,
        "total_clicks": totals.clicks,
        "total_impressions": totals.impressions,
        "total_leads": counts.leads,
        "total_booked": counts.booked,
        "total_qualified": counts.qualified,
        "total_dq": counts.dq,
        "total_shows": counts.shown,
        "total_no_shows": counts.no_shows,
        "total_closed": counts.closed,
        "total_revenue": counts.revenue,
        "total_cash_collected": counts.cash_collected,
        "total_deal_value": counts.deal_value,
        "avg_deal_value": safe_divide(counts.revenue, counts.closed),
        "ctr": to_percentage(totals.clicks, totals.impressions),
        "cpc": safe_divide(totals.spend, totals.clicks),
        **_costs(totals.spend, counts),
        **counts.rates(),
        **_returns(totals.spend, counts.revenue),
    }


def compare_periods(current: Dict[str, Any], previous: Dict[str, Any]) -> Dict[str, Optional[float]]:
    """Percent change for every numeric KPI present in both periods."""
    changes: Dict[str, Optional[float]] = {}
    for key, value in current.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        changes[key] = pct_change(value, previous.get(key))
    return changes


# =============================================================================
# TRENDS
# =============================================================================

def compute_daily_trends(ads: Sequence[Any], contacts: Sequence[Any]) -> List[Dict[str, Any]]:
    """One row per day over the union of ad dates and lead dates, ascending.

    Contacts are bucketed by the day of form_submitted_at.
    """
    ads_by_day: Dict[date, List[Any]] = {}
    for ad in ads:
        ads_by_day.setdefault(_day(ad.date), []).append(ad)

    contacts_by_day: Dict[date, List[Any]] = {}
    for contact in contacts:
        day = _day(contact.form_submitted_at)
        if day is not None:
            contacts_by_day.setdefault(day, []).append(contact)

    rows = []
    for day in sorted(set(ads_by_day) | set(contacts_by_day)):
        totals = SpendTotals.from_ads(ads_by_day.get(day, []))
        counts = FunnelCounts.from_contacts(contacts_by_day.get(day, []))
        costs = _costs(totals.spend, counts)
        rates = counts.rates()
        rows.append({
            "date": day,
            "leads": counts.leads,
            "booked": counts.booked,
            "qualified": counts.qualified,
            "dq": counts.dq,
            "shows": counts.shown,
            "closes": counts.closed,
            "revenue": counts.revenue,
            "spend": totals.spend,
            "clicks": totals.clicks,
            "impressions": totals.impressions,
            "booking_rate": rates["booking_rate"],
            "show_rate": rates["show_rate"],
            "close_rate": rates["close_rate"],
            "cost_per_lead": costs["cost_per_lead"],
            "cost_per_booked": costs["cost_per_booked"],
            "cost_per_qualified": costs["cost_per_qualified"],
            "cost_per_dq": costs["cost_per_dq"],
            "cost_per_show": costs["cost_per_show"],
        })
    return rows


# =============================================================================
# SOURCE BREAKDOWN
# =============================================================================

# level -> (group key attribute, display name attribute)
BREAKDOWN_LEVELS: Dict[str, tuple] = {
    "campaign": ("campaign_name", "campaign_name"),
    "adset": ("adset_name", "adset_name"),
    "ad": ("ad_id", "ad_name"),
}


def compute_source_breakdown(ads: Sequence[Any], contacts: Sequence[Any], level: str) -> List[Dict[str, Any]]:
    """Group spend and funnel counts by campaign, ad set or ad.

    Ads group by ad_id, so two ads sharing a name stay separate rows.
    Campaigns and ad sets group by name. Rows whose key is empty are
    skipped, and sources with spend but no contacts still appear.

    Raises:
        ValueError: Unknown level
    """
    if level not in BREAKDOWN_LEVELS:
        raise ValueError(f"Unknown breakdown level: {level}. Use one of {sorted(BREAKDOWN_LEVELS)}")
    key_attr, name_attr = BREAKDOWN_LEVELS[level]

    groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def _group(row) -> Optional[Dict[str, Any]]:
        key = getattr(row, key_attr, None)
        if not key:
            return None
        group = groups.get(key)
        if group is None:
            group = {"name": None, "ads": [], "contacts": []}
            groups[key] = group
        if not group["name"]:
            group["name"] = getattr(row, name_attr, None)
        return group

    for ad in ads:
        group = _group(ad)
        if group is not None:
            group["ads"].append(ad)
    for contact in contacts:
        group = _group(contact)
        if group is not None:
            group["contacts"].append(contact)

    rows = []
    for key, group in groups.items():
        totals = SpendTotals.from_ads(group["ads"])
        counts = FunnelCounts.from_contacts(group["contacts"])
        costs = _costs(totals.spend, counts)
        rows.append({
            "key": key,
            "name": group["name"] or key,
            "level": level,
            "spend": totals.spend,
            "clicks": totals.clicks,
            "impressions": totals.impressions,
            "leads": counts.leads,
            "booked": counts.booked,
            "qualified": counts.qualified,
            "dq": counts.dq,
            "shows": counts.shown,
            "closes": counts.closed,
            "revenue": counts.revenue,
            **counts.rates(),
            "cost_per_lead": costs["cost_per_lead"],
            "cost_per_booked": costs["cost_per_booked"],
            "cost_per_show": costs["cost_per_show"],
            "cost_per_close": costs["cost_per_close"],
            "roas": safe_divide(counts.revenue, totals.spend),
        })

    rows.sort(key=lambda r: (-r["spend"], -r["leads"], str(r["key"])))
    return rows


# =============================================================================
# PER-AD FUNNEL
# =============================================================================

def _ad_funnel_row(ad_id: str, contacts: Sequence[Any]) -> Dict[str, Any]:
    counts = FunnelCounts.from_contacts(contacts)

    def _first(attr):
        return next((getattr(c, attr) for c in contacts if getattr(c, attr, None)), None)

    return {
        "ad_id": ad_id,
        "ad_name": _first("ad_name") or "Unknown Ad",
        "campaign_id": _first("campaign_id"),
        "campaign_name": _first("campaign_name"),
        "total_leads": counts.leads,
        "calls_booked": counts.booked,
        "qualified_calls": counts.qualified,
        "dq_calls": counts.dq,
        "shows": counts.shown,
        "no_shows": counts.no_shows,
        "deals_closed": counts.closed,
        "total_revenue": counts.revenue,
        "avg_deal_value": safe_divide(counts.revenue, counts.closed),
        **counts.rates(),
    }


def _contacts_by_ad(contacts: Sequence[Any]) -> "OrderedDict[str, List[Any]]":
    grouped: "OrderedDict[str, List[Any]]" = OrderedDict()
    for contact in contacts:
        if contact.ad_id:
            grouped.setdefault(contact.ad_id, []).append(contact)
    return grouped


def compute_ad_funnel_metrics(contacts: Sequence[Any]) -> List[Dict[str, Any]]:
    """Funnel counts per ad_id for attributed contacts, most leads first."""
    rows = [_ad_funnel_row(ad_id, group) for ad_id, group in _contacts_by_ad(contacts).items()]
    rows.sort(key=lambda r: (-r["total_leads"], r["ad_id"]))
    return rows


def compute_ad_metrics_with_spend(ads: Sequence[Any], contacts: Sequence[Any]) -> List[Dict[str, Any]]:
    """Per-ad funnel joined with spend, highest spend first.

    Ads with spend but no attributed contacts are included with zero counts.
    """
    contacts_by_ad = _contacts_by_ad(contacts)
    ads_by_id: "OrderedDict[str, List[Any]]" = OrderedDict()
    for ad in ads:
        if ad.ad_id:
            ads_by_id.setdefault(ad.ad_id, []).append(ad)

    rows = []
    for ad_id in list(ads_by_id) + [a for a in contacts_by_ad if a not in ads_by_id]:
        ad_rows = ads_by_id.get(ad_id, [])
        row = _ad_funnel_row(ad_id, contacts_by_ad.get(ad_id, []))
        if ad_rows:
            # Spend rows carry the authoritative names
            latest = max(ad_rows, key=lambda a: _day(a.date) or date.min)
            row["ad_name"] = latest.ad_name or row["ad_name"]
            row["campaign_id"] = latest.campaign_id or row["campaign_id"]
            row["campaign_name"] = latest.campaign_name or row["campaign_name"]

        totals = SpendTotals.from_ads(ad_rows)
        counts = FunnelCounts.from_contacts(contacts_by_ad.get(ad_id, []))
        row.update({
            "total_spend": totals.spend,
            "clicks": totals.clicks,
            "impressions": totals.impressions,
            "cost_per_lead": safe_divide(totals.spend, counts.leads),
            "cost_per_booked": safe_divide(totals.spend, counts.booked),
            "cost_per_qualified": safe_divide(totals.spend, counts.qualified),
            "cost_per_show": safe_divide(totals.spend, counts.shown),
            "cost_per_close": safe_divide(totals.spend, counts.closed),
            **_returns(totals.spend, counts.revenue),
        })
        rows.append(row)

    rows.sort(key=lambda r: (-r["total_spend"], -r["total_leads"], r["ad_id"]))
    return rows


# metric -> field that must be non-zero for the metric to mean anything
TOP_AD_METRIC_DENOMINATORS: Dict[str, Optional[str]] = {
    "total_spend": None,
    "total_leads": None,
    "calls_booked": None,
    "qualified_calls": None,
    "shows": None,
    "deals_closed": None,
    "total_revenue": None,
    "cost_per_lead": "total_leads",
    "cost_per_booked": "calls_booked",
    "cost_per_qualified": "qualified_calls",
    "cost_per_show": "shows",
    "cost_per_close": "deals_closed",
    "booking_rate": "total_leads",
    "qualified_rate": "calls_booked",
    "show_rate": "calls_booked",
    "close_rate": "shows",
    "avg_deal_value": "deals_closed",
    "roas": "total_spend",
    "roi_percentage": "total_spend",
}

COST_METRICS = {"cost_per_lead", "cost_per_booked", "cost_per_qualified", "cost_per_show", "cost_per_close"}


def top_ads_by_metric(
    rows: Sequence[Dict[str, Any]],
    metric: str,
    limit: int = 10,
    ascending: Optional[bool] = None,
) -> List[Dict[str, Any]]:
    """Rank per-ad rows by one metric.

    Rows whose metric denominator is zero are excluded: a cost per lead of
    0 for an ad with no leads is not a good result. Cost metrics rank
    cheapest first unless `ascending` says otherwise.

    Raises:
        ValueError: Unknown metric
    """
    if metric not in TOP_AD_METRIC_DENOMINATORS:
        raise ValueError(
            f"Unknown metric: {metric}. Use one of {sorted(TOP_AD_METRIC_DENOMINATORS)}"
        )
    denominator = TOP_AD_METRIC_DENOMINATORS[metric]
    if ascending is None:
        ascending = metric in COST_METRICS

    eligible = [r for r in rows if denominator is None or (r.get(denominator) or 0) > 0]
    eligible.sort(key=lambda r: r.get(metric) or 0, reverse=not ascending)
    return eligible[:limit]


# =============================================================================
# CONTACT LIST
# =============================================================================

def contact_funnel_row(contact) -> Dict[str, Any]:
    return {
        "id": contact.ghl_contact_id,
        "name": contact.full_name,
        "email": contact.email,
        "phone": contact.phone,
        "ad_id": contact.ad_id,
        "ad_name": contact.ad_name,
        "campaign_name": contact.campaign_name,
        "funnel_stage": get_funnel_stage(contact).value,
        "is_qualified": contact.is_qualified,
        "form_submitted_at": contact.form_submitted_at,
        "call_booked_at": contact.call_booked_at,
        "call_scheduled_for": contact.call_scheduled_for,
        "showed_up_at": contact.showed_up_at,
        "no_show_at": contact.no_show_at,
        "deal_closed_at": contact.deal_closed_at,
        "final_deal_value": contact.final_deal_value,
    }


def select_contacts(
    contacts: Sequence[Any],
    ad_id: Optional[str] = None,
    funnel_stage: Optional[str] = None,
) -> List[Any]:
    """Contacts newest lead first, filtered by ad and current stage."""
    selected = [c for c in contacts if ad_id is None or c.ad_id == ad_id]
    if funnel_stage is not None:
        selected = [c for c in selected if get_funnel_stage(c).value == funnel_stage]

    selected.sort(
        key=lambda c: (c.form_submitted_at is not None, c.form_submitted_at or datetime.min),
        reverse=True,
    )
    return selected


def contact_funnel_page(
    contacts: Sequence[Any],
    ad_id: Optional[str] = None,
    funnel_stage: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """One page of contact rows and the filtered total (filtered before pagination)."""
    selected = select_contacts(contacts, ad_id, funnel_stage)
    end = offset + limit if limit is not None else None
    return [contact_funnel_row(c) for c in selected[offset:end]], len(selected)


def count_contacts_by_stage(contacts: Iterable[Any]) -> Dict[str, int]:
    counts = {stage.value: 0 for stage in FunnelStageEnum}
    for contact in contacts:
        counts[get_funnel_stage(contact).value] += 1
    return counts


# =============================================================================
# LEADS BREAKDOWN (application form answers)
# =============================================================================

REVENUE_TIER_VALUES = OrderedDict([
    ("Under $5k/month", 2500.0),
    ("$5k-$10k/month", 7500.0),
    ("$10k-$25k/month", 17500.0),
    ("$25k+/month", 30000.0),
])

INVESTMENT_TIERS = ("Cash Ready ($5k+)", "Needs Financing", "Unknown")


def _form_answer(contact, name: str) -> Optional[str]:
    responses = contact.form_responses or {}
    value = responses.get(name) if isinstance(responses, dict) else None
    return value or None


def form_revenue(contact) -> float:
    """Monthly revenue midpoint for the applicant's selected bracket, 0 if unknown."""
    return REVENUE_TIER_VALUES.get(_form_answer(contact, "revenue"), 0.0)


def investment_tier(contact) -> str:
    answer = _form_answer(contact, "investment_ability")
    if not answer:
        return "Unknown"
    if "$5k in cash" in answer:
        return "Cash Ready ($5k+)"
    if "financing" in answer:
        return "Needs Financing"
    return "Unknown"


def revenue_distribution(stage: str, contacts: Sequence[Any]) -> Dict[str, Any]:
    """Min/quartiles/max of known revenue brackets (floor-index quartiles)."""
    revenues = sorted(r for r in (form_revenue(c) for c in contacts) if r > 0)
    if not revenues:
        return {"stage": stage, "min": 0, "q1": 0, "median": 0, "q3": 0, "max": 0, "count": 0}
    n = len(revenues)
    return {
        "stage": stage,
        "min": revenues[0],
        "q1": revenues[int(n * 0.25)],
        "median": revenues[int(n * 0.5)],
        "q3": revenues[int(n * 0.75)],
        "max": revenues[-1],
        "count": n,
    }


def _investment_tiers(contacts: Sequence[Any]) -> List[Dict[str, Any]]:
    counts = {tier: 0 for tier in INVESTMENT_TIERS}
    for contact in contacts:
        counts[investment_tier(contact)] += 1
    return [
        {"label": tier, "count": counts[tier], "percentage": to_percentage(counts[tier], len(contacts))}
        for tier in INVESTMENT_TIERS
    ]


def _avg_revenue(contacts: Sequence[Any]) -> float:
    return safe_divide(_sum(form_revenue(c) for c in contacts), len(contacts))


def compute_leads_breakdown(contacts: Sequence[Any]) -> Dict[str, Any]:
    """Applicant-quality analytics from application form answers.

    Stages here are Applications -> Qualified -> Shown -> Closed, where
    qualified means the booking calendar marked the applicant qualified.
    """
    applications = [c for c in contacts if c.form_submitted_at is not None]
    qualified = [c for c in contacts if c.is_qualified is True]
    shown = [c for c in contacts if c.showed_up_at is not None]
    closed = [c for c in contacts if c.deal_closed_at is not None]
    stages = (("Applications", applications), ("Qualified", qualified), ("Shown", shown), ("Closed", closed))

    sources: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for contact in contacts:
        source = sources.setdefault(contact.campaign_name or "Unknown", {
            "revenues": [], "qualified": 0, "shown": 0, "closed": 0,
        })
        source["revenues"].append(form_revenue(contact))
        source["qualified"] += 1 if contact.is_qualified is True else 0
        source["shown"] += 1 if contact.showed_up_at is not None else 0
        source["closed"] += 1 if contact.deal_closed_at is not None else 0

    source_quality = []
    for name, stats in sources.items():
        lead_count = len(stats["revenues"])
        total_revenue = _sum(stats["revenues"])
        source_quality.append({
            "source": name,
            "lead_count": lead_count,
            "total_revenue": total_revenue,
            "avg_revenue": safe_divide(total_revenue, lead_count),
            "qualification_rate": to_percentage(stats["qualified"], lead_count),
            "qualified_show_rate": to_percentage(stats["shown"], stats["qualified"]),
            "close_rate": to_percentage(stats["closed"], stats["shown"]),
        })
    source_quality.sort(key=lambda s: -s["total_revenue"])

    trend_days: Dict[date, Dict[str, Any]] = {}
    for contact in contacts:
        day = _day(contact.form_submitted_at)
        if day is None:
            continue
        trend = trend_days.setdefault(day, {"qualified": [], "shown": [], "lead_count": 0})
        trend["lead_count"] += 1
        if contact.is_qualified is True:
            trend["qualified"].append(form_revenue(contact))
        if contact.showed_up_at is not None:
            trend["shown"].append(form_revenue(contact))
    revenue_trends = [
        {
            "date": day,
            "avg_revenue_qualified": safe_divide(_sum(t["qualified"]), len(t["qualified"])),
            "avg_revenue_shown": safe_divide(_sum(t["shown"]), len(t["shown"])),
            "lead_count": t["lead_count"],
        }
        for day, t in sorted(trend_days.items())
    ]

    def _in_tier(tier):
        return lambda c: _form_answer(c, "revenue") == tier

    return {
        "avg_revenue_qualified": _avg_revenue(qualified),
        "avg_revenue_shown": _avg_revenue(shown),
        "avg_revenue_closed": _avg_revenue(closed),
        "qualification_rate": to_percentage(len(qualified), len(applications)),
        "qualified_show_rate": to_percentage(len(shown), len(qualified)),
        "close_rate": to_percentage(len(closed), len(shown)),
        "revenue_by_stage": [revenue_distribution(name, group) for name, group in stages],
        "investment_breakdown": [
            {"stage": name, "tiers": _investment_tiers(group)} for name, group in stages
        ],
        "revenue_funnel": [
            {
                "stage": name,
                "total_revenue": _sum(form_revenue(c) for c in group),
                "count": len(group),
                "avg_revenue": _avg_revenue(group),
            }
            for name, group in stages
        ],
        "source_quality": source_quality,
        "revenue_trends": revenue_trends,
        "investment_heatmap": [
            {
                "tier": tier,
                "qualified": sum(1 for c in qualified if _in_tier(tier)(c)),
                "shown": sum(1 for c in shown if _in_tier(tier)(c)),
                "closed": sum(1 for c in closed if _in_tier(tier)(c)),
            }
            for tier in REVENUE_TIER_VALUES
        ],
    }
