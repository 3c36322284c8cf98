"""
Rent request derivations

Pure functions shared by every view that shows rent requests or revenue:
date/amount parsing, the display status of approved rentals and the revenue
summary folds. None of them touch the database or mutate their inputs.
"""

import math
import re
import logging
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

MIN_YEAR = 2020
LISTING_COMMISSION_RATE = 0.3

ACTIVE = "active"
COMPLETED = "completed"

STATUS_LABELS = {
    "active": "Active",
    "completed": "Completed",
    "approved": "Active",
    "rejected": "Rejected",
    "pending": "Pending",
}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_LEADING_DECIMAL = re.compile(r"^-?(?:\d+(?:\.\d*)?|\.\d+)")
_NOT_NUMERIC = re.compile(r"[^0-9.\-]")


# ------------------------
# Parsing
# ------------------------
def _leading_int(text: Any) -> Optional[int]:
    m = _LEADING_INT.match(str(text))
    if not m:
        return None
    try:
        return int(m.group(1))
    except ValueError:
        # past the interpreter's int digit limit
        return None


def _make_date(year: Optional[int], month: Optional[int], day: Optional[int]) -> Optional[date]:
    if year is None or month is None or day is None:
        return None
    if not (1 <= day <= 31 and 1 <= month <= 12 and MIN_YEAR <= year <= date.max.year):
        return None
    # 31/02 rolls over into March rather than failing
    try:
        return date(year, month, 1) + timedelta(days=day - 1)
    except (ValueError, OverflowError):
        return None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a rental start date written by the mobile app.

    Tries DD/MM/YYYY (or DD-MM-YYYY) first, then MM/DD/YYYY for slash dates,
    then YYYY-MM-DD for dash dates with a 4-digit first part. Returns None when
    nothing matches. Ambiguous inputs such as 03/04/2024 resolve day-first.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    parsed = None
    if "/" in text or "-" in text:
        parts = re.split(r"[/-]", text)
        if len(parts) == 3:
            day, month, year = (_leading_int(p) for p in parts)
            parsed = _make_date(year, month, day)

    if parsed is None and "/" in text:
        parts = text.split("/")
        if len(parts) == 3:
            month, day, year = (_leading_int(p) for p in parts)
            parsed = _make_date(year, month, day)

    if parsed is None and "-" in text:
        parts = text.split("-")
        if len(parts) == 3 and len(parts[0]) == 4:
            year, month, day = (_leading_int(p) for p in parts)
            parsed = _make_date(year, month, day)

    if parsed is None:
        logger.debug("Unparsable date %r", text)
    return parsed


def parse_amount(value: Any) -> float:
    """Numeric value of a money field such as 500, "1500" or "₹1,234.50"; 0 when there is none."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        if isinstance(value, (int, float)):
            amount = float(value)
        else:
            m = _LEADING_DECIMAL.match(_NOT_NUMERIC.sub("", str(value)))
            if not m:
                return 0.0
            amount = float(m.group(0))
    except (ValueError, OverflowError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def _number_of_days(request: dict) -> Optional[int]:
    raw = request.get("numberOfDays")
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, float):
        return int(raw) if math.isfinite(raw) else None
    return _leading_int(raw)


# ------------------------
# Status
# ------------------------
def rental_end_date(request: dict) -> Optional[date]:
    """Last rental day: start + (numberOfDays - 1). None if either field is missing or bad."""
    start = parse_date(request.get("rentalStartDate"))
    days = _number_of_days(request)
    if start is None or not days:
        return None
    try:
        return start + timedelta(days=days - 1)
    except OverflowError:
        return None


def derive_status(request: dict, today: Optional[date] = None) -> Optional[str]:
    """
    Display status of a rent request.

    Non-approved requests keep their stored status. Approved ones are "active"
    until their last day and "completed" from then on. An approved request whose
    dates cannot be read counts as "completed".
    """
    status = request.get("status")
    if status != "approved":
        return status

    end = rental_end_date(request)
    if end is None:
        return COMPLETED
    today = today or date.today()
    return COMPLETED if today >= end else ACTIVE


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS.get(status, (status or "").upper())


def _daily_total(request: dict) -> float:
    try:
        total = parse_amount(request.get("rentPerDay")) * (_number_of_days(request) or 0)
    except OverflowError:
        return 0.0
    return total if math.isfinite(total) else 0.0


def chosen_amount(request: dict) -> float:
    """First non-zero of grandTotal, advance+remaining, totalRent, rentPerDay*days."""
    candidates = (
        parse_amount(request.get("grandTotal")),
        parse_amount(request.get("advancePayment")) + parse_amount(request.get("remainingPayment")),
        parse_amount(request.get("totalRent")),
        _daily_total(request),
    )
    for amount in candidates:
        if amount:
            return amount
    return 0.0


def net_rental_revenue(request: dict) -> float:
    return max(0.0, chosen_amount(request) - parse_amount(request.get("securityDeposit")))


# ------------------------
# Aggregates
# ------------------------
class RevenueSummary(BaseModel):
    totalRentRequests: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    active: int = 0
    completed: int = 0
    completedRentalsRevenue: float = 0.0
    approvedAdvanceRevenue: float = 0.0


class ListingStats(BaseModel):
    totalAds: int = 0
    pendingAds: int = 0
    approvedAds: int = 0
    rejectedAds: int = 0
    estimatedRevenue: float = 0.0


def summarize_rent_requests(requests: Iterable[dict], today: Optional[date] = None) -> RevenueSummary:
    """Fold every rent request into dashboard counters. Same input, same totals."""
    today = today or date.today()
    summary = RevenueSummary()
    for req in requests:
        summary.totalRentRequests += 1
        stored = req.get("status")
        if stored == "pending":
            summary.pending += 1
        elif stored == "approved":
            summary.approved += 1
        elif stored == "rejected":
            summary.rejected += 1

        derived = derive_status(req, today)
        if derived == ACTIVE:
            summary.active += 1
        elif derived == COMPLETED:
            summary.completed += 1
            summary.completedRentalsRevenue += net_rental_revenue(req)

        if stored == "approved" or derived == COMPLETED:
            advance = parse_amount(req.get("advancePayment"))
            if advance > 0:
                summary.approvedAdvanceRevenue += advance
    return summary


def estimate_listing_revenue(listings: Iterable[dict]) -> ListingStats:
    """Listing counts by status plus a flat 30% commission on approved listings' price."""
    stats = ListingStats()
    for ad in listings:
        stats.totalAds += 1
        status = ad.get("status")
        if status == "pending":
            stats.pendingAds += 1
        elif status == "approved":
            stats.approvedAds += 1
            price = parse_amount(ad.get("price") or ad.get("rentPerDay"))
            stats.estimatedRevenue += price * LISTING_COMMISSION_RATE
        elif status == "rejected":
            stats.rejectedAds += 1
    return stats
