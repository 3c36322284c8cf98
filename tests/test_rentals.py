from datetime import date, timedelta

import pytest

from rentals import (
    chosen_amount,
    derive_status,
    estimate_listing_revenue,
    parse_amount,
    parse_date,
    rental_end_date,
    status_label,
    summarize_rent_requests,
)

TODAY = date(2024, 6, 1)


# ------------------------
# parse_date
# ------------------------
@pytest.mark.parametrize("text,expected", [
    ("15/03/2024", date(2024, 3, 15)),
    ("15-03-2024", date(2024, 3, 15)),
    ("2024-03-15", date(2024, 3, 15)),
    ("2025-12-01", date(2025, 12, 1)),
    ("  01-01-2024 ", date(2024, 1, 1)),
])
def test_parse_date_formats(text, expected):
    assert parse_date(text) == expected


def test_parse_date_ambiguous_is_day_first():
    assert parse_date("03/04/2024") == date(2024, 4, 3)


def test_parse_date_falls_back_to_month_first():
    # 25 is not a month, so the slash date is read as MM/DD/YYYY
    assert parse_date("12/25/2024") == date(2024, 12, 25)


def test_parse_date_month_first_only_for_slashes():
    assert parse_date("12-25-2024") is None


@pytest.mark.parametrize("text", ["", "   ", None, "not-a-date", "32/13/2024", "15/03/2019", "2019-03-15", "2024/03"])
def test_parse_date_no_date(text):
    assert parse_date(text) is None


@pytest.mark.parametrize("value", [
    "01/01/99999",
    "99999-01-01",
    "31/12/10000",
    "01/01/" + "9" * 5000,
    12345,
    3.5,
    float("nan"),
    {"day": 1},
    ["15", "03", "2024"],
    object(),
])
def test_parse_date_never_raises_on_hostile_input(value):
    assert parse_date(value) is None


def test_parse_date_accepts_date_objects():
    assert parse_date(date(2024, 3, 15)) == date(2024, 3, 15)


def test_parse_date_last_representable_day():
    assert parse_date("31/12/9999") == date(9999, 12, 31)


def test_parse_date_day_overflow_rolls_into_next_month():
    assert parse_date("31/02/2024") == date(2024, 3, 2)


def test_parse_date_iso_components_roundtrip():
    d = date(2024, 1, 1)
    while d < date(2025, 1, 1):
        assert parse_date(d.isoformat()) == d
        d += timedelta(days=17)


# ------------------------
# parse_amount
# ------------------------
@pytest.mark.parametrize("value,expected", [
    ("₹1,234.50", 1234.50),
    ("PKR 2,000", 2000.0),
    ("Rs. 2,000", 0.2),
    (500, 500.0),
    (12.5, 12.5),
    ("1500", 1500.0),
    ("-200", -200.0),
    (None, 0.0),
    ("", 0.0),
    ("abc", 0.0),
    (float("nan"), 0.0),
])
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


@pytest.mark.parametrize("value", [
    float("inf"),
    float("-inf"),
    10 ** 400,
    "9" * 400,
    "9" * 5000,
    [],
    b"",
])
def test_parse_amount_never_raises_on_hostile_input(value):
    assert parse_amount(value) == 0.0


# ------------------------
# derive_status
# ------------------------
def _approved(start, days, **extra):
    return {"status": "approved", "rentalStartDate": start, "numberOfDays": days, **extra}


def test_completed_when_rental_period_over():
    start = (TODAY - timedelta(days=10)).strftime("%d/%m/%Y")
    assert derive_status(_approved(start, 5), TODAY) == "completed"


def test_active_while_rental_running():
    start = (TODAY - timedelta(days=10)).strftime("%d/%m/%Y")
    assert derive_status(_approved(start, 100), TODAY) == "active"


def test_completed_on_last_day():
    assert derive_status(_approved("2024-06-01", 1), TODAY) == "completed"
    assert derive_status(_approved("2024-05-30", 4), TODAY) == "active"


def test_unparsable_start_defaults_to_completed():
    assert derive_status(_approved("someday", 30), TODAY) == "completed"
    assert derive_status({"status": "approved"}, TODAY) == "completed"


@pytest.mark.parametrize("stored", ["pending", "rejected", "cancelled"])
def test_non_approved_keeps_stored_status(stored):
    req = {"status": stored, "rentalStartDate": "01/05/2024", "numberOfDays": 100}
    assert derive_status(req, TODAY) == stored


def test_derive_status_does_not_mutate():
    req = _approved("01-01-2024", 3)
    derive_status(req, TODAY)
    assert req == _approved("01-01-2024", 3)


def test_rental_end_date():
    assert rental_end_date(_approved("01/01/2024", 3)) == date(2024, 1, 3)
    assert rental_end_date(_approved("01/01/2024", "3")) == date(2024, 1, 3)
    assert rental_end_date(_approved("bad", 3)) is None
    assert rental_end_date(_approved("01/01/2024", None)) is None


@pytest.mark.parametrize("days", [
    "999999999",
    "9" * 30,
    "-999999999",
    float("nan"),
    float("inf"),
    float("-inf"),
    10 ** 30,
])
def test_unreadable_rental_length_defaults_to_completed(days):
    req = _approved("01/01/2024", days)
    assert rental_end_date(req) is None
    assert derive_status(req, TODAY) == "completed"


@pytest.mark.parametrize("req", [{}, {"status": None}])
def test_missing_status_is_returned_verbatim(req):
    assert derive_status(req, TODAY) is None
    assert status_label(derive_status(req, TODAY)) == ""


@pytest.mark.parametrize("status,label", [
    ("active", "Active"),
    ("completed", "Completed"),
    ("approved", "Active"),
    ("rejected", "Rejected"),
    ("pending", "Pending"),
    ("on_hold", "ON_HOLD"),
])
def test_status_label(status, label):
    assert status_label(status) == label


# ------------------------
# Aggregates
# ------------------------
def test_chosen_amount_priority():
    assert chosen_amount({"grandTotal": "3000", "totalRent": 100}) == 3000
    assert chosen_amount({"advancePayment": 500, "remainingPayment": "1,500"}) == 2000
    assert chosen_amount({"totalRent": "₹900"}) == 900
    assert chosen_amount({"rentPerDay": "200", "numberOfDays": 4}) == 800
    assert chosen_amount({}) == 0


def test_end_to_end_completed_revenue():
    req = {
        "status": "approved",
        "rentalStartDate": "01-01-2024",
        "numberOfDays": 3,
        "grandTotal": 3000,
        "securityDeposit": 500,
    }
    summary = summarize_rent_requests([req], TODAY)
    assert summary.completed == 1
    assert summary.active == 0
    assert summary.completedRentalsRevenue == 2500


def test_summary_counts_and_revenue():
    requests = [
        {"status": "pending", "advancePayment": 999},
        {"status": "rejected", "grandTotal": 5000},
        {"status": "approved", "rentalStartDate": "2024-05-30", "numberOfDays": 10,
         "grandTotal": 10000, "advancePayment": "2,000"},
        {"status": "approved", "rentalStartDate": "01/01/2024", "numberOfDays": 2,
         "totalRent": 1000, "securityDeposit": 1500, "advancePayment": 300},
        {"status": "approved", "rentalStartDate": "garbage", "rentPerDay": "100", "numberOfDays": 5},
    ]
    summary = summarize_rent_requests(requests, TODAY)
    assert summary.totalRentRequests == 5
    assert (summary.pending, summary.approved, summary.rejected) == (1, 3, 1)
    assert (summary.active, summary.completed) == (1, 2)
    # deposit larger than amount clamps to zero; garbage date counts as completed
    assert summary.completedRentalsRevenue == 0 + 500
    assert summary.approvedAdvanceRevenue == 2000 + 300


def test_summary_is_idempotent():
    requests = [
        {"status": "approved", "rentalStartDate": "01/02/2024", "numberOfDays": 7, "grandTotal": "₹7,700.25",
         "securityDeposit": "700.10", "advancePayment": "1,000"},
        {"status": "pending"},
    ]
    first = summarize_rent_requests(requests, TODAY)
    second = summarize_rent_requests(requests, TODAY)
    assert first == second
    assert first.model_dump() == second.model_dump()


def test_summary_survives_non_finite_fields():
    requests = [
        _approved("01/01/2024", float("nan"), rentPerDay=100),
        _approved("01/01/2024", float("inf"), grandTotal=float("inf"), totalRent=400),
        _approved("01/01/2024", "999999999", rentPerDay=1e308, advancePayment=float("nan")),
        _approved("01/01/99999", 3, grandTotal=700),
    ]
    summary = summarize_rent_requests(requests, TODAY)
    assert summary.completed == 4
    assert summary.completedRentalsRevenue == 400 + 700
    assert summary.approvedAdvanceRevenue == 0


def test_estimate_listing_revenue():
    listings = [
        {"status": "approved", "price": "1000"},
        {"status": "approved", "rentPerDay": "₹500"},
        {"status": "pending", "price": "9999"},
        {"status": "rejected", "price": "100"},
        {"status": "approved", "price": "n/a"},
    ]
    stats = estimate_listing_revenue(listings)
    assert stats.totalAds == 5
    assert (stats.pendingAds, stats.approvedAds, stats.rejectedAds) == (1, 3, 1)
    assert stats.estimatedRevenue == pytest.approx(450.0)
