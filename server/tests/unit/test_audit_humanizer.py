"""Unit tests for audit diffing, humanizing and grouping."""

from types import SimpleNamespace

import pytest

from reservation_core.services.audit_humanizer import (
    EMPTY,
    canonical_key,
    diff,
    format_money,
    group_by_actor,
    humanize,
    paginate_groups,
    summarize,
)


def entry(actor_id, name=None, role="CASHIER", label=None):
    return SimpleNamespace(actor_id=actor_id, actor_name=name or actor_id.upper(), actor_role=role, label=label)


def test_diff_booking_dates_and_rooms():
    """Test the check-in change, a room quantity change and an added room."""
    before = {"checkIn": "2025-01-01", "rooms": [{"id": 1, "qty": 2}]}
    after = {"checkIn": "2025-01-02", "rooms": [{"id": 1, "qty": 3}, {"id": 2, "qty": 1}]}

    changes = diff(before, after, "Booking")

    assert [(c.field, c.kind) for c in changes] == [
        ("check_in", "changed"),
        ("rooms", "changed"),
        ("rooms", "added"),
    ]
    check_in, room_1, room_2 = changes
    assert (check_in.before, check_in.after) == ("2025-01-01", "2025-01-02")
    assert (room_1.name, room_1.before, room_1.after) == ("Room 1", 2, 3)
    assert (room_2.name, room_2.after) == ("Room 2", 1)


def test_diff_removed_room_uses_stored_name():
    """Test that a removed room line is reported with its name."""
    before = {"rooms": [
        {"room_type_id": "a", "name": "Deluxe Room", "quantity": 1},
        {"room_type_id": "b", "name": "Family Suite", "quantity": 1},
    ]}
    after = {"rooms": [{"room_type_id": "a", "name": "Deluxe Room", "quantity": 1}]}

    changes = diff(before, after, "Booking")

    assert len(changes) == 1
    assert (changes[0].kind, changes[0].name, changes[0].before) == ("removed", "Family Suite", 1)


@pytest.mark.parametrize(
    "before,after",
    [
        ({"check_in": "2025-01-01"}, {"check_in": "2025-01-01T00:00:00Z"}),
        ({"total_price": 150000}, {"total_price": "150000"}),
        ({"guest_name": "Maria "}, {"guest_name": "Maria"}),
        ({"guest_name": None}, {"guest_name": ""}),
        ({"checkIn": "2025-01-01"}, {"check_in": "2025-01-01"}),
        ({"rooms": [{"id": 1, "qty": 2}]}, {"rooms": [{"room_type_id": "1", "quantity": "2"}]}),
    ],
)
def test_diff_ignores_formatting_only_changes(before, after):
    """Test that representational differences are not reported."""
    assert diff(before, after, "Booking") == []


def test_diff_reports_changes_within_a_minute():
    """Test that a lease moved by seconds is a change, but a time zone rewrite is not."""
    changes = diff({"expires_at": "2026-10-19T09:00:05"}, {"expires_at": "2026-10-19T09:00:50"}, "ReservationHold")

    assert [(c.field, c.before, c.after) for c in changes] == [
        ("expires_at", "2026-10-19 09:00:05 UTC", "2026-10-19 09:00:50 UTC"),
    ]

    same_instant = diff(
        {"expires_at": "2026-10-19T09:00:05Z"}, {"expires_at": "2026-10-19T17:00:05+08:00"}, "ReservationHold"
    )
    assert same_instant == []


def test_diff_hides_bookkeeping_fields():
    """Test that ids and timestamps of the record itself are not shown."""
    before = {"id": "1", "updated_at": "2025-01-01T00:00:00", "status": "PENDING"}
    after = {"id": "1", "updated_at": "2025-01-02T00:00:00", "status": "PAID"}

    changes = diff(before, after, "Payment")

    assert [(c.label, c.before, c.after) for c in changes] == [("Status", "Pending", "Paid")]


def test_diff_added_and_removed_scalars():
    """Test scalar fields appearing and disappearing."""
    changes = diff({"verified_by": None}, {"verified_by": "cashier-1"}, "Payment")
    assert (changes[0].kind, changes[0].before, changes[0].after) == ("added", None, "cashier-1")

    changes = diff({"flag_reason": "mismatch"}, {}, "Payment")
    assert (changes[0].kind, changes[0].before) == ("removed", "mismatch")


def test_diff_new_notes_only():
    """Test that only notes past the previous list are reported."""
    note = {"author": "cashier-1", "text": "called guest", "at": "2025-01-01T10:00:00"}
    later = {"author": "admin-1", "text": "refund approved", "at": "2025-01-02T10:00:00"}

    changes = diff({"notes": [note]}, {"notes": [note, later]}, "Payment")

    assert [(c.kind, c.name, c.after) for c in changes] == [("added", "admin-1", "refund approved")]


def test_diff_unknown_entity_and_fields():
    """Test that unknown entity types and fields still diff with generic labels."""
    changes = diff({"colourScheme": "blue"}, {"colourScheme": "green"}, "Spa")

    assert [(c.field, c.label) for c in changes] == [("colour_scheme", "Colour scheme")]


def test_humanize_payment():
    """Test rendering a full snapshot in rule order with display values."""
    snapshot = {
        "id": "p1",
        "status": "PENDING",
        "amount": 1350000,
        "currency": "PHP",
        "booking_id": "b1",
        "needs_attention": False,
        "verified_by": None,
        "notes": [],
    }

    rendered = humanize(snapshot, "Payment")

    assert list(rendered) == ["Booking", "Amount", "Status", "Needs attention"]
    assert rendered["Amount"] == "₱13,500.00"
    assert rendered["Status"] == "Pending"
    assert rendered["Needs attention"] == "No"


def test_humanize_booking_rooms_and_dates():
    """Test rendering room lines and dates of a booking."""
    snapshot = {
        "check_in": "2026-12-20",
        "check_out": "2026-12-23T00:00:00",
        "rooms": [{"room_type_id": "a", "name": "Deluxe Room", "quantity": 2}],
        "total_price": 2700000,
        "currency": "PHP",
    }

    rendered = humanize(snapshot, "Booking")

    assert rendered["Check-in"] == "2026-12-20"
    assert rendered["Check-out"] == "2026-12-23"
    assert rendered["Rooms"] == "Deluxe Room x2"
    assert rendered["Total"] == "₱27,000.00"


def test_format_money():
    """Test money formatting across currencies."""
    assert format_money(450000, "PHP") == "₱4,500.00"
    assert format_money(1999, "USD") == "$19.99"
    assert format_money(5000, "JPY") == "¥5,000"
    assert format_money(None, "PHP") == EMPTY


def test_canonical_key():
    """Test that camelCase and snake_case keys meet."""
    assert canonical_key("checkIn") == "check_in"
    assert canonical_key("check_in") == "check_in"
    assert canonical_key("verificationStatus") == "verification_status"


def test_summarize_update_and_create():
    """Test one-line summaries stored with entries."""
    assert summarize("ReservationHold", "CREATE", None, {"state": "ACTIVE"}) == "Hold created"
    assert (
        summarize("Payment", "UPDATE", {"status": "PENDING"}, {"status": "PAID"})
        == "Payment updated: Status: Pending → Paid"
    )
    assert summarize("Payment", "VERIFY", {"status": "PAID"}, {"status": "PAID"}) == "Payment verified"


def test_grouping_preserves_order():
    """Test that [A, A, B, A] becomes three groups, not two."""
    entries = [entry("a", label=1), entry("a", label=2), entry("b", label=3), entry("a", label=4)]

    groups = group_by_actor(entries)

    assert [(g.actor_id, [e.label for e in g.entries]) for g in groups] == [
        ("a", [1, 2]),
        ("b", [3]),
        ("a", [4]),
    ]


def test_grouping_uses_full_identity():
    """Test that a role change splits a run by the same actor id."""
    entries = [entry("a", role="CASHIER"), entry("a", role="SUPERADMIN")]
    assert len(group_by_actor(entries)) == 2
    assert group_by_actor([]) == []


def test_paginate_groups():
    """Test paging over groups."""
    groups = group_by_actor([entry(actor) for actor in "abcde"])

    page = paginate_groups(groups, page=2, page_size=2)

    assert [g.actor_id for g in page.groups] == ["c", "d"]
    assert page.total_groups == 5
    assert paginate_groups(groups, page=4, page_size=2).groups == []
    with pytest.raises(ValueError):
        paginate_groups(groups, page=0, page_size=2)
