"""
Read-side rendering of audit snapshots.

Snapshots are stored as an entity-type tag plus an opaque JSON blob. This
module turns them into something an administrator can read:

* ``diff`` compares two snapshots field by field after normalizing values, so
  that ``"2025-01-01"`` and ``"2025-01-01T00:00:00Z"`` or ``150000`` and
  ``"150000"`` do not show up as changes. List fields such as booking rooms
  are reconciled by item id into quantity changes, additions and removals.
* ``humanize`` renders a full snapshot as an ordered label -> value mapping.
* ``group_by_actor`` merges consecutive entries made by the same actor and
  ``paginate_groups`` pages over the resulting groups.

Rendering rules live in ``ENTITY_RULES``, keyed by the entity-type tag, so they
can change without touching stored history. Everything here is pure; nothing
reads or writes the database.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Sequence

EMPTY = "—"

CURRENCY_SYMBOLS = {"PHP": "₱", "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW"})

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")


@dataclass(frozen=True)
class FieldRule:
    """How one snapshot field is labelled, compared and displayed."""

    label: str
    kind: str = "text"
    currency_field: Optional[str] = None


@dataclass(frozen=True)
class EntityRules:
    title: str
    fields: Mapping[str, FieldRule]
    hidden: frozenset = frozenset({"id", "created_at", "updated_at"})


@dataclass(frozen=True)
class FieldChange:
    """One difference between two snapshots, with display values."""

    field: str
    label: str
    kind: str = "changed"
    name: Optional[str] = None
    before: Any = None
    after: Any = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "label": self.label,
            "kind": self.kind,
            "name": self.name,
            "before": self.before,
            "after": self.after,
        }


@dataclass
class ActorGroup:
    """Consecutive entries sharing one actor identity."""

    actor_id: str
    actor_name: str
    actor_role: str
    entries: list = field(default_factory=list)


@dataclass
class GroupPage:
    groups: list
    page: int
    page_size: int
    total_groups: int


ENTITY_RULES: dict[str, EntityRules] = {
    "ReservationHold": EntityRules(
        title="Hold",
        fields={
            "room_type_id": FieldRule("Room type"),
            "booking_id": FieldRule("Booking"),
            "check_in": FieldRule("Check-in", "date"),
            "check_out": FieldRule("Check-out", "date"),
            "quantity": FieldRule("Quantity", "number"),
            "state": FieldRule("State", "status"),
            "expires_at": FieldRule("Lease expires", "datetime"),
            "release_reason": FieldRule("Release reason"),
            "resolved_at": FieldRule("Resolved", "datetime"),
        },
    ),
    "Payment": EntityRules(
        title="Payment",
        fields={
            "booking_id": FieldRule("Booking"),
            "amount": FieldRule("Amount", "money", currency_field="currency"),
            "status": FieldRule("Status", "status"),
            "verification_status": FieldRule("Verification", "status"),
            "provider": FieldRule("Provider"),
            "provider_ref": FieldRule("Provider reference"),
            "verified_by": FieldRule("Verified by"),
            "verified_at": FieldRule("Verified", "datetime"),
            "flagged_by": FieldRule("Flagged by"),
            "flag_reason": FieldRule("Flag reason"),
            "paid_at": FieldRule("Paid", "datetime"),
            "failed_at": FieldRule("Failed", "datetime"),
            "refunded_at": FieldRule("Refunded", "datetime"),
            "needs_attention": FieldRule("Needs attention", "bool"),
            "attention_reason": FieldRule("Attention reason"),
            "notes": FieldRule("Notes", "notes"),
        },
        hidden=frozenset({"id", "created_at", "updated_at", "currency"}),
    ),
    "Booking": EntityRules(
        title="Booking",
        fields={
            "guest_name": FieldRule("Guest name"),
            "guest_ref": FieldRule("Guest"),
            "check_in": FieldRule("Check-in", "date"),
            "check_out": FieldRule("Check-out", "date"),
            "status": FieldRule("Status", "status"),
            "payment_status": FieldRule("Payment status", "status"),
            "total_price": FieldRule("Total", "money", currency_field="currency"),
            "rooms": FieldRule("Rooms", "rooms"),
        },
        hidden=frozenset({"id", "created_at", "updated_at", "currency"}),
    ),
    "RoomType": EntityRules(
        title="Room type",
        fields={
            "name": FieldRule("Name"),
            "total_quantity": FieldRule("Total rooms", "number"),
            "price_amount": FieldRule("Nightly price", "money", currency_field="currency"),
        },
        hidden=frozenset({"id", "created_at", "updated_at", "currency"}),
    ),
}

_FALLBACK_RULES = EntityRules(title="Record", fields={})


# Key and value normalization

def canonical_key(key: str) -> str:
    """``checkIn`` and ``check_in`` both become ``check_in``."""
    return _CAMEL_BOUNDARY.sub("_", str(key)).lower()


def canonicalize(snapshot: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    if not snapshot:
        return {}
    return {canonical_key(k): v for k, v in snapshot.items()}


def _rules_for(entity_type: str) -> EntityRules:
    return ENTITY_RULES.get(entity_type, _FALLBACK_RULES)


def _rule(rules: EntityRules, key: str) -> FieldRule:
    rule = rules.fields.get(key)
    if rule is not None:
        return rule
    return FieldRule(key.replace("_", " ").capitalize(), "auto")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and _DATE_PREFIX.match(value.strip()):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            number = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def _format_number(number: Decimal) -> str:
    if number == number.to_integral_value():
        return str(int(number))
    return format(number.normalize(), "f")


def format_money(amount: Any, currency: Optional[str] = None) -> str:
    """
    Render minor units for display, e.g. ``150000`` PHP -> ``₱1,500.00``.

    Args:
        amount: Amount in minor units (int or numeric string)
        currency: ISO 4217 code; PHP when missing

    Returns:
        str: Display string, or the raw value when it is not numeric
    """
    if _is_blank(amount):
        return EMPTY
    minor = _to_decimal(amount)
    if minor is None:
        return str(amount)

    code = (currency or "PHP").upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    if code in ZERO_DECIMAL_CURRENCIES:
        return f"{symbol}{minor:,.0f}"
    return f"{symbol}{minor / 100:,.2f}"


def _comparable(rule: FieldRule, value: Any, currency: Optional[str]) -> Any:
    """Value used to decide whether a field changed."""
    if _is_blank(value):
        return None
    kind = rule.kind
    if kind == "date":
        parsed = _parse_datetime(value)
        return parsed.date().isoformat() if parsed else str(value).strip()
    if kind == "datetime":
        parsed = _parse_datetime(value)
        return parsed if parsed else str(value).strip()
    if kind == "money":
        number = _to_decimal(value)
        return (number, (currency or "PHP").upper()) if number is not None else str(value).strip()
    if kind == "number":
        number = _to_decimal(value)
        return number if number is not None else str(value).strip()
    if kind == "bool":
        return bool(value)
    if kind == "status":
        return str(value).strip().upper()
    if kind == "auto":
        number = _to_decimal(value)
        if number is not None:
            return number
        if isinstance(value, str):
            parsed = _parse_datetime(value)
            if parsed is not None:
                return parsed
        if isinstance(value, (list, dict)):
            return value
        return str(value).strip()
    return str(value).strip()


def display_value(rule: FieldRule, value: Any, currency: Optional[str] = None) -> Any:
    """Render one field value with the field's normalization rules."""
    if rule.kind == "bool":
        return "Yes" if value else "No"
    if _is_blank(value):
        return EMPTY
    kind = rule.kind
    if kind == "date":
        parsed = _parse_datetime(value)
        return parsed.date().isoformat() if parsed else str(value)
    if kind == "datetime":
        parsed = _parse_datetime(value)
        return parsed.strftime("%Y-%m-%d %H:%M:%S UTC") if parsed else str(value)
    if kind == "money":
        return format_money(value, currency)
    if kind == "number":
        number = _to_decimal(value)
        return _format_number(number) if number is not None else str(value)
    if kind == "status":
        return str(value).replace("_", " ").capitalize()
    if kind == "rooms":
        lines = _room_lines(value)
        if not lines:
            return EMPTY
        return ", ".join(f"{line['name']} x{line['quantity']}" for line in lines.values())
    if kind == "notes":
        notes = [n for n in value if isinstance(n, Mapping)] if isinstance(value, list) else []
        if not notes:
            return EMPTY
        return "; ".join(f"{n.get('author', 'unknown')}: {n.get('text', '')}" for n in notes)
    if kind == "auto":
        if isinstance(value, bool):
            return "Yes" if value else "No"
        number = _to_decimal(value)
        if number is not None and not isinstance(value, str):
            return _format_number(number)
        if isinstance(value, str):
            if _DATE_PREFIX.match(value.strip()):
                parsed = _parse_datetime(value)
                if parsed is not None:
                    if len(value.strip()) == 10:
                        return parsed.date().isoformat()
                    return parsed.strftime("%Y-%m-%d %H:%M:%S UTC")
            if number is not None:
                return _format_number(number)
        return value
    return str(value)


# List fields

def _room_key(item: Mapping[str, Any]) -> Optional[str]:
    room = item.get("room")
    for key in ("room_type_id", "room_id"):
        if item.get(key) is not None:
            return str(item[key])
    if isinstance(room, Mapping) and room.get("id") is not None:
        return str(room["id"])
    if item.get("id") is not None:
        return str(item["id"])
    return None


def _room_lines(value: Any) -> dict[str, dict[str, Any]]:
    """Index room line items by id, summing duplicates."""
    lines: dict[str, dict[str, Any]] = {}
    if not isinstance(value, list):
        return lines
    for raw in value:
        if not isinstance(raw, Mapping):
            continue
        item = canonicalize(raw)
        key = _room_key(item)
        if key is None:
            continue
        quantity = item.get("quantity", item.get("qty"))
        number = _to_decimal(quantity) if quantity is not None else Decimal(1)
        qty = int(number) if number is not None else 1

        room = item.get("room")
        name = (
            item.get("name")
            or item.get("room_type_name")
            or item.get("room_name")
            or (room.get("name") if isinstance(room, Mapping) else None)
        )
        line = lines.setdefault(key, {"quantity": 0, "name": None})
        line["quantity"] += qty
        line["name"] = line["name"] or name

    for key, line in lines.items():
        line["name"] = line["name"] or f"Room {key}"
    return lines


def _diff_rooms(key: str, rule: FieldRule, before: Any, after: Any) -> list[FieldChange]:
    old, new = _room_lines(before), _room_lines(after)
    changes = []
    for room_id in list(old) + [r for r in new if r not in old]:
        if room_id in old and room_id in new:
            if old[room_id]["quantity"] != new[room_id]["quantity"]:
                changes.append(FieldChange(
                    key, rule.label, "changed",
                    name=new[room_id]["name"],
                    before=old[room_id]["quantity"],
                    after=new[room_id]["quantity"],
                ))
        elif room_id in new:
            changes.append(FieldChange(
                key, rule.label, "added", name=new[room_id]["name"], after=new[room_id]["quantity"]
            ))
        else:
            changes.append(FieldChange(
                key, rule.label, "removed", name=old[room_id]["name"], before=old[room_id]["quantity"]
            ))
    return changes


def _diff_notes(key: str, rule: FieldRule, before: Any, after: Any) -> list[FieldChange]:
    # Notes are append-only; anything past the old length is new
    old = before if isinstance(before, list) else []
    new = after if isinstance(after, list) else []
    changes = []
    for note in new[len(old):]:
        if isinstance(note, Mapping):
            changes.append(FieldChange(key, rule.label, "added", name=note.get("author"), after=note.get("text")))
    return changes


# Public API

def diff(
    before: Optional[Mapping[str, Any]],
    after: Optional[Mapping[str, Any]],
    entity_type: str,
) -> list[FieldChange]:
    """
    Compute the human-relevant changes between two snapshots.

    Args:
        before: Snapshot before the transition (None for CREATE)
        after: Snapshot after the transition (None for DELETE)
        entity_type: Entity-type tag selecting the rendering rules

    Returns:
        list[FieldChange]: Changes in rule order, then unknown fields in
        snapshot order. Formatting-only differences are not reported.
    """
    rules = _rules_for(entity_type)
    old, new = canonicalize(before), canonicalize(after)

    keys = [k for k in rules.fields if k in old or k in new]
    for k in list(new) + list(old):
        if k not in keys and k not in rules.hidden:
            keys.append(k)

    changes: list[FieldChange] = []
    for key in keys:
        rule = _rule(rules, key)
        old_value, new_value = old.get(key), new.get(key)

        if rule.kind == "rooms":
            changes.extend(_diff_rooms(key, rule, old_value, new_value))
            continue
        if rule.kind == "notes":
            changes.extend(_diff_notes(key, rule, old_value, new_value))
            continue

        old_currency = old.get(rule.currency_field) if rule.currency_field else None
        new_currency = new.get(rule.currency_field) if rule.currency_field else None
        old_cmp = _comparable(rule, old_value, old_currency)
        new_cmp = _comparable(rule, new_value, new_currency)
        if old_cmp == new_cmp:
            continue

        if old_cmp is None:
            kind = "added"
        elif new_cmp is None:
            kind = "removed"
        else:
            kind = "changed"
        changes.append(FieldChange(
            key,
            rule.label,
            kind,
            before=None if old_cmp is None else display_value(rule, old_value, old_currency),
            after=None if new_cmp is None else display_value(rule, new_value, new_currency),
        ))

    return changes


def humanize(snapshot: Optional[Mapping[str, Any]], entity_type: str) -> dict[str, Any]:
    """
    Render a full snapshot as an ordered label -> display value mapping.

    Known fields come first in rule order; unknown fields follow in snapshot
    order. Hidden bookkeeping fields and empty values are left out.
    """
    rules = _rules_for(entity_type)
    data = canonicalize(snapshot)

    keys = [k for k in rules.fields if k in data]
    keys += [k for k in data if k not in rules.fields and k not in rules.hidden]

    rendered: dict[str, Any] = {}
    for key in keys:
        value = data[key]
        rule = _rule(rules, key)
        if rule.kind != "bool" and (_is_blank(value) or value == []):
            continue
        currency = data.get(rule.currency_field) if rule.currency_field else None
        rendered[rule.label] = display_value(rule, value, currency)
    return rendered


VERBS = {
    "CREATE": "created",
    "UPDATE": "updated",
    "DELETE": "deleted",
    "CANCEL": "cancelled",
    "VERIFY": "verified",
    "FLAG": "flagged",
    "NOTE": "annotated",
}


def summarize(
    entity_type: str,
    action: str,
    before: Optional[Mapping[str, Any]],
    after: Optional[Mapping[str, Any]],
    limit: int = 3,
) -> str:
    """One-line description of an entry, stored alongside it at write time."""
    title = _rules_for(entity_type).title
    verb = VERBS.get(str(action), str(action).lower())
    headline = f"{title} {verb}"
    if before is None or after is None:
        return headline

    parts = []
    for change in diff(before, after, entity_type)[:limit]:
        subject = f"{change.label} {change.name}" if change.name else change.label
        if change.kind == "added":
            parts.append(f"{subject} added ({change.after})")
        elif change.kind == "removed":
            parts.append(f"{subject} removed ({change.before})")
        else:
            parts.append(f"{subject}: {change.before} → {change.after}")
    return f"{headline}: {'; '.join(parts)}" if parts else headline


def group_by_actor(entries: Iterable[Any]) -> list[ActorGroup]:
    """
    Merge runs of consecutive entries made by the same actor.

    Order is preserved: ``[A, A, B, A]`` becomes three groups, not two. Entries
    need ``actor_id``, ``actor_name`` and ``actor_role`` attributes.
    """
    groups: list[ActorGroup] = []
    for entry in entries:
        identity = (entry.actor_id, entry.actor_name, entry.actor_role)
        last = groups[-1] if groups else None
        if last is not None and (last.actor_id, last.actor_name, last.actor_role) == identity:
            last.entries.append(entry)
        else:
            groups.append(ActorGroup(*identity, entries=[entry]))
    return groups


def paginate_groups(groups: Sequence[ActorGroup], page: int, page_size: int) -> GroupPage:
    """
    Slice groups into 1-based pages.

    Raises:
        ValueError: If page or page_size is below 1
    """
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be at least 1")
    start = (page - 1) * page_size
    return GroupPage(
        groups=list(groups[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_groups=len(groups),
    )
