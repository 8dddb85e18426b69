"""Entity registry - what each external entity type looks like and where it lands.

Each EntityType has one EntitySpec holding:

- the Teamleader resource name (``<resource>.list``)
- the local model and the columns mappings may target
- a fixed table of extractors, one per supported external attribute
- the default field mappings seeded for new users
- link extractors for foreign references (company, contact, deal)
- the name/title fallback used when no mapped value is present

External attributes are only reachable through the extractor table. A mapping
that names anything else is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

from ..models import Customer, Deal, Invoice, Project, Quote


class EntityType(str, Enum):
    """Entity types in the fixed order a run processes them."""

    CONTACTS = "contacts"
    COMPANIES = "companies"
    DEALS = "deals"
    INVOICES = "invoices"
    QUOTES = "quotes"
    PROJECTS = "projects"


Extractor = Callable[[dict], Any]


# -- value helpers -----------------------------------------------------------


def dig(record: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; None when any hop is missing."""
    current = record
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_of(record: dict, *paths: str) -> Any:
    for path in paths:
        value = dig(record, path)
        if value not in (None, ""):
            return value
    return None


def to_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp into a date."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _typed_entry(items: Any, key: str, preferred: tuple[str, ...] = ("primary",)) -> Any:
    """Pick ``key`` from a list like ``[{"type": "primary", "email": ...}]``."""
    if not isinstance(items, list):
        return None
    entries = [i for i in items if isinstance(i, dict) and i.get(key)]
    for wanted in preferred:
        for entry in entries:
            if entry.get("type") == wanted:
                return entry[key]
    return entries[0][key] if entries else None


def _email(record: dict) -> str | None:
    return clean_str(record.get("email") or _typed_entry(record.get("emails"), "email"))


def _telephone(record: dict) -> str | None:
    return clean_str(
        record.get("telephone")
        or _typed_entry(record.get("telephones"), "number", preferred=("phone", "mobile"))
    )


def _mobile(record: dict) -> str | None:
    return clean_str(
        record.get("mobile") or _typed_entry(record.get("telephones"), "number", preferred=("mobile",))
    )


def _address_part(part: str) -> Extractor:
    def extract(record: dict) -> str | None:
        value = first_of(record, f"primary_address.{part}", part)
        if value is None:
            addresses = record.get("addresses")
            if isinstance(addresses, list) and addresses and isinstance(addresses[0], dict):
                value = dig(addresses[0], f"address.{part}") or addresses[0].get(part)
        return clean_str(value)

    return extract


def _full_name(record: dict) -> str | None:
    parts = [clean_str(record.get("first_name")), clean_str(record.get("last_name"))]
    return " ".join(p for p in parts if p) or None


def _contact_company_name(record: dict) -> str | None:
    value = first_of(record, "company_name", "company.name")
    if value is None:
        companies = record.get("companies")
        if isinstance(companies, list) and companies and isinstance(companies[0], dict):
            value = dig(companies[0], "company.name")
    return clean_str(value)


def _text(*paths: str) -> Extractor:
    return lambda record: clean_str(first_of(record, *paths))


def _amount(*paths: str) -> Extractor:
    return lambda record: to_float(first_of(record, *(f"{p}.amount" for p in paths), *paths))


def _currency(*paths: str) -> Extractor:
    def extract(record: dict) -> str | None:
        currency = first_of(record, *(f"{p}.currency" for p in paths))
        if currency:
            return str(currency)
        # Teamleader omits the currency on single-currency accounts.
        if to_float(first_of(record, *(f"{p}.amount" for p in paths), *paths)) is not None:
            return "EUR"
        return None

    return extract


def _date(*paths: str) -> Extractor:
    return lambda record: to_date(first_of(record, *paths))


def _number(*paths: str) -> Extractor:
    return lambda record: to_float(first_of(record, *paths))


# -- customer references -----------------------------------------------------


def _customer_ref(record: dict, kind: str) -> str | None:
    """External id of the linked company or contact, whatever shape the API used."""
    for path in ("customer", "lead.customer", "invoicee.customer"):
        ref = dig(record, path)
        if isinstance(ref, dict) and ref.get("type") == kind and ref.get("id"):
            return str(ref["id"])
    direct = first_of(record, f"{kind}.id", f"{kind}_id")
    if direct is None and kind == "contact":
        direct = dig(record, "lead.contact_person.id")
    return str(direct) if direct is not None else None


def _company_ref(record: dict) -> str | None:
    return _customer_ref(record, "company")


def _contact_ref(record: dict) -> str | None:
    return _customer_ref(record, "contact")


def _deal_ref(record: dict) -> str | None:
    value = first_of(record, "deal.id", "deal_id")
    return str(value) if value is not None else None


# -- export writers ------------------------------------------------------------


def _set(key: str) -> Callable[[dict, Any], None]:
    def write(payload: dict, value: Any) -> None:
        payload[key] = value

    return write


def _append(key: str, entry_key: str, entry_type: str) -> Callable[[dict, Any], None]:
    def write(payload: dict, value: Any) -> None:
        payload.setdefault(key, []).append({"type": entry_type, entry_key: value})

    return write


# -- specs ---------------------------------------------------------------------


@dataclass(frozen=True)
class EntitySpec:
    entity_type: EntityType
    resource: str
    model: type
    extractors: dict[str, Extractor]
    default_mappings: tuple[tuple[str, str], ...]  # (external_field, local_field)
    links: dict[str, Extractor] = field(default_factory=dict)
    constants: dict[str, Any] = field(default_factory=dict)
    required_field: str | None = None
    fallback: Callable[[dict], Any] | None = None
    writers: dict[str, Callable[[dict, Any], None]] = field(default_factory=dict)

    @property
    def local_fields(self) -> frozenset[str]:
        """Columns a mapping may target."""
        reserved = {"id", "user_id", "external_id", "last_synced_at", "created_at", "updated_at"}
        reserved.update(self.links)
        reserved.update(self.constants)
        reserved.update({"customer_id", "deal_id"})
        return frozenset(
            c.key for c in self.model.__table__.columns if c.key not in reserved
        )

    @property
    def external_fields(self) -> frozenset[str]:
        return frozenset(self.extractors)


def _contact_fallback(record: dict) -> str:
    return (
        _full_name(record)
        or _email(record)
        or f"Contact {record.get('id')}"
    )


def _company_fallback(record: dict) -> str:
    return clean_str(record.get("name")) or _email(record) or f"Company {record.get('id')}"


CONTACT_SPEC = EntitySpec(
    entity_type=EntityType.CONTACTS,
    resource="contacts",
    model=Customer,
    extractors={
        "first_name": _text("first_name"),
        "last_name": _text("last_name"),
        "full_name": _full_name,
        "email": _email,
        "telephone": _telephone,
        "mobile": _mobile,
        "company_name": _contact_company_name,
        "website": _text("website"),
        "city": _address_part("city"),
        "country": _address_part("country"),
        "remarks": _text("remarks"),
    },
    default_mappings=(
        ("full_name", "name"),
        ("first_name", "first_name"),
        ("last_name", "last_name"),
        ("email", "email"),
        ("telephone", "phone"),
        ("company_name", "company"),
        ("website", "website"),
        ("city", "city"),
        ("country", "country"),
    ),
    constants={"customer_type": "contact"},
    required_field="name",
    fallback=_contact_fallback,
    writers={
        "first_name": _set("first_name"),
        "last_name": _set("last_name"),
        "email": _append("emails", "email", "primary"),
        "telephone": _append("telephones", "number", "phone"),
        "mobile": _append("telephones", "number", "mobile"),
        "website": _set("website"),
        "remarks": _set("remarks"),
    },
)

COMPANY_SPEC = EntitySpec(
    entity_type=EntityType.COMPANIES,
    resource="companies",
    model=Customer,
    extractors={
        "name": _text("name"),
        "email": _email,
        "telephone": _telephone,
        "website": _text("website"),
        "vat_number": _text("vat_number"),
        "city": _address_part("city"),
        "country": _address_part("country"),
        "remarks": _text("remarks"),
    },
    default_mappings=(
        ("name", "name"),
        ("email", "email"),
        ("telephone", "phone"),
        ("website", "website"),
        ("vat_number", "vat_number"),
        ("city", "city"),
        ("country", "country"),
    ),
    constants={"customer_type": "company"},
    required_field="name",
    fallback=_company_fallback,
)

DEAL_SPEC = EntitySpec(
    entity_type=EntityType.DEALS,
    resource="deals",
    model=Deal,
    extractors={
        "title": _text("title"),
        "summary": _text("summary", "description"),
        "estimated_value": _amount("estimated_value", "value"),
        "currency": _currency("estimated_value", "value"),
        "phase": _text("current_phase.name", "phase.name", "phase"),
        "estimated_probability": _number("estimated_probability", "probability"),
        "estimated_closing_date": _date("estimated_closing_date", "expected_closing_date"),
        "closed_at": _date("closed_at", "closing_date"),
        "source": _text("source.name", "lead_source.name"),
        "responsible_user": _text("responsible_user.id"),
    },
    default_mappings=(
        ("title", "title"),
        ("summary", "description"),
        ("estimated_value", "value"),
        ("currency", "currency"),
        ("phase", "stage"),
        ("estimated_probability", "probability"),
        ("estimated_closing_date", "expected_close_date"),
        ("closed_at", "closed_at"),
        ("source", "source"),
        ("responsible_user", "responsible_user_external_id"),
    ),
    links={
        "company_external_id": _company_ref,
        "contact_external_id": _contact_ref,
    },
    required_field="title",
    fallback=lambda record: f"Deal {record.get('id')}",
)

INVOICE_SPEC = EntitySpec(
    entity_type=EntityType.INVOICES,
    resource="invoices",
    model=Invoice,
    extractors={
        "invoice_number": _text("invoice_number"),
        "title": _text("title"),
        "description": _text("description"),
        "total": lambda r: to_float(
            first_of(r, "total.payable.amount", "total.tax_inclusive.amount", "total.amount", "total_price.amount")
        ),
        "currency": lambda r: clean_str(
            first_of(r, "total.payable.currency", "total.tax_inclusive.currency", "total.currency", "total_price.currency", "currency")
        ),
        "status": _text("status"),
        "invoice_date": _date("invoice_date"),
        "due_on": _date("due_on", "due_date"),
        "paid_at": _date("paid_at", "payment_date"),
    },
    default_mappings=(
        ("invoice_number", "invoice_number"),
        ("title", "title"),
        ("description", "description"),
        ("total", "total_amount"),
        ("currency", "currency"),
        ("status", "status"),
        ("invoice_date", "invoice_date"),
        ("due_on", "due_date"),
        ("paid_at", "paid_at"),
    ),
    links={
        "company_external_id": _company_ref,
        "contact_external_id": _contact_ref,
        "deal_external_id": _deal_ref,
    },
)

QUOTE_SPEC = EntitySpec(
    entity_type=EntityType.QUOTES,
    resource="quotations",
    model=Quote,
    extractors={
        "quotation_number": _text("quotation_number", "number"),
        "name": _text("name", "title"),
        "description": _text("description"),
        "total": lambda r: to_float(
            first_of(r, "total.tax_inclusive.amount", "total.tax_exclusive.amount", "total.amount")
        ),
        "currency": lambda r: clean_str(
            first_of(r, "total.tax_inclusive.currency", "total.tax_exclusive.currency", "total.currency", "currency")
        ),
        "status": _text("status"),
        "quotation_date": _date("quotation_date", "sent_at", "created_at"),
        "expires_on": _date("expires_on", "valid_until"),
    },
    default_mappings=(
        ("quotation_number", "quote_number"),
        ("name", "title"),
        ("description", "description"),
        ("total", "total_amount"),
        ("currency", "currency"),
        ("status", "status"),
        ("quotation_date", "quote_date"),
        ("expires_on", "valid_until"),
    ),
    links={
        "company_external_id": _company_ref,
        "contact_external_id": _contact_ref,
        "deal_external_id": _deal_ref,
    },
    required_field="title",
    fallback=lambda record: clean_str(first_of(record, "quotation_number", "number"))
    or f"Quote {record.get('id')}",
)

PROJECT_SPEC = EntitySpec(
    entity_type=EntityType.PROJECTS,
    resource="projects",
    model=Project,
    extractors={
        "title": _text("title", "name"),
        "description": _text("description"),
        "status": _text("status"),
        "starts_on": _date("starts_on", "start_date"),
        "due_on": _date("due_on", "ends_on", "end_date"),
        "budget": _amount("budget"),
        "currency": _currency("budget"),
        "responsible_user": _text("responsible_user.id"),
    },
    default_mappings=(
        ("title", "title"),
        ("description", "description"),
        ("status", "status"),
        ("starts_on", "start_date"),
        ("due_on", "end_date"),
        ("budget", "budget"),
        ("currency", "currency"),
        ("responsible_user", "responsible_user_external_id"),
    ),
    links={
        "company_external_id": _company_ref,
        "contact_external_id": _contact_ref,
    },
    required_field="title",
    fallback=lambda record: f"Project {record.get('id')}",
)


ENTITY_SPECS: dict[EntityType, EntitySpec] = {
    spec.entity_type: spec
    for spec in (CONTACT_SPEC, COMPANY_SPEC, DEAL_SPEC, INVOICE_SPEC, QUOTE_SPEC, PROJECT_SPEC)
}

_missing = [t.value for t in EntityType if t not in ENTITY_SPECS]
if _missing:
    raise RuntimeError(f"EntityType without EntitySpec: {', '.join(_missing)}")


def get_spec(entity_type: EntityType | str) -> EntitySpec:
    return ENTITY_SPECS[EntityType(entity_type)]


# Types an incremental sync covers when its scope is "all".
INCREMENTAL_TYPES = (EntityType.COMPANIES, EntityType.DEALS, EntityType.INVOICES, EntityType.QUOTES)


def resolve_scope(scope: str, incremental: bool = False) -> list[EntityType]:
    """Expand a sync scope ("all" or one entity type) into the ordered type list.

    Raises:
        ValueError: If the scope names no known entity type
    """
    if scope == "all":
        return list(INCREMENTAL_TYPES) if incremental else list(EntityType)
    return [EntityType(scope)]
