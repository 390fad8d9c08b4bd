from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

from contractsign.schemas.project import ProjectRecord

HUNGARIAN_MONTHS = (
    "január",
    "február",
    "március",
    "április",
    "május",
    "június",
    "július",
    "augusztus",
    "szeptember",
    "október",
    "november",
    "december",
)

FLOOR_MATERIAL_LABELS = {
    "wood": "Fa",
    "prefab_rc": "Előre gyártott vb. (betongerendás)",
    "monolithic_rc": "Monolit v.b.",
    "rc_slab": "Vasbeton tálcás",
    "hollow_block": "Horcsik",
}

INSULATION_OPTION_LABELS = {
    "A": "Opció A: 10 cm + 15 cm = 25 cm",
    "B": "Opció B: 12,5 cm + 12,5 cm = 25 cm",
}


def format_hungarian_date(value: date | datetime | str | None) -> str:
    """Long Hungarian date, e.g. ``2025. március 7.``; unparsable strings pass through."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        raw = value.strip()
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return raw
    return f"{value.year}. {HUNGARIAN_MONTHS[value.month - 1]} {value.day}."


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _compose_address(zip_code: str | None, city: str | None, street: str | None) -> str:
    if zip_code and city and street:
        return f"{zip_code} {city}, {street}"
    return ""


def _format_area(value: float | None) -> str:
    if value is None:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    # shortest round-trip digits, never exponent form
    return format(Decimal(repr(float(value))), "f").replace(".", ",")


def _floor_material(record: ProjectRecord) -> str:
    code = _text(record.floor_material)
    if not code:
        return ""
    if code == "other":
        return _text(record.floor_material_extra) or "Egyéb"
    return FLOOR_MATERIAL_LABELS.get(code, code)


def _insulation_option(record: ProjectRecord) -> str:
    code = _text(record.insulation_option)
    if not code:
        return ""
    return INSULATION_OPTION_LABELS.get(code, code)


def build_tokens(record: ProjectRecord | Mapping[str, Any], *, today: date | None = None) -> dict[str, str]:
    """Flatten a project record into the ``{token}`` substitution table."""
    if not isinstance(record, ProjectRecord):
        record = ProjectRecord.model_validate(dict(record or {}))

    client_address = (
        _compose_address(record.client_zip, record.client_city, record.client_street)
        or _text(record.client_address)
    )
    if record.property_address_same is True:
        property_address = client_address
    else:
        property_address = (
            _compose_address(record.property_zip, record.property_city, record.property_street)
            or client_address
        )

    return {
        "client_name": _text(record.client_name),
        "client_address": client_address,
        "client_street": _text(record.client_street),
        "client_city": _text(record.client_city),
        "client_zip": _text(record.client_zip),
        "client_phone": _text(record.client_phone),
        "client_email": _text(record.client_email),
        "client_birth_place": _text(record.client_birth_place),
        "client_birth_date": format_hungarian_date(record.client_birth_date),
        "client_mother_name": _text(record.client_mother_name),
        "client_tax_id": _text(record.client_tax_id),
        "property_address": property_address,
        "property_street": _text(record.property_street),
        "property_city": _text(record.property_city),
        "property_zip": _text(record.property_zip),
        "property_hrsz": _text(record.property_hrsz),
        "property_address_same": "igen" if record.property_address_same else "nem",
        "project_title": _text(record.title),
        "area_sqm": _format_area(record.area_sqm),
        "floor_material": _floor_material(record),
        "floor_material_extra": _text(record.floor_material_extra),
        "insulation_option": _insulation_option(record),
        "hem_value": _text(record.hem_value),
        "date": format_hungarian_date(today or date.today()),
        "created_at": format_hungarian_date(record.created_at),
        "updated_at": format_hungarian_date(record.updated_at),
    }
