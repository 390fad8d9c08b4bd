from datetime import date

import pytest

from contractsign.schemas.project import ProjectRecord
from contractsign.services.tokens import build_tokens, format_hungarian_date

from tests.conftest import PROJECT


def test_format_hungarian_date_variants() -> None:
    assert format_hungarian_date(date(2025, 3, 7)) == "2025. március 7."
    assert format_hungarian_date("2024-12-24T10:00:00Z") == "2024. december 24."
    assert format_hungarian_date("tavaly nyáron") == "tavaly nyáron"
    assert format_hungarian_date(None) == ""


def test_build_tokens_composes_addresses_and_labels() -> None:
    tokens = build_tokens(PROJECT, today=date(2025, 1, 15))

    assert tokens["client_name"] == "Kovács Anna"
    assert tokens["client_address"] == "1111 Budapest, Fő utca 1."
    assert tokens["property_address"] == tokens["client_address"]
    assert tokens["property_address_same"] == "igen"
    assert tokens["client_birth_date"] == "1980. március 7."
    assert tokens["area_sqm"] == "82,5"
    assert tokens["floor_material"] == "Fa"
    assert tokens["insulation_option"].startswith("Opció A")
    assert tokens["date"] == "2025. január 15."
    assert tokens["project_title"] == "Tetőtér szigetelés"


def test_build_tokens_missing_values_render_empty() -> None:
    tokens = build_tokens(ProjectRecord(), today=date(2025, 1, 15))

    assert tokens["client_name"] == ""
    assert tokens["client_address"] == ""
    assert tokens["area_sqm"] == "0"
    assert tokens["property_address_same"] == "nem"
    assert all(isinstance(value, str) for value in tokens.values())


def test_other_floor_material_uses_free_text() -> None:
    tokens = build_tokens({"floor_material": "other", "floor_material_extra": "Acél trapézlemez"})
    assert tokens["floor_material"] == "Acél trapézlemez"

    tokens = build_tokens({"floor_material": "other"})
    assert tokens["floor_material"] == "Egyéb"


def test_separate_property_address() -> None:
    record = dict(PROJECT, property_address_same=False, property_zip="2000", property_city="Szentendre", property_street="Duna sor 5.")
    tokens = build_tokens(record)
    assert tokens["property_address"] == "2000 Szentendre, Duna sor 5."


@pytest.mark.parametrize(
    ("area", "expected"),
    [
        (1234567.5, "1234567,5"),
        (12345.67, "12345,67"),
        (0.125, "0,125"),
        (3.14159265, "3,14159265"),
        (250.0, "250"),
    ],
)
def test_area_keeps_every_digit(area: float, expected: str) -> None:
    assert build_tokens({"area_sqm": area}, today=date(2025, 1, 15))["area_sqm"] == expected
