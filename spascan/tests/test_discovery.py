from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from spascan.config import Settings
from spascan.discovery import discover_providers, matches_name_filter, normalize_image_url, resolve_providers
from spascan.domain import ServiceCategory, StructureError
from spascan.tests.fakes import FakeEngine, FakePage

BASE_URL = "https://spa.example.test"
DEEP_TISSUE = ServiceCategory(key="deep_tissue", label="Deep Tissue", appointment_type_id=12789613)


def _business() -> dict:
    return {
        "appointmentTypes": {
            "Massage": [
                {"id": 12789431, "calendarIDs": [1]},
                {"id": 12789613, "calendarIDs": [2, 3, 4]},
            ],
        },
        "calendars": {
            "Downtown": [
                {"id": 1, "name": "Anna", "thumbnail": None, "description": None},
                {"id": 2, "name": "Joanna", "thumbnail": "//cdn.example.test/joanna.png", "description": "Sports massage"},
            ],
            "Uptown": [
                {"id": 3, "name": "Mark", "thumbnail": "https://cdn.example.test/mark.png", "description": ""},
            ],
        },
    }


def test_unresolvable_calendar_ids_are_skipped_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="spascan.discovery"):
        providers = resolve_providers(_business(), DEEP_TISSUE, BASE_URL)

    assert [p.raw_name for p in providers] == ["Joanna", "Mark"]
    assert any("Calendar 4" in r.getMessage() and "skipping" in r.getMessage() for r in caplog.records)


def test_provider_fields() -> None:
    joanna, mark = resolve_providers(_business(), DEEP_TISSUE, BASE_URL)

    assert joanna.display_name == "Joanna (Deep Tissue)"
    assert joanna.booking_url == f"{BASE_URL}/?appointmentType=12789613&calendarID=2"
    assert joanna.image_url == "https://cdn.example.test/joanna.png"
    assert joanna.description == "Sports massage"
    assert joanna.remote_id == 2

    assert mark.image_url == "https://cdn.example.test/mark.png"
    assert mark.description is None


def test_name_filter_is_loose_substring_match() -> None:
    # "ann" also matches "Joanna"; kept on purpose.
    providers = resolve_providers(_business(), DEEP_TISSUE, BASE_URL, name_filters=("ANN",))
    assert [p.raw_name for p in providers] == ["Joanna"]

    providers = resolve_providers(_business(), DEEP_TISSUE, BASE_URL, name_filters=("zed", "mar"))
    assert [p.raw_name for p in providers] == ["Mark"]


def test_empty_name_filter_keeps_everyone() -> None:
    assert matches_name_filter("Anyone", ()) is True


def test_unknown_appointment_type_is_a_structure_error() -> None:
    category = ServiceCategory(key="x", label="Hot Stone", appointment_type_id=999)
    with pytest.raises(StructureError, match="999"):
        resolve_providers(_business(), category, BASE_URL)


@pytest.mark.parametrize("business", [None, {}, {"appointmentTypes": []}])
def test_missing_business_structure_is_a_structure_error(business) -> None:
    with pytest.raises(StructureError):
        resolve_providers(business, DEEP_TISSUE, BASE_URL)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("//cdn.example.test/a.png", "https://cdn.example.test/a.png"),
        ("https://cdn.example.test/a.png", "https://cdn.example.test/a.png"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_image_url(url: str | None, expected: str | None) -> None:
    assert normalize_image_url(url) == expected


def test_discover_providers_reads_embedded_business_data() -> None:
    url = DEEP_TISSUE.booking_url(BASE_URL)
    engine = FakeEngine({url: FakePage(business=_business())})
    settings = Settings(base_url=BASE_URL, target_staff=("mark",))

    with patch("spascan.polling._sleep"):
        providers = discover_providers(engine, DEEP_TISSUE, settings)

    assert engine.visited == [url]
    assert [p.display_name for p in providers] == ["Mark (Deep Tissue)"]


def test_discover_providers_without_business_object_raises() -> None:
    engine = FakeEngine()

    with patch("spascan.polling._sleep"):
        with pytest.raises(StructureError, match="window.BUSINESS"):
            discover_providers(engine, DEEP_TISSUE, Settings(base_url=BASE_URL))
