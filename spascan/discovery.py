"""Finds the staff members that can be booked for a massage category.

The booking page embeds its whole configuration as ``window.BUSINESS``:

    {
      "appointmentTypes": {"<group>": [{"id": 12789613, "calendarIDs": [111, 222]}, ...]},
      "calendars": {"<location>": [{"id": 111, "name": "Jane", "thumbnail": "//...", "description": "..."}]}
    }

Reading it is far more reliable than walking the rendered staff list.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from spascan.config import Settings
from spascan.domain import Provider, ServiceCategory, StructureError
from spascan.polling import poll_until, settle

logger = logging.getLogger(__name__)

BUSINESS_EXPRESSION = "window.BUSINESS"
BUSINESS_READY_EXPRESSION = "typeof window.BUSINESS !== 'undefined' && window.BUSINESS !== null"
LAZY_CONTENT_SETTLE_SECONDS = 2.0


def normalize_image_url(url: str | None) -> str | None:
    if url and url.startswith("//"):
        return f"https:{url}"
    return url or None


def matches_name_filter(name: str, name_filters: Iterable[str]) -> bool:
    """Loose, case-insensitive substring match: "ann" also lets "Joanna" through."""
    filters = [f.lower() for f in name_filters]
    if not filters:
        return True
    lowered = name.lower()
    return any(f in lowered for f in filters)


def _find_appointment_type(business: Mapping[str, Any], type_id: int) -> Mapping[str, Any] | None:
    groups = business.get("appointmentTypes")
    if not isinstance(groups, Mapping):
        raise StructureError("Business data has no appointmentTypes mapping")

    for types in groups.values():
        for appt_type in types or []:
            if appt_type.get("id") == type_id:
                return appt_type
    return None


def _calendars_by_id(business: Mapping[str, Any]) -> dict[Any, Mapping[str, Any]]:
    locations = business.get("calendars")
    if not isinstance(locations, Mapping):
        raise StructureError("Business data has no calendars mapping")

    lookup: dict[Any, Mapping[str, Any]] = {}
    for calendars in locations.values():
        for calendar in calendars or []:
            lookup.setdefault(calendar.get("id"), calendar)
    return lookup


def resolve_providers(
    business: Mapping[str, Any] | None,
    category: ServiceCategory,
    base_url: str,
    name_filters: Iterable[str] = (),
) -> list[Provider]:
    if not business:
        raise StructureError(f"Could not find {BUSINESS_EXPRESSION} object for {category.label}")

    appt_type = _find_appointment_type(business, category.appointment_type_id)
    if appt_type is None:
        raise StructureError(f"Could not find appointment type {category.appointment_type_id} in business data")

    valid_calendar_ids = appt_type.get("calendarIDs") or []
    logger.info("Found %d valid calendars for %s.", len(valid_calendar_ids), category.label)

    calendars = _calendars_by_id(business)
    category_url = category.booking_url(base_url)
    name_filters = tuple(name_filters)

    providers: list[Provider] = []
    for cal_id in valid_calendar_ids:
        staff = calendars.get(cal_id)
        if staff is None:
            logger.info("Calendar %s of %s has no staff record, skipping", cal_id, category.label)
            continue

        name = str(staff.get("name") or "").strip()
        if not name:
            logger.info("Calendar %s of %s has no name, skipping", cal_id, category.label)
            continue

        if not matches_name_filter(name, name_filters):
            logger.info("Skipping %s (not in TARGET_STAFF)...", name)
            continue

        provider = Provider(
            display_name=f"{name} ({category.label})",
            raw_name=name,
            booking_url=f"{category_url}&calendarID={cal_id}",
            image_url=normalize_image_url(staff.get("thumbnail")),
            description=staff.get("description") or None,
            remote_id=cal_id,
        )
        logger.info("Discovered staff: %s", provider.display_name)
        providers.append(provider)

    return providers


def discover_providers(engine: Any, category: ServiceCategory, settings: Settings) -> list[Provider]:
    url = category.booking_url(settings.base_url)
    logger.info("Navigating to %s booking page: %s", category.label, url)
    engine.navigate(url)

    if not poll_until(lambda: engine.evaluate(BUSINESS_READY_EXPRESSION)):
        logger.warning("%s did not show up in time for %s", BUSINESS_EXPRESSION, category.label)

    # The staff list is lazy-loaded further down the page.
    engine.scroll_to_bottom()
    settle(LAZY_CONTENT_SETTLE_SECONDS)

    business = engine.evaluate(BUSINESS_EXPRESSION)
    providers = resolve_providers(business, category, settings.base_url, settings.target_staff)
    logger.info("Total staff to scan for %s: %d", category.label, len(providers))
    return providers
