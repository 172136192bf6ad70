from __future__ import annotations

import logging
from typing import Any

from spascan.browser import capture_diagnostics
from spascan.dates import MonthContext, parse_header_to_month
from spascan.domain import Slot
from spascan.extractor import DEFAULT_STRATEGIES, ExtractionStrategy, extract_month
from spascan.polling import poll_until, settle

logger = logging.getLogger(__name__)

HEADER_XPATH = "//button[contains(@class, 'react-calendar__navigation__label')]"
NEXT_MONTH_XPATH = "//button[contains(@class, 'react-calendar__navigation__next-button') and not(@disabled)]"

CALENDAR_FALLBACK_SECONDS = 2.0
NEXT_MONTH_SETTLE_TIMEOUT_MS = 2000
NEXT_MONTH_FALLBACK_SECONDS = 1.0


def wait_for_calendar(engine: Any, debug_dir: str | None = None) -> bool:
    """Wait (bounded) for the month header to render.

    On timeout we give the page one more short window and save a debug capture; the caller
    carries on with whatever is on screen.
    """
    if poll_until(lambda: engine.query_one(HEADER_XPATH)):
        logger.info("Calendar loaded successfully.")
        return True

    logger.warning("Calendar not detected immediately. Waiting an extra %.0f seconds...", CALENDAR_FALLBACK_SECONDS)
    settle(CALENDAR_FALLBACK_SECONDS)
    capture_diagnostics(engine, debug_dir, "calendar_fail")
    return False


def read_month_context(engine: Any, debug_dir: str | None = None) -> MonthContext:
    header = engine.query_one(HEADER_XPATH)
    if header is None:
        logger.warning("Could not find calendar header. Assuming current month.")
        capture_diagnostics(engine, debug_dir, "missing_header")
        return parse_header_to_month(None)

    header_text = (header.text or "").strip()
    context = parse_header_to_month(header_text)
    if context.resolved:
        logger.info("Identified calendar view: %s", header_text)
    return context


def scan_visible_months(
    engine: Any,
    max_months: int = 2,
    *,
    debug_dir: str | None = None,
    strategies: tuple[ExtractionStrategy, ...] = DEFAULT_STRATEGIES,
) -> list[Slot]:
    """Scrape the current month, then page forward up to ``max_months`` views in total.

    No "next" control means the published schedule ends here; that is not an error.
    """
    slots: list[Slot] = []

    for month_index in range(max_months):
        label = "current" if month_index == 0 else "next"
        logger.info("Scanning %s month view...", label)
        context = read_month_context(engine, debug_dir)
        slots.extend(extract_month(engine, context.year, context.month, strategies))

        if month_index + 1 >= max_months:
            break

        next_button = engine.query_one(NEXT_MONTH_XPATH)
        if next_button is None:
            logger.info("No 'Next Month' button found (possibly end of available schedule).")
            break

        logger.info("Clicking 'Next Month'...")
        engine.click(next_button)
        if not engine.wait_for_network_idle(NEXT_MONTH_SETTLE_TIMEOUT_MS):
            settle(NEXT_MONTH_FALLBACK_SECONDS)

    return slots
