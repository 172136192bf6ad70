"""Reads the bookable times out of the month view that is currently on screen.

The booking widget renders times differently per appointment type (labelled buttons,
radio inputs, bare paragraphs), so extraction is an ordered list of strategies and the
first one that produces a real time for the selected day wins.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from spascan.dates import format_clock_time, format_slot_date, parse_clock_time, resolve_day_label
from spascan.domain import EngineUnavailableError, Slot
from spascan.polling import poll_until

logger = logging.getLogger(__name__)

ENABLED_DAYS_XPATH = "//button[contains(@class, 'react-calendar__tile') and not(@disabled)]"

TIME_SELECTION_XPATH = (
    "//label[contains(@class, 'time-selection')]"
    " | //div[contains(@class, 'time-selection')]"
    " | //button[contains(@class, 'time-selection')]"
)
TIME_INPUT_XPATH = "//input[@name='time']"
PARAGRAPH_XPATH = "//p"

DAY_SETTLE_TIMEOUT_MS = 1000
# Time entries are re-read every POLL_INTERVAL_SECONDS until two reads agree (at most DAY_RENDER_MAX_POLLS).
# A day that shows exactly what the previous day showed is accepted after DAY_UNCHANGED_POLLS reads.
DAY_RENDER_MAX_POLLS = 20
DAY_UNCHANGED_POLLS = 5

_TIME_TOKEN_RE = re.compile(r"\d{1,2}:\d{2}")
_CLEAN_TIME_RE = re.compile(r"(\d{1,2}:\d{2})\s*(AM|PM)?", re.IGNORECASE)
_TIME_WITH_MERIDIEM_RE = re.compile(r"\d{1,2}:\d{2}\s*(AM|PM)", re.IGNORECASE)
_SPOTS_RE = re.compile(r"(\d+)\s*spots?\s*left", re.IGNORECASE)
_SELECT_RE = re.compile(r"select", re.IGNORECASE)


@dataclass(frozen=True)
class TimeCandidate:
    full_text: str
    value: str | None = None  # value attribute of input-style controls


# (engine) -> candidates for the day that is currently selected
ExtractionStrategy = Callable[[Any], list[TimeCandidate]]


def parse_time_entry(full_text: str, value: str | None = None) -> Optional[tuple[str, int | None]]:
    """Turn one time control's text into ("1:20 PM", 7).

    ``value`` (from an input) takes precedence for the time; the remaining-spots count is
    always read from the visible text. Returns None when there is no clock time.
    """
    full_text = (full_text or "").strip()
    time_str = value if value else full_text
    time_str = _SELECT_RE.sub("", time_str).strip()

    spots: int | None = None
    m = _SPOTS_RE.search(full_text)
    if m:
        spots = int(m.group(1))

    if not _TIME_TOKEN_RE.search(time_str):
        return None

    clean = _CLEAN_TIME_RE.search(time_str)
    if not clean:
        return None
    clock, meridiem = clean.group(1), clean.group(2)
    if meridiem:
        return f"{clock} {meridiem.upper()}", spots

    # 24-hour input values ("13:20")
    parsed = parse_clock_time(clock)
    if parsed is None:
        return None
    return format_clock_time(parsed), spots


def time_selection_controls(engine: Any) -> list[TimeCandidate]:
    return [TimeCandidate(full_text=el.text or "") for el in engine.query_all(TIME_SELECTION_XPATH)]


def time_inputs(engine: Any) -> list[TimeCandidate]:
    return [
        TimeCandidate(full_text=el.text or "", value=el.get_attribute("value"))
        for el in engine.query_all(TIME_INPUT_XPATH)
    ]


def free_text_times(engine: Any) -> list[TimeCandidate]:
    return [
        TimeCandidate(full_text=el.text)
        for el in engine.query_all(PARAGRAPH_XPATH)
        if el.text and _TIME_WITH_MERIDIEM_RE.search(el.text)
    ]


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (time_selection_controls, time_inputs, free_text_times)


def _parse_candidates(candidates: Iterable[TimeCandidate], day: dt.date) -> list[Slot]:
    slots: list[Slot] = []
    for candidate in candidates:
        parsed = parse_time_entry(candidate.full_text, candidate.value)
        if parsed is None:
            continue
        clock, spots = parsed
        slots.append(Slot(date=day, time=clock, spots=spots))
    return slots


def extract_day_slots(
    engine: Any, day: dt.date, strategies: Iterable[ExtractionStrategy] = DEFAULT_STRATEGIES
) -> list[Slot]:
    for strategy in strategies:
        slots = _parse_candidates(strategy(engine), day)
        if slots:
            return slots
    return []


TimeEntrySnapshot = tuple[tuple[TimeCandidate, ...], ...]


def read_time_entries(engine: Any, strategies: Iterable[ExtractionStrategy]) -> TimeEntrySnapshot:
    return tuple(tuple(strategy(engine)) for strategy in strategies)


def _read_time_entries_quietly(engine: Any, strategies: Iterable[ExtractionStrategy]) -> Optional[TimeEntrySnapshot]:
    try:
        return read_time_entries(engine, strategies)
    except EngineUnavailableError:
        raise
    except Exception as e:
        # Elements replaced while being read; the next read decides.
        logger.debug("Time entries changed under us (%s: %s)", type(e).__name__, e)
        return None


def wait_for_day_render(
    engine: Any, before: Optional[TimeEntrySnapshot], strategies: Iterable[ExtractionStrategy]
) -> bool:
    """Wait until the time entries shown after a day click stop changing.

    ``before`` is what was on screen prior to the click; entries only count once they
    differ from it and read the same twice in a row, or once they stayed identical to it
    for DAY_UNCHANGED_POLLS reads.
    """
    strategies = tuple(strategies)
    engine.wait_for_network_idle(DAY_SETTLE_TIMEOUT_MS)
    reads = [before]

    def _settled() -> bool:
        current = _read_time_entries_quietly(engine, strategies)
        if current is None:
            return False
        previous = reads[-1]
        reads.append(current)
        if current != previous:
            return False
        return current != before or len(reads) > DAY_UNCHANGED_POLLS

    if poll_until(_settled, max_attempts=DAY_RENDER_MAX_POLLS):
        return True
    logger.warning("Time entries did not settle, reading them as they are")
    return False


def extract_month(
    engine: Any,
    year: int,
    month: int,
    strategies: Iterable[ExtractionStrategy] = DEFAULT_STRATEGIES,
) -> list[Slot]:
    """Click through every enabled day of the visible month and collect its times."""
    strategies = tuple(strategies)
    day_count = len(engine.query_all(ENABLED_DAYS_XPATH))
    logger.info("Found %d active days in this month view.", day_count)

    slots: list[Slot] = []
    for i in range(day_count):
        # Selecting a day re-renders the calendar; earlier handles may be stale.
        day_buttons = engine.query_all(ENABLED_DAYS_XPATH)
        if i >= len(day_buttons):
            logger.warning("Day #%d disappeared after re-render, stopping this month", i + 1)
            break
        day_button = day_buttons[i]

        try:
            day = resolve_day_label(day_button.get_attribute("aria-label"), day_button.text, year, month)
            if day is None:
                logger.warning("Could not resolve date for day tile %r, skipping", day_button.text)
                continue

            before = _read_time_entries_quietly(engine, strategies)
            engine.click(day_button)
            wait_for_day_render(engine, before, strategies)

            day_slots = extract_day_slots(engine, day, strategies)
        except EngineUnavailableError:
            raise
        except Exception as e:
            logger.warning("Failed to read day #%d (%s: %s)", i + 1, type(e).__name__, e)
            engine.ensure_alive()
            continue

        logger.info("  -> %s: Found %d slots", format_slot_date(day), len(day_slots))
        for slot in day_slots:
            if slot.spots is not None:
                logger.info("     -> Added slot: %s (%d spots left)", slot.time, slot.spots)
            else:
                logger.info("     -> Added slot: %s", slot.time)
        slots.extend(day_slots)

    return slots
