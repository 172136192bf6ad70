from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field

from spascan.dates import parse_clock_time


@dataclass(frozen=True)
class ServiceCategory:
    """A group of bookable offerings behind one remote appointment type id."""

    key: str
    label: str
    appointment_type_id: int

    def booking_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/?appointmentType={self.appointment_type_id}"


@dataclass(frozen=True)
class Provider:
    display_name: str  # "Jane (Deep Tissue)", unique within a run
    raw_name: str
    booking_url: str
    image_url: str | None = None
    description: str | None = None
    remote_id: int | None = None


@dataclass(frozen=True)
class Slot:
    """One bookable date/time.

    ``time`` keeps the display form ("1:20 PM"); ``sort_key`` makes slots orderable.
    ``spots`` is None when the page does not show a remaining count.
    """

    date: dt.date
    time: str
    spots: int | None = None

    @property
    def sort_key(self) -> tuple[dt.date, dt.time]:
        return (self.date, parse_clock_time(self.time) or dt.time.max)


@dataclass
class ScanResult:
    booking_url: str
    image_url: str | None = None
    description: str | None = None
    slots: list[Slot] = field(default_factory=list)


class ScanStatus(str, enum.Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderOutcome:
    """What happened to one provider (or a whole category when it was skipped)."""

    name: str
    status: ScanStatus
    result: ScanResult | None = None
    reason: str | None = None


class StructureError(RuntimeError):
    """The remote page does not look the way we expect (missing config, unknown ids, no buttons).

    Skips the affected category or provider; the run goes on.
    """


class EngineUnavailableError(RuntimeError):
    """The browser session is gone. Nothing else can be scanned in this run."""
