from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from spascan.domain import ServiceCategory

DEFAULT_BASE_URL = "https://sensea.as.me"
# The pass is booked from its category page, not from its appointmentType (15360506) URL.
DEFAULT_SPA_PASS_URL = "https://sensea.as.me/schedule/1e0cc157/category/Spa%2520pass"

MASSAGE_CATEGORIES: tuple[ServiceCategory, ...] = (
    ServiceCategory(key="swedish", label="Swedish", appointment_type_id=12789431),
    ServiceCategory(key="deep_tissue", label="Deep Tissue", appointment_type_id=12789613),
    ServiceCategory(key="couples", label="Couples", appointment_type_id=13182311),
)

SCAN_TYPES = ("all", "massage", "spapass")


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # Comma-separated; duplicates dropped, first occurrence wins.
    chat_ids = tuple(dict.fromkeys(p.strip() for p in raw.split(",") if p.strip()))
    for chat_id in chat_ids:
        if not chat_id.lstrip("-").isdigit():
            raise RuntimeError(f"Invalid TELEGRAM_CHAT_ID value: {chat_id!r}. Expected integer chat id.")
    return chat_ids


def _parse_name_filters(raw: str) -> tuple[str, ...]:
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    days_to_scan: int = 30
    scan_type: str = "all"
    massage_type: str = "all"

    # Lower-cased name fragments; empty means every provider is scanned.
    target_staff: tuple[str, ...] = ()

    headless: bool = True
    base_url: str = DEFAULT_BASE_URL
    spa_pass_url: str = DEFAULT_SPA_PASS_URL
    spa_pass_name: str = "Spa Pass"
    max_months: int = 2

    output_dir: str = "www"
    # Screenshots / HTML dumps written on failure paths
    debug_dir: str | None = "."

    page_load_timeout_seconds: int = 120
    # How many times we try to bring Chrome up before giving up on the run.
    engine_start_attempts: int = 2

    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)

    def massage_categories(self) -> tuple[ServiceCategory, ...]:
        if self.massage_type == "all":
            return MASSAGE_CATEGORIES
        return tuple(c for c in MASSAGE_CATEGORIES if c.key == self.massage_type)

    @property
    def scan_massages(self) -> bool:
        return self.scan_type in ("all", "massage")

    @property
    def scan_spa_pass(self) -> bool:
        return self.scan_type in ("all", "spapass")


def _int_env(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def _choice_env(name: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(name, "all").strip().lower() or "all"
    if value not in choices:
        raise RuntimeError(f"Invalid {name} value: {value!r}. Expected one of: {', '.join(choices)}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    headless_raw = os.getenv("HEADLESS", "1").strip().lower()
    headless = headless_raw not in {"0", "false", "no"}

    massage_keys = ("all",) + tuple(c.key for c in MASSAGE_CATEGORIES)

    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN") or None
    telegram_chat_ids = _parse_telegram_chat_ids(os.getenv("TELEGRAM_CHAT_ID", ""))
    if telegram_bot_token and not telegram_chat_ids:
        raise RuntimeError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id or unset TELEGRAM_BOT_TOKEN.")

    return Settings(
        days_to_scan=_int_env("DAYS_TO_SCAN", 30, minimum=0),
        scan_type=_choice_env("SCAN_TYPE", SCAN_TYPES),
        massage_type=_choice_env("MASSAGE_TYPE", massage_keys),
        target_staff=_parse_name_filters(os.getenv("TARGET_STAFF", "")),
        headless=headless,
        base_url=os.getenv("BOOKING_BASE_URL", DEFAULT_BASE_URL),
        spa_pass_url=os.getenv("SPA_PASS_URL", DEFAULT_SPA_PASS_URL),
        spa_pass_name=os.getenv("SPA_PASS_NAME", "Spa Pass"),
        max_months=_int_env("MAX_MONTHS", 2, minimum=1),
        output_dir=os.getenv("OUTPUT_DIR", "www"),
        debug_dir=os.getenv("DEBUG_DIR", "."),
        page_load_timeout_seconds=_int_env("PAGE_LOAD_TIMEOUT_SECONDS", 120, minimum=1),
        engine_start_attempts=_int_env("ENGINE_START_ATTEMPTS", 2, minimum=1),
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
    )
