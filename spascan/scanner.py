from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Any, Callable

from tenacity import RetryCallState, retry, stop_after_attempt, wait_exponential

from spascan.browser import capture_diagnostics, start_engine
from spascan.config import Settings
from spascan.dates import format_slot_date, is_within_horizon
from spascan.discovery import discover_providers
from spascan.domain import (
    EngineUnavailableError,
    Provider,
    ProviderOutcome,
    ScanResult,
    ScanStatus,
    ServiceCategory,
    StructureError,
)
from spascan.output import META_KEY, WrittenInventory, write_inventory
from spascan.paginator import scan_visible_months, wait_for_calendar
from spascan.polling import poll_until, settle
from spascan.telegram_notifier import broadcast, format_change_summary

logger = logging.getLogger(__name__)

SPA_PASS_DESCRIPTION = "Access to the Nordic Spa facilities."

EngineFactory = Callable[[Settings], Any]
CalendarOpener = Callable[[Any, Provider, Settings], None]


class ScanReport:
    """Everything one run found. Only ``run_scan`` writes to it."""

    def __init__(self) -> None:
        self._outcomes: list[ProviderOutcome] = []
        self.generated_at: str | None = None

    @property
    def outcomes(self) -> list[ProviderOutcome]:
        return list(self._outcomes)

    def record(self, outcome: ProviderOutcome) -> None:
        self._outcomes.append(outcome)

    def results(self) -> dict[str, ScanResult]:
        results: dict[str, ScanResult] = {}
        for outcome in self._outcomes:
            if outcome.result is None:
                continue
            if outcome.name in results:
                logger.warning("Duplicate provider name %r, keeping the latest scan", outcome.name)
            results[outcome.name] = outcome.result
        return results

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name, result in self.results().items():
            payload[name] = {
                "image_url": result.image_url,
                "description": result.description,
                "booking_url": result.booking_url,
                "slots": [[format_slot_date(s.date), s.time, s.spots] for s in result.slots],
            }
        payload[META_KEY] = {"generated_at": self.generated_at}
        return payload


def _xpath_literal(value: str) -> str:
    return f'"{value}"' if "'" in value else f"'{value}'"


def spa_pass_select_xpath(pass_name: str) -> str:
    return (
        "//li[contains(@class, 'select-item') and "
        f".//div[contains(@class, 'appointment-type-name') and normalize-space(text())={_xpath_literal(pass_name)}]]"
        "//button[contains(., 'Select')]"
    )


def spa_pass_provider(settings: Settings) -> Provider:
    return Provider(
        display_name=settings.spa_pass_name,
        raw_name=settings.spa_pass_name,
        booking_url=settings.spa_pass_url,
        description=SPA_PASS_DESCRIPTION,
    )


def open_staff_calendar(engine: Any, provider: Provider, settings: Settings) -> None:
    logger.info("Navigating directly to booking URL for %s...", provider.display_name)
    engine.navigate(provider.booking_url)


def open_spa_pass_calendar(engine: Any, provider: Provider, settings: Settings) -> None:
    logger.info("Navigating to %s category page: %s", provider.display_name, provider.booking_url)
    engine.navigate(provider.booking_url)

    xpath = spa_pass_select_xpath(settings.spa_pass_name)
    if not poll_until(lambda: engine.query_one(xpath)):
        capture_diagnostics(engine, settings.debug_dir, "spa_pass_select_fail")
        raise StructureError(f"Could not find 'Select' button for {provider.display_name}")

    logger.info("Found 'Select' button for %s. Clicking...", provider.display_name)
    engine.click(engine.query_one(xpath))


def scan_provider(
    engine: Any,
    provider: Provider,
    settings: Settings,
    today: dt.date,
    open_calendar: CalendarOpener = open_staff_calendar,
) -> ProviderOutcome:
    """Scan one provider. Anything short of a dead browser ends up in the outcome, not raised."""
    logger.info("--- Scanning %s ---", provider.display_name)
    try:
        open_calendar(engine, provider, settings)
        wait_for_calendar(engine, settings.debug_dir)
        slots = scan_visible_months(engine, settings.max_months, debug_dir=settings.debug_dir)
    except EngineUnavailableError:
        raise
    except StructureError as e:
        logger.error("Skipping %s: %s", provider.display_name, e)
        return ProviderOutcome(name=provider.display_name, status=ScanStatus.SKIPPED, reason=str(e))
    except Exception as e:
        engine.ensure_alive()
        logger.error("Scan failed for %s (%s: %s)", provider.display_name, type(e).__name__, e, exc_info=True)
        return ProviderOutcome(
            name=provider.display_name, status=ScanStatus.FAILED, reason=f"{type(e).__name__}: {e}"
        )

    kept = [s for s in slots if is_within_horizon(s.date, today, settings.days_to_scan)]
    result = ScanResult(
        booking_url=provider.booking_url,
        image_url=provider.image_url,
        description=provider.description,
        slots=kept,
    )

    if kept:
        logger.info(
            "SUCCESS: Found %d slots for %s in the next %d days.", len(kept), provider.display_name, settings.days_to_scan
        )
        return ProviderOutcome(name=provider.display_name, status=ScanStatus.SUCCESS, result=result)

    logger.info("No availability found for %s in the next %d days.", provider.display_name, settings.days_to_scan)
    return ProviderOutcome(name=provider.display_name, status=ScanStatus.EMPTY, result=result)


def _cancelled(stop_event: threading.Event | None) -> bool:
    if stop_event is not None and stop_event.is_set():
        logger.warning("Stop requested, not starting any more scans")
        return True
    return False


def scan_massage_category(
    engine: Any,
    category: ServiceCategory,
    settings: Settings,
    today: dt.date,
    stop_event: threading.Event | None = None,
) -> list[ProviderOutcome]:
    try:
        providers = discover_providers(engine, category, settings)
    except EngineUnavailableError:
        raise
    except StructureError as e:
        logger.error("%s. Aborting scan for %s.", e, category.label)
        return [ProviderOutcome(name=category.label, status=ScanStatus.SKIPPED, reason=str(e))]
    except Exception as e:
        engine.ensure_alive()
        logger.error("Staff discovery failed for %s (%s: %s)", category.label, type(e).__name__, e, exc_info=True)
        return [ProviderOutcome(name=category.label, status=ScanStatus.FAILED, reason=f"{type(e).__name__}: {e}")]

    outcomes: list[ProviderOutcome] = []
    for i, provider in enumerate(providers, start=1):
        if _cancelled(stop_event):
            break
        logger.info("Processing staff %d/%d: %s", i, len(providers), provider.display_name)
        outcomes.append(scan_provider(engine, provider, settings, today))
    return outcomes


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.info("Browser start attempt %s", retry_state.attempt_number)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None) or 0
    logger.warning(
        "Browser start attempt %s failed (%s), retrying in %.0f sec.",
        retry_state.attempt_number,
        _short_exc(retry_state),
        sleep_seconds,
    )


def _default_engine_factory(settings: Settings) -> Any:
    logger.info("Starting browser (headless=%s)", settings.headless)
    return start_engine(headless=settings.headless, page_load_timeout_seconds=settings.page_load_timeout_seconds)


def _start_engine_with_retry(settings: Settings, engine_factory: EngineFactory) -> Any:
    decorated = retry(
        stop=stop_after_attempt(settings.engine_start_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=4),
        before=_log_before_attempt,
        before_sleep=_log_before_sleep,
        sleep=settle,
        reraise=True,
    )(engine_factory)

    return decorated(settings)


def run_scan(
    settings: Settings,
    *,
    engine_factory: EngineFactory = _default_engine_factory,
    stop_event: threading.Event | None = None,
    today: dt.date | None = None,
) -> ScanReport | None:
    """Scan every requested category with one browser session.

    Returns None when the run could not complete (browser would not start or died);
    in that case no inventory should be published.
    """
    today = today or dt.date.today()
    logger.info("Starting scan process...")
    logger.info("Days to scan: %d", settings.days_to_scan)
    logger.info("Scan Type: %s, Massage Type: %s", settings.scan_type, settings.massage_type)

    try:
        engine = _start_engine_with_retry(settings, engine_factory)
    except Exception:
        logger.exception("CRITICAL ERROR: could not start the browser")
        return None

    report = ScanReport()
    try:
        if settings.scan_massages:
            for category in settings.massage_categories():
                if _cancelled(stop_event):
                    break
                for outcome in scan_massage_category(engine, category, settings, today, stop_event):
                    report.record(outcome)

        if settings.scan_spa_pass and not _cancelled(stop_event):
            report.record(
                scan_provider(engine, spa_pass_provider(settings), settings, today, open_calendar=open_spa_pass_calendar)
            )
    except Exception:
        logger.exception("CRITICAL ERROR during scan")
        return None
    finally:
        logger.info("Closing browser...")
        try:
            engine.close()
        except Exception:
            logger.warning("Failed to quit driver cleanly", exc_info=True)

    report.generated_at = dt.datetime.now().astimezone().isoformat(timespec="seconds")
    logger.info("Scan complete: %d providers recorded.", len(report.results()))
    return report


def publish_report(settings: Settings, report: ScanReport) -> WrittenInventory:
    written = write_inventory(settings.output_dir, report.to_payload())
    logger.info("JSON output saved to %s (MD5: %s)", written.json_path, written.digest)

    if written.changed and settings.telegram_enabled:
        text = format_change_summary(report.outcomes, settings.days_to_scan)
        failed = broadcast(bot_token=settings.telegram_bot_token, chat_ids=settings.telegram_chat_ids, text=text)
        if failed:
            logger.warning("Change notification not delivered to: %s", ", ".join(failed))
        else:
            logger.info("Telegram change notification sent.")
    return written
