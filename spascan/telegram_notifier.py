from __future__ import annotations

import logging
from typing import Iterable

import httpx

from spascan.domain import ProviderOutcome, ScanStatus

logger = logging.getLogger(__name__)


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    r = httpx.post(
        f"https://api.telegram.org/bot{bot_token}/sendMessage",
        json={"chat_id": chat_id, "text": text},
        timeout=timeout_seconds,
    )
    r.raise_for_status()


def format_change_summary(outcomes: Iterable[ProviderOutcome], horizon_days: int) -> str:
    outcomes = list(outcomes)
    available = [o for o in outcomes if o.status is ScanStatus.SUCCESS and o.result is not None]
    failed = [o for o in outcomes if o.status in (ScanStatus.FAILED, ScanStatus.SKIPPED)]

    lines = [f"Spa availability updated (next {horizon_days} days)."]
    if available:
        for outcome in available:
            lines.append(f"• {outcome.name}: {len(outcome.result.slots)} slots")
    else:
        lines.append("No open slots found.")
    if failed:
        lines.append("")
        lines.append("Not scanned: " + ", ".join(o.name for o in failed))
    return "\n".join(lines)


def broadcast(*, bot_token: str, chat_ids: Iterable[str], text: str) -> list[str]:
    """Send ``text`` to every chat; returns the chat ids that failed."""
    failed: list[str] = []
    for chat_id in chat_ids:
        try:
            send_telegram_message(bot_token=bot_token, chat_id=chat_id, text=text)
        except Exception as e:
            # Best-effort: don't stop sending to other chat_ids.
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            failed.append(chat_id)
    return failed
