from __future__ import annotations

import pytest

from spascan.config import DEFAULT_SPA_PASS_URL, MASSAGE_CATEGORIES, load_settings

_ENV_VARS = (
    "DAYS_TO_SCAN",
    "SCAN_TYPE",
    "MASSAGE_TYPE",
    "TARGET_STAFF",
    "HEADLESS",
    "BOOKING_BASE_URL",
    "SPA_PASS_URL",
    "SPA_PASS_NAME",
    "MAX_MONTHS",
    "OUTPUT_DIR",
    "DEBUG_DIR",
    "PAGE_LOAD_TIMEOUT_SECONDS",
    "ENGINE_START_ATTEMPTS",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's real .env out of the picture.
    monkeypatch.chdir(tmp_path)


def _load(tmp_path):
    empty = tmp_path / "empty.env"
    empty.write_text("")
    return load_settings(dotenv_path=str(empty))


def test_defaults(tmp_path) -> None:
    settings = _load(tmp_path)

    assert settings.days_to_scan == 30
    assert settings.scan_type == "all"
    assert settings.massage_categories() == MASSAGE_CATEGORIES
    assert settings.scan_massages and settings.scan_spa_pass
    assert settings.target_staff == ()
    assert settings.headless is True
    assert settings.spa_pass_url == DEFAULT_SPA_PASS_URL
    assert settings.max_months == 2
    assert settings.telegram_enabled is False


def test_scan_mode_and_sub_mode(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("SCAN_TYPE", "Massage")
    monkeypatch.setenv("MASSAGE_TYPE", "deep_tissue")

    settings = _load(tmp_path)

    assert settings.scan_massages is True
    assert settings.scan_spa_pass is False
    assert [c.label for c in settings.massage_categories()] == ["Deep Tissue"]


def test_target_staff_is_split_and_lowercased(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("TARGET_STAFF", " Anna, ,MARK ")
    assert _load(tmp_path).target_staff == ("anna", "mark")


@pytest.mark.parametrize("raw, expected", [("false", False), ("0", False), ("no", False), ("true", True), ("1", True)])
def test_headless_toggle(monkeypatch: pytest.MonkeyPatch, tmp_path, raw: str, expected: bool) -> None:
    monkeypatch.setenv("HEADLESS", raw)
    assert _load(tmp_path).headless is expected


@pytest.mark.parametrize(
    "name, value, message",
    [
        ("DAYS_TO_SCAN", "soon", r"Invalid DAYS_TO_SCAN"),
        ("DAYS_TO_SCAN", "-1", r"DAYS_TO_SCAN must be >= 0"),
        ("MAX_MONTHS", "0", r"MAX_MONTHS must be >= 1"),
        ("ENGINE_START_ATTEMPTS", "0", r"ENGINE_START_ATTEMPTS must be >= 1"),
        ("SCAN_TYPE", "yoga", r"Invalid SCAN_TYPE"),
        ("MASSAGE_TYPE", "hot_stone", r"Invalid MASSAGE_TYPE"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError, match=message):
        _load(tmp_path)


def test_telegram_chat_ids_are_parsed_and_deduplicated(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "1, 2,2,, -1003, 1")

    settings = _load(tmp_path)
    assert settings.telegram_chat_ids == ("1", "2", "-1003")
    assert settings.telegram_enabled is True


@pytest.mark.parametrize("raw, message", [("abc", r"Invalid TELEGRAM_CHAT_ID"), ("12, 3x", r"'3x'")])
def test_bad_telegram_chat_ids_are_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path, raw: str, message: str) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", raw)
    with pytest.raises(RuntimeError, match=message):
        _load(tmp_path)


def test_token_without_chat_ids_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", " , ,")
    with pytest.raises(RuntimeError, match=r"TELEGRAM_CHAT_ID is empty"):
        _load(tmp_path)


def test_dotenv_does_not_override_existing_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("DAYS_TO_SCAN", "14")

    dotenv = tmp_path / ".env"
    dotenv.write_text("DAYS_TO_SCAN=60\n")

    settings = load_settings(dotenv_path=str(dotenv))
    assert settings.days_to_scan == 14
