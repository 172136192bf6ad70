from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from selenium import webdriver
from selenium.common.exceptions import InvalidSessionIdException, TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement
from webdriver_manager.chrome import ChromeDriverManager

from spascan.domain import EngineUnavailableError
from spascan.polling import poll_until

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Counts XHR/fetch calls that have not finished yet. The page keeps the counter until the next navigation.
_INSTALL_REQUEST_COUNTER_JS = """
if (!window.__spascanPending) {
  const pending = {count: 0};
  window.__spascanPending = pending;
  const send = XMLHttpRequest.prototype.send;
  XMLHttpRequest.prototype.send = function () {
    pending.count += 1;
    this.addEventListener('loadend', function () { pending.count -= 1; });
    return send.apply(this, arguments);
  };
  if (window.fetch) {
    const fetch = window.fetch;
    window.fetch = function () {
      pending.count += 1;
      return fetch.apply(this, arguments).finally(function () { pending.count -= 1; });
    };
  }
}
"""

# [readyState, requests in flight, resources fetched so far]
_NETWORK_STATE_JS = (
    _INSTALL_REQUEST_COUNTER_JS
    + "return [document.readyState, window.__spascanPending.count, performance.getEntriesByType('resource').length];"
)


def start_driver(*, headless: bool, page_load_timeout_seconds: int = 120) -> webdriver.Chrome:
    options = Options()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument("--disable-gpu")
    options.add_argument("--no-sandbox")
    options.add_argument("--window-size=1280,1024")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument(f"--user-agent={USER_AGENT}")

    service = Service(ChromeDriverManager().install())
    driver = webdriver.Chrome(service=service, options=options)
    driver.set_page_load_timeout(page_load_timeout_seconds)
    return driver


class SeleniumEngine:
    """The handful of browser primitives the scanner needs, on top of one Chrome session.

    Element handles are plain Selenium ``WebElement`` objects. Never keep one across an
    action that may re-render the page; query again instead.

    Errors raised by a primitive keep their type as long as Chrome still answers; once it
    does not, they become ``EngineUnavailableError``.
    """

    def __init__(self, driver: webdriver.Chrome):
        self._driver = driver

    def ensure_alive(self) -> None:
        try:
            self._driver.current_url
        except Exception as e:
            raise EngineUnavailableError("Browser is not responding") from e

    @contextmanager
    def _session_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except EngineUnavailableError:
            raise
        except InvalidSessionIdException as e:
            raise EngineUnavailableError(f"Selenium session is gone ({action})") from e
        except Exception:
            # Page-level failure (net::ERR_*, stale element) or a dead browser; only the latter is fatal.
            self.ensure_alive()
            raise

    def navigate(self, url: str) -> None:
        with self._session_errors(f"loading {url}"):
            try:
                self._driver.get(url)
            except TimeoutException:
                # Page-load timeout: the document is usually usable anyway, the calendar waits decide.
                logger.warning("Page load timed out: %s", url)
            self._driver.execute_script(_INSTALL_REQUEST_COUNTER_JS)

    def query_all(self, xpath: str) -> list[WebElement]:
        with self._session_errors("find_elements"):
            return self._driver.find_elements(By.XPATH, xpath)

    def query_one(self, xpath: str) -> WebElement | None:
        found = self.query_all(xpath)
        return found[0] if found else None

    def click(self, element: WebElement) -> None:
        with self._session_errors("click"):
            # A plain click sometimes lands on an overlay; fall back to a DOM click.
            try:
                element.click()
            except InvalidSessionIdException:
                raise
            except WebDriverException:
                self._driver.execute_script("arguments[0].click();", element)

    def evaluate(self, expression: str) -> Any:
        with self._session_errors("execute_script"):
            return self._driver.execute_script(f"return {expression};")

    def scroll_to_bottom(self) -> None:
        with self._session_errors("scroll"):
            self._driver.execute_script("window.scrollTo(0, document.body.scrollHeight);")

    def wait_for_network_idle(self, timeout_ms: int) -> bool:
        """True once the document is loaded, no XHR/fetch is in flight and no new resource showed up."""
        interval = 0.1
        last_count: list[int] = []

        def _idle() -> bool:
            ready_state, pending, resource_count = self._driver.execute_script(_NETWORK_STATE_JS)
            settled = (
                ready_state == "complete" and not pending and bool(last_count) and last_count[-1] == resource_count
            )
            last_count.append(resource_count)
            return settled

        try:
            with self._session_errors("network idle check"):
                return poll_until(_idle, interval=interval, max_attempts=max(2, int(timeout_ms / 1000 / interval)))
        except EngineUnavailableError:
            raise
        except WebDriverException:
            logger.debug("Network idle check failed", exc_info=True)
            return False

    def screenshot(self, path: str) -> None:
        with self._session_errors("screenshot"):
            self._driver.save_screenshot(path)

    def dump_html(self, path: str) -> None:
        with self._session_errors("page_source"):
            source = self._driver.page_source
        with open(path, "w", encoding="utf-8") as f:
            f.write(source)

    def close(self) -> None:
        with self._session_errors("quit"):
            self._driver.quit()


def start_engine(*, headless: bool, page_load_timeout_seconds: int = 120) -> SeleniumEngine:
    return SeleniumEngine(start_driver(headless=headless, page_load_timeout_seconds=page_load_timeout_seconds))


def capture_diagnostics(engine: Any, debug_dir: str | None, label: str) -> None:
    """Save debug_<label>.png/.html for a failure we degrade past. Never raises."""
    if debug_dir is None:
        return
    base = os.path.join(debug_dir, f"debug_{label}")
    try:
        os.makedirs(debug_dir, exist_ok=True)
        engine.screenshot(f"{base}.png")
        engine.dump_html(f"{base}.html")
    except Exception:
        logger.warning("Failed to save debug capture %s.*", base, exc_info=True)
        return
    logger.info("Saved debug screenshot to %s.png and HTML to %s.html", base, base)
