#!/usr/bin/env python3
"""Close the usage-guide popup on the target site.

Runs under the Runwatch supervisor, which sets TARGET_URL and reads the framed
events this script writes to stdout. Register it with::

    runwatch register GUIDE-001 --script guide_popup.py \\
        --step "Go to target URL" \\
        --step 'Click "Do not show again" checkbox' \\
        --step "Close the popup" \\
        --url https://example.com/
"""

import os
import sys

from playwright.sync_api import Page, sync_playwright

from runwatch.emitter import TestSession

DEFAULT_URL = "https://example.com/"

CHECKBOX_SELECTORS = [
    "span.ant-typography.embla__isShowChec-wrong",
    "[class*='isShowChec']",
]
CLOSE_SELECTORS = [
    "button[aria-label='Close']",
    ".ant-modal-close",
]


def click_first(session: TestSession, page: Page, selectors: list[str], what: str) -> None:
    """Click the first visible element among selectors."""
    for selector in selectors:
        session.debug(f"[Playwright] Trying selector: {selector}")
        element = page.locator(selector).first
        if element.is_visible(timeout=2000):
            element.click(timeout=5000)
            session.debug(f"[Playwright] Clicked {what} via {selector}")
            return
    raise RuntimeError(f"No visible {what} matched {selectors}")


def main() -> int:
    target_url = os.environ.get("TARGET_URL") or DEFAULT_URL

    with sync_playwright() as p:
        browser = p.chromium.launch()
        page = browser.new_page()

        def screenshot() -> bytes:
            return page.screenshot(type="png", full_page=True)

        try:
            with TestSession("Close guide popup", screenshot=screenshot) as session:
                with session.step("Go to target URL"):
                    session.debug(f"[Playwright] Going to URL: {target_url}")
                    page.goto(target_url, timeout=15000)

                with session.step('Click "Do not show again" checkbox'):
                    page.wait_for_load_state("networkidle", timeout=10000)
                    click_first(session, page, CHECKBOX_SELECTORS, "checkbox")

                with session.step("Close the popup"):
                    click_first(session, page, CLOSE_SELECTORS, "close button")
        except Exception:
            return 1
        finally:
            browser.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
