import logging
import os
import time
from typing import Callable

logger = logging.getLogger("netcheck.examples.campaign_bot")

BASE_URL = os.environ.get("NETCHECK_BASE_URL", "http://localhost:3000")


def eventually(step: Callable[[], None], label: str, timeout_s: float = 8.0, interval_s: float = 0.25) -> int:
    """
    Run `step` until it passes or `timeout_s` runs out. Returns the number of attempts.

    Retries are logged so a slow UI shows up next to the API violations.
    """
    deadline = time.monotonic() + timeout_s
    attempts = 0
    while True:
        attempts += 1
        try:
            step()
        except Exception as e:
            if time.monotonic() >= deadline:
                raise AssertionError(f"{label}: still failing after {attempts} attempts ({timeout_s}s)") from e
            logger.info("%s: attempt %d failed (%s), retrying", label, attempts, e)
            time.sleep(interval_s)
            continue
        if attempts > 1:
            logger.info("%s: passed after %d attempts", label, attempts)
        return attempts


def run(page):
    page.set_default_timeout(5_000)
    page.set_default_navigation_timeout(20_000)

    # The campaigns page loads the current user and the campaign list,
    # both of which are covered by the default route table.
    eventually(
        lambda: page.goto(f"{BASE_URL}/campaigns", wait_until="networkidle"),
        "goto campaigns",
        timeout_s=15,
    )

    def campaigns_visible():
        assert page.get_by_role("heading", name="Campaigns").count() >= 1, "Campaigns heading missing"

    eventually(campaigns_visible, "campaigns page", timeout_s=10, interval_s=0.3)

    # Open the first campaign, if any.
    links = page.locator("a[href^='/campaigns/']")
    if links.count() == 0:
        return

    def open_first_campaign():
        links.first.click()
        page.wait_for_url("**/campaigns/**")

    eventually(open_first_campaign, "open campaign", timeout_s=10, interval_s=0.3)
